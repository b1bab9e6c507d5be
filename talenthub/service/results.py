from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Literal, Union

from talenthub.storage.models import PublicUser


class FailureKind(str, Enum):
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class AuthFailure:
    kind: FailureKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    success: Literal[False] = False


@dataclass(frozen=True)
class Registered:
    user_id: str
    message: str
    success: Literal[True] = True


@dataclass(frozen=True)
class EmailVerified:
    message: str
    success: Literal[True] = True


@dataclass(frozen=True)
class Authenticated:
    """Password (and, when enabled, second factor) accepted; tokens issued."""

    user: PublicUser
    access_token: str
    refresh_token: str
    message: str
    success: Literal[True] = True


@dataclass(frozen=True)
class TwoFactorRequired:
    """Password accepted; a one-time code was sent and no tokens exist yet."""

    user: PublicUser
    email: str
    message: str
    success: Literal[True] = True


@dataclass(frozen=True)
class TokensRotated:
    access_token: str
    refresh_token: str
    message: str = "Token refreshed successfully"
    success: Literal[True] = True


@dataclass(frozen=True)
class LoggedOut:
    message: str
    success: Literal[True] = True


RegisterResult = Union[Registered, AuthFailure]
VerifyEmailResult = Union[EmailVerified, AuthFailure]
LoginResult = Union[Authenticated, TwoFactorRequired, AuthFailure]
TwoFactorResult = Union[Authenticated, AuthFailure]
RefreshResult = Union[TokensRotated, AuthFailure]
LogoutResult = Union[LoggedOut, AuthFailure]


__all__ = [
    "AuthFailure",
    "Authenticated",
    "EmailVerified",
    "FailureKind",
    "LoggedOut",
    "LoginResult",
    "LogoutResult",
    "RefreshResult",
    "RegisterResult",
    "Registered",
    "TokensRotated",
    "TwoFactorRequired",
    "TwoFactorResult",
    "VerifyEmailResult",
]
