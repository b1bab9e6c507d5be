from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    """Account roles recognised by the job board."""

    ADMIN = "ADMIN"
    EMPLOYER = "EMPLOYER"
    CANDIDATE = "CANDIDATE"


@dataclass(frozen=True)
class PublicUser:
    """User view safe to return to clients; carries no credential material."""

    id: str
    name: str
    email: str
    role: str
    two_factor_enabled: bool
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "twoFactorEnabled": self.two_factor_enabled,
            "phone": self.phone,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class User:
    id: str
    email: str
    name: str
    password_hash: str
    role: str = UserRole.CANDIDATE.value
    two_factor_enabled: bool = False
    phone: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_public(self) -> PublicUser:
        return PublicUser(
            id=self.id,
            name=self.name,
            email=self.email,
            role=self.role,
            two_factor_enabled=self.two_factor_enabled,
            phone=self.phone,
            created_at=self.created_at,
        )


@dataclass
class RefreshToken:
    """Ledger row for an issued refresh token.

    Rows are revoked rather than deleted when used for rotation or logout;
    expired or revoked rows are swept opportunistically.
    """

    id: str
    user_id: str
    token: str
    expires_at: datetime
    revoked: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        user_id: str,
        token: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> "RefreshToken":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def is_usable(self, now: datetime | None = None) -> bool:
        return not self.revoked and self.expires_at > (now or utcnow())

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


def expires_in(seconds: int) -> datetime:
    return utcnow() + timedelta(seconds=seconds)
