from __future__ import annotations

import asyncio
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from talenthub.config import Settings
from talenthub.logging import get_logger, redact_email
from talenthub.service.results import (
    AuthFailure,
    Authenticated,
    EmailVerified,
    FailureKind,
    LoggedOut,
    LoginResult,
    LogoutResult,
    RefreshResult,
    Registered,
    RegisterResult,
    TokensRotated,
    TwoFactorRequired,
    TwoFactorResult,
    VerifyEmailResult,
)
from talenthub.service.tokens import EMAIL_VERIFICATION, TokenCodec
from talenthub.storage.errors import ConstraintViolation
from talenthub.storage.models import RefreshToken, User, UserRole, utcnow

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_CODE = "Invalid verification code"
INVALID_VERIFICATION_TOKEN = "Invalid or expired verification token"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
EXPIRED_REFRESH_TOKEN = "Invalid or expired refresh token"


class CredentialStore(Protocol):
    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: str = UserRole.CANDIDATE.value,
        phone: Optional[str] = None,
    ) -> User: ...

    def update_flags(self, user_id: str, **patch: Any) -> User: ...

    def update_password(self, user_id: str, password_hash: str) -> User: ...


class RefreshTokenLedger(Protocol):
    def insert_refresh_token(
        self,
        token: str,
        user_id: str,
        expires_at: datetime,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken: ...

    def find_refresh_token(self, token: str) -> Optional[RefreshToken]: ...

    def revoke_refresh_token(self, row_id: str) -> bool: ...

    def delete_expired_or_revoked_refresh_tokens(self) -> int: ...


class OneTimeCodeCache(Protocol):
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> bool: ...


class NotificationGateway(Protocol):
    async def send_verification_email(self, to_email: str, token: str) -> bool: ...

    async def send_two_factor_code(self, to_email: str, code: str) -> bool: ...


@dataclass
class AuthContext:
    user_id: str
    email: str
    role: str


def two_factor_cache_key(email: str) -> str:
    return f"2fa:code:{email}"


class AuthService:
    """Registration, login, two-factor and refresh-token lifecycle.

    Every public coroutine returns a result dataclass from
    ``talenthub.service.results`` and never raises; unexpected failures are
    logged and reported as ``FailureKind.UNEXPECTED``.
    """

    def __init__(
        self,
        store: CredentialStore,
        ledger: RefreshTokenLedger,
        codes: OneTimeCodeCache,
        notifier: NotificationGateway,
        tokens: TokenCodec,
        settings: Settings,
        *,
        password_hasher: PasswordHasher | None = None,
        code_generator: Callable[[], str] | None = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.codes = codes
        self.notifier = notifier
        self.tokens = tokens
        self.settings = settings
        self._pwd_hasher = password_hasher or PasswordHasher(type=Type.ID)
        self._code_generator = code_generator or self._generate_code
        self.logger = logger

    # Helpers --------------------------------------------------------------------

    @staticmethod
    async def _run(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking store or hashing call off the event loop."""
        return await asyncio.to_thread(fn, *args, **kwargs)

    @staticmethod
    def _generate_code() -> str:
        return str(100000 + secrets.randbelow(900000))

    async def hash_password(self, password: str) -> str:
        return await self._run(self._pwd_hasher.hash, password)

    async def _password_matches(self, user: User, password: str) -> bool:
        try:
            return await self._run(self._pwd_hasher.verify, user.password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            self.logger.warning("password_hash_unusable", user_id=user.id)
            return False

    async def _issue_session_tokens(
        self,
        user: User,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[str, str]:
        access_token = self.tokens.issue_access(user.id, user.email, user.role)
        refresh = self.tokens.issue_refresh(user.id, user.email)
        await self._run(
            self.ledger.insert_refresh_token,
            refresh.token,
            user.id,
            refresh.expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return access_token, refresh.token

    async def _notify(self, send: Callable[..., Any], to_email: str, value: str) -> bool:
        try:
            delivered = await send(to_email, value)
        except Exception as exc:
            self.logger.error(
                "notification_failed",
                to=redact_email(to_email),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        if not delivered:
            self.logger.warning("notification_not_delivered", to=redact_email(to_email))
        return bool(delivered)

    # Registration -----------------------------------------------------------------

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        *,
        role: str | None = None,
        phone: str | None = None,
    ) -> RegisterResult:
        for field_name, value in (("name", name), ("email", email), ("password", password)):
            if not value or not str(value).strip():
                return AuthFailure(
                    FailureKind.VALIDATION,
                    f"{field_name} is required",
                    {"field": field_name},
                )
        role_value = role or UserRole.CANDIDATE.value
        if role_value not in {r.value for r in UserRole}:
            return AuthFailure(
                FailureKind.VALIDATION,
                "Role must be one of ADMIN, EMPLOYER, CANDIDATE",
                {"field": "role"},
            )
        duplicate = AuthFailure(
            FailureKind.CONFLICT, "Email already registered", {"field": "email"}
        )
        try:
            if await self._run(self.store.get_user_by_email, email):
                return duplicate
            password_hash = await self.hash_password(password)
            try:
                user = await self._run(
                    self.store.create_user,
                    email,
                    name.strip(),
                    password_hash,
                    role=role_value,
                    phone=phone,
                )
            except ConstraintViolation:
                # Lost a race with a concurrent registration for the same email
                return duplicate
        except Exception:
            self.logger.exception("registration_failed", email=redact_email(email))
            return AuthFailure(FailureKind.UNEXPECTED, "Registration failed")

        token = self.tokens.issue_verification(
            user.id,
            user.email,
            EMAIL_VERIFICATION,
            self.tokens.verification_expiry(self.settings.email_verification_ttl_seconds),
        )
        await self._notify(self.notifier.send_verification_email, user.email, token)
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        return Registered(
            user_id=user.id,
            message="Registration successful. Please check your email to verify your account.",
        )

    async def verify_email(self, token: str) -> VerifyEmailResult:
        payload = self.tokens.verify_generic(token)
        invalid = AuthFailure(FailureKind.AUTHENTICATION, INVALID_VERIFICATION_TOKEN)
        if not payload or payload.get("type") != EMAIL_VERIFICATION:
            return invalid
        try:
            expires = int(payload.get("expires"))
        except (TypeError, ValueError):
            return invalid
        if expires < self.tokens.now_ms():
            return invalid
        email = payload.get("email")
        if not isinstance(email, str):
            return invalid
        try:
            user = await self._run(self.store.get_user_by_email, email)
            if not user:
                return AuthFailure(FailureKind.NOT_FOUND, "User not found")
            if not user.two_factor_enabled:
                await self._run(self.store.update_flags, user.id, two_factor_enabled=True)
        except Exception:
            self.logger.exception("email_verification_failed")
            return AuthFailure(FailureKind.UNEXPECTED, "Email verification failed")
        self.logger.info("email_verified", user_id=user.id)
        return EmailVerified(message="Email verified successfully")

    # Login and second factor ---------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        if not email or not password:
            return AuthFailure(
                FailureKind.VALIDATION,
                "Email and password are required",
                {"field": "email" if not email else "password"},
            )
        invalid = AuthFailure(FailureKind.AUTHENTICATION, INVALID_CREDENTIALS)
        try:
            user = await self._run(self.store.get_user_by_email, email)
            if not user or not await self._password_matches(user, password):
                self.logger.info("login_rejected")
                return invalid

            if not user.two_factor_enabled:
                access_token, refresh_token = await self._issue_session_tokens(
                    user, ip_address=ip_address, user_agent=user_agent
                )
                self.logger.info("login_succeeded", user_id=user.id)
                return Authenticated(
                    user=user.to_public(),
                    access_token=access_token,
                    refresh_token=refresh_token,
                    message="Login successful",
                )

            code = self._code_generator()
            await self.codes.set(
                two_factor_cache_key(user.email),
                code,
                self.settings.two_factor_code_ttl_seconds,
            )
        except Exception:
            self.logger.exception("login_failed")
            return AuthFailure(FailureKind.UNEXPECTED, "Login failed")

        await self._notify(self.notifier.send_two_factor_code, user.email, code)
        self.logger.info("two_factor_challenge_issued", user_id=user.id)
        return TwoFactorRequired(
            user=user.to_public(),
            email=user.email,
            message="Two-factor authentication required",
        )

    async def verify_two_factor(
        self,
        email: str,
        code: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TwoFactorResult:
        invalid = AuthFailure(FailureKind.AUTHENTICATION, INVALID_CODE)
        if not email or not code:
            return invalid
        key = two_factor_cache_key(email)
        try:
            stored = await self.codes.get(key)
            if stored is None or not hmac.compare_digest(
                stored.encode(), str(code).encode()
            ):
                self.logger.info("two_factor_rejected")
                return invalid
            # Whoever deletes the entry owns the code; a concurrent verifier loses
            if not await self.codes.delete(key):
                return invalid
            user = await self._run(self.store.get_user_by_email, email)
            if not user:
                return invalid
            access_token, refresh_token = await self._issue_session_tokens(
                user, ip_address=ip_address, user_agent=user_agent
            )
        except Exception:
            self.logger.exception("two_factor_verification_failed")
            return AuthFailure(FailureKind.UNEXPECTED, "Two-factor verification failed")
        self.logger.info("two_factor_succeeded", user_id=user.id)
        return Authenticated(
            user=user.to_public(),
            access_token=access_token,
            refresh_token=refresh_token,
            message="Two-factor authentication successful",
        )

    # Refresh rotation and logout ---------------------------------------------------

    async def refresh(self, refresh_token: str) -> RefreshResult:
        payload = self.tokens.verify_refresh(refresh_token)
        if not payload:
            return AuthFailure(FailureKind.AUTHENTICATION, INVALID_REFRESH_TOKEN)
        expired = AuthFailure(FailureKind.AUTHENTICATION, EXPIRED_REFRESH_TOKEN)
        try:
            row = await self._run(self.ledger.find_refresh_token, refresh_token)
            if not row or not row.is_usable(utcnow()):
                self.logger.info("refresh_rejected", reason="ledger")
                return expired
            user = await self._run(self.store.get_user_by_email, payload.get("email"))
            if not user:
                return expired
            if not await self._run(self.ledger.revoke_refresh_token, row.id):
                # Another request rotated this token first
                self.logger.warning("refresh_token_reused", user_id=user.id)
                return expired
            access_token, new_refresh_token = await self._issue_session_tokens(
                user, ip_address=row.ip_address, user_agent=row.user_agent
            )
        except Exception:
            self.logger.exception("refresh_failed")
            return AuthFailure(FailureKind.UNEXPECTED, "Failed to refresh token")

        try:
            removed = await self._run(self.ledger.delete_expired_or_revoked_refresh_tokens)
            if removed:
                self.logger.debug("refresh_ledger_swept", removed=removed)
        except Exception as exc:
            self.logger.warning("refresh_ledger_sweep_failed", error=str(exc))

        self.logger.info("refresh_rotated", user_id=user.id)
        return TokensRotated(access_token=access_token, refresh_token=new_refresh_token)

    async def logout(
        self, refresh_token: Optional[str], *, user_id: Optional[str] = None
    ) -> LogoutResult:
        """Revoke ``refresh_token``.

        When ``user_id`` is given, only a token owned by that user is revoked.
        Unknown, already revoked and foreign tokens all report success.
        """
        if not refresh_token:
            return AuthFailure(
                FailureKind.VALIDATION,
                "Refresh token required",
                {"field": "refreshToken"},
            )
        try:
            row = await self._run(self.ledger.find_refresh_token, refresh_token)
            if row and user_id is not None and row.user_id != user_id:
                self.logger.warning("logout_foreign_token", user_id=user_id)
            elif row:
                await self._run(self.ledger.revoke_refresh_token, row.id)
                self.logger.info("logout", user_id=row.user_id)
        except Exception:
            self.logger.exception("logout_failed")
            return AuthFailure(FailureKind.UNEXPECTED, "Logout failed")
        return LoggedOut(message="Logged out successfully")

    # Request authentication -----------------------------------------------------------

    async def authenticate(self, access_token: Optional[str]) -> Optional[AuthContext]:
        """Resolve a bearer access token to the calling user, or None."""
        payload = self.tokens.verify_access(access_token)
        if not payload:
            return None
        user_id = payload.get("userId")
        if not isinstance(user_id, str):
            return None
        user = await self._run(self.store.get_user, user_id)
        if not user:
            return None
        return AuthContext(user_id=user.id, email=user.email, role=user.role)

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self._run(self.store.get_user, user_id)
