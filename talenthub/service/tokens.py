from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from talenthub.config import Settings
from talenthub.logging import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
VERIFICATION_TOKEN_TYPE = "verification"

EMAIL_VERIFICATION = "email-verification"
TWO_FACTOR = "2fa"

# Signature-level lifetime per verification subtype
_VERIFICATION_TTL_SECONDS = {
    EMAIL_VERIFICATION: 60 * 60,
    TWO_FACTOR: 10 * 60,
}


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    token_id: str
    expires_at: datetime


class TokenCodec:
    """Mint and verify HS256 tokens for access, refresh and verification flows.

    Access and verification tokens are signed with ``jwt_secret``; refresh
    tokens use the separate ``jwt_refresh_secret``. Every verify method
    returns ``None`` on any failure instead of raising.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
        leeway_seconds: int = 0,
    ) -> None:
        self.settings = settings
        self._clock = clock
        # Seconds of clock skew tolerated past exp; zero unless a caller opts in
        self._leeway = leeway_seconds

    # Encoding ---------------------------------------------------------------

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    @staticmethod
    def _sign(secret: str, signing_input: str) -> bytes:
        return hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()

    def _encode_jwt(self, payload: dict[str, Any], secret: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        signature = self._sign(secret, signing_input)
        return f"{signing_input}.{self._encode_segment(signature)}"

    def _decode_jwt(self, token: Any, secret: str) -> Optional[dict[str, Any]]:
        if not isinstance(token, str) or not token:
            return None
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Reject anything but HS256 to rule out algorithm confusion
        try:
            header = json.loads(self._decode_segment(header_b64))
            if not isinstance(header, dict) or header.get("alg") != "HS256":
                logger.warning("jwt_invalid_algorithm")
                return None
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed")
            return None

        signing_input = f"{header_b64}.{payload_b64}"
        expected_sig = self._encode_segment(self._sign(secret, signing_input))
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None
        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        exp = payload.get("exp")
        try:
            exp_ts = float(exp)
        except (TypeError, ValueError):
            return None
        if exp_ts <= self._clock() - self._leeway:
            return None
        return payload

    def _base_claims(self, ttl_seconds: int) -> dict[str, Any]:
        now = int(self._clock())
        return {
            "iss": self.settings.jwt_issuer,
            "iat": now,
            "exp": now + ttl_seconds,
            "jti": str(uuid.uuid4()),
        }

    # Issuing ------------------------------------------------------------------

    def issue_access(self, user_id: str, email: str, role: str) -> str:
        payload = self._base_claims(self.settings.access_token_ttl_seconds)
        payload.update(
            {
                "userId": user_id,
                "email": email,
                "role": role,
                "tokenType": ACCESS_TOKEN_TYPE,
            }
        )
        return self._encode_jwt(payload, self.settings.jwt_secret)

    def issue_refresh(self, user_id: str, email: str) -> IssuedRefreshToken:
        token_id = str(uuid.uuid4())
        payload = self._base_claims(self.settings.refresh_token_ttl_seconds)
        payload.update(
            {
                "userId": user_id,
                "email": email,
                "tokenId": token_id,
                "tokenType": REFRESH_TOKEN_TYPE,
            }
        )
        token = self._encode_jwt(payload, self.settings.jwt_refresh_secret)
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        return IssuedRefreshToken(token=token, token_id=token_id, expires_at=expires_at)

    def issue_verification(
        self, user_id: str, email: str, purpose: str, expires: int
    ) -> str:
        """Sign a verification payload; ``expires`` is epoch milliseconds."""

        if purpose not in _VERIFICATION_TTL_SECONDS:
            raise ValueError(f"unknown verification token type: {purpose}")
        payload = self._base_claims(_VERIFICATION_TTL_SECONDS[purpose])
        payload.update(
            {
                "userId": user_id,
                "email": email,
                "type": purpose,
                "expires": int(expires),
                "tokenType": VERIFICATION_TOKEN_TYPE,
            }
        )
        return self._encode_jwt(payload, self.settings.jwt_secret)

    def verification_expiry(self, ttl_seconds: int) -> int:
        """Epoch milliseconds ``ttl_seconds`` from now."""
        return int((self._clock() + ttl_seconds) * 1000)

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    # Verifying ----------------------------------------------------------------

    def verify_access(self, token: Any) -> Optional[dict[str, Any]]:
        payload = self._decode_jwt(token, self.settings.jwt_secret)
        if not payload or payload.get("tokenType") != ACCESS_TOKEN_TYPE:
            return None
        return payload

    def verify_refresh(self, token: Any) -> Optional[dict[str, Any]]:
        payload = self._decode_jwt(token, self.settings.jwt_refresh_secret)
        if not payload or payload.get("tokenType") != REFRESH_TOKEN_TYPE:
            return None
        return payload

    def verify_generic(self, token: Any) -> Optional[dict[str, Any]]:
        """Signature check only; callers inspect ``type`` and ``expires``."""
        return self._decode_jwt(token, self.settings.jwt_secret)
