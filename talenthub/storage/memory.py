from __future__ import annotations

import json
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from talenthub.logging import get_logger
from talenthub.storage.errors import ConstraintViolation, StoreNotFound
from talenthub.storage.models import RefreshToken, User, UserRole, utcnow


class MemoryStore:
    """In-process credential store and refresh token ledger.

    Used for local development and tests. When ``fs_root`` is given, state is
    mirrored to ``<fs_root>/state/memory_store.json`` after each write and
    reloaded on construction.
    """

    _FLAG_FIELDS = {"two_factor_enabled", "role", "name", "phone"}

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        # RLock so helpers can be called while a public method holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    # Credential store ------------------------------------------------------

    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        role: str = UserRole.CANDIDATE.value,
        phone: Optional[str] = None,
    ) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                name=name,
                password_hash=password_hash,
                role=role,
                phone=phone,
            )
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def list_users(self, limit: int = 100) -> List[User]:
        with self._data_lock:
            return sorted(self.users.values(), key=lambda u: u.created_at, reverse=True)[
                :limit
            ]

    def update_flags(self, user_id: str, **patch) -> User:
        unknown = set(patch) - self._FLAG_FIELDS
        if unknown:
            raise ValueError(f"unsupported user fields: {sorted(unknown)}")
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise StoreNotFound(user_id)
            for key, value in patch.items():
                setattr(user, key, value)
            user.updated_at = utcnow()
            self._persist_state()
            return user

    def update_password(self, user_id: str, password_hash: str) -> User:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise StoreNotFound(user_id)
            user.password_hash = password_hash
            user.updated_at = utcnow()
            self._persist_state()
            return user

    # Refresh token ledger --------------------------------------------------

    def insert_refresh_token(
        self,
        token: str,
        user_id: str,
        expires_at: datetime,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> RefreshToken:
        with self._data_lock:
            if any(row.token == token for row in self.refresh_tokens.values()):
                raise ConstraintViolation(
                    "refresh token already exists", {"field": "token"}
                )
            if user_id not in self.users:
                raise ConstraintViolation("unknown user", {"field": "user_id"})
            row = RefreshToken.new(
                user_id,
                token,
                expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            self.refresh_tokens[row.id] = row
            self._persist_state()
            return row

    def find_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._data_lock:
            return next(
                (row for row in self.refresh_tokens.values() if row.token == token),
                None,
            )

    def revoke_refresh_token(self, row_id: str) -> bool:
        """Flip ``revoked`` from False to True.

        Returns True only for the caller that performed the flip; a row that is
        missing or already revoked returns False.
        """
        with self._data_lock:
            row = self.refresh_tokens.get(row_id)
            if row is None or row.revoked:
                return False
            row.revoked = True
            self._persist_state()
            return True

    def delete_expired_or_revoked_refresh_tokens(self) -> int:
        now = utcnow()
        with self._data_lock:
            stale = [
                row_id
                for row_id, row in self.refresh_tokens.items()
                if row.revoked or row.is_expired(now)
            ]
            for row_id in stale:
                del self.refresh_tokens[row_id]
            if stale:
                self._persist_state()
            return len(stale)

    def list_refresh_tokens(self, user_id: str) -> List[RefreshToken]:
        with self._data_lock:
            return [row for row in self.refresh_tokens.values() if row.user_id == user_id]

    # Persistence -----------------------------------------------------------

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "refresh_tokens": [
                self._serialize_refresh_token(r) for r in self.refresh_tokens.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.refresh_tokens = {
            r["id"]: self._deserialize_refresh_token(r)
            for r in data.get("refresh_tokens", [])
        }
        self.logger.info(
            "memory_store_loaded",
            users=len(self.users),
            refresh_tokens=len(self.refresh_tokens),
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "password_hash": user.password_hash,
            "role": user.role,
            "two_factor_enabled": user.two_factor_enabled,
            "phone": user.phone,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=str(data["id"]),
            email=data["email"],
            name=data.get("name", ""),
            password_hash=data["password_hash"],
            role=data.get("role", UserRole.CANDIDATE.value),
            two_factor_enabled=data.get("two_factor_enabled", False),
            phone=data.get("phone"),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(
                data.get("updated_at", data["created_at"])
            ),
        )

    def _serialize_refresh_token(self, row: RefreshToken) -> dict:
        return {
            "id": row.id,
            "user_id": row.user_id,
            "token": row.token,
            "expires_at": self._serialize_datetime(row.expires_at),
            "revoked": row.revoked,
            "ip_address": row.ip_address,
            "user_agent": row.user_agent,
            "created_at": self._serialize_datetime(row.created_at),
        }

    def _deserialize_refresh_token(self, data: dict) -> RefreshToken:
        return RefreshToken(
            id=data["id"],
            user_id=data["user_id"],
            token=data["token"],
            expires_at=self._deserialize_datetime(data["expires_at"]),
            revoked=data.get("revoked", False),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            created_at=self._deserialize_datetime(data["created_at"]),
        )


class MemoryCache:
    """TTL-bound key/value cache for one-time codes without Redis.

    Expired entries are dropped when read and swept on every write. Only suitable for a single process; the
    runtime uses it when Redis is unavailable under TEST_MODE or
    ALLOW_REDIS_FALLBACK_DEV.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live_entry(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def _evict_expired(self, now: float) -> int:
        stale = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in stale:
            del self._entries[key]
        return len(stale)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._entries[key] = (value, now + ttl_seconds)

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live_entry(key)

    async def delete(self, key: str) -> bool:
        with self._lock:
            present = self._live_entry(key) is not None
            self._entries.pop(key, None)
            return present

    def verify_connection(self) -> None:
        return None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
