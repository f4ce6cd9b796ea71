from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from sessionward.logging import get_logger
from sessionward.storage.errors import ConstraintViolation
from sessionward.storage.models import User

logger = get_logger(__name__)


class MemoryRevocationStore:
    """In-process revocation store for tests and local development.

    Entries expire against ``clock`` (monotonic seconds by default). State is
    lost on restart and not shared between processes, so this store only backs
    a single worker.
    """

    DEFAULT_PURGE_INTERVAL = 1000

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], float]] = None,
        purge_interval: int = DEFAULT_PURGE_INTERVAL,
    ) -> None:
        if purge_interval <= 0:
            raise ValueError("purge_interval must be positive")
        self._clock = clock or time.monotonic
        self._data_lock = threading.Lock()
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._purge_interval = purge_interval
        self._writes_since_purge = 0

    def _live(self, key: str, now: float) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= now:
            self._entries.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        purged = 0
        with self._data_lock:
            now = self._clock()
            self._entries[key] = (value, now + ttl_seconds)
            self._writes_since_purge += 1
            # Entries never read again would otherwise outlive their TTL
            if self._writes_since_purge >= self._purge_interval:
                purged = self._purge_locked(now)
        if purged:
            logger.debug("memory_store_purged", count=purged)

    async def get(self, key: str) -> Optional[str]:
        with self._data_lock:
            return self._live(key, self._clock())

    async def delete(self, key: str) -> bool:
        with self._data_lock:
            live = self._live(key, self._clock())
            self._entries.pop(key, None)
            return live is not None

    async def pop(self, key: str) -> Optional[str]:
        with self._data_lock:
            value = self._live(key, self._clock())
            self._entries.pop(key, None)
            return value

    async def delete_by_prefix(self, prefix: str) -> int:
        with self._data_lock:
            now = self._clock()
            matching = [key for key in self._entries if key.startswith(prefix)]
            deleted = 0
            for key in matching:
                if self._live(key, now) is not None:
                    deleted += 1
                self._entries.pop(key, None)
            return deleted

    async def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime of ``key`` in seconds, or None when absent."""
        with self._data_lock:
            now = self._clock()
            if self._live(key, now) is None:
                return None
            return self._entries[key][1] - now

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, (_, exp) in self._entries.items() if exp <= now]
        for key in expired:
            self._entries.pop(key, None)
        self._writes_since_purge = 0
        return len(expired)

    def purge_expired(self) -> int:
        with self._data_lock:
            purged = self._purge_locked(self._clock())
        if purged:
            logger.debug("memory_store_purged", count=purged)
        return purged

    async def close(self) -> None:
        with self._data_lock:
            self._entries.clear()


class MemoryUserStore:
    """Dictionary-backed user records keyed by id with a unique email index."""

    def __init__(self) -> None:
        self._data_lock = threading.Lock()
        self.users: Dict[str, User] = {}

    def create_user(
        self,
        email: str,
        name: str,
        password_hash: str,
        *,
        password_algo: str = "argon2id",
        role: str = "user",
    ) -> User:
        normalized = email.strip().lower()
        with self._data_lock:
            if any(existing.email == normalized for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(
                normalized,
                name,
                password_hash,
                password_algo=password_algo,
                role=role,
            )
            self.users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        with self._data_lock:
            for user in self.users.values():
                if user.email == normalized:
                    return user
        return None

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            user.role = role
            return user
