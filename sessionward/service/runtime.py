from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from sessionward.config import Settings, get_settings
from sessionward.logging import get_logger
from sessionward.service.auth import SessionService
from sessionward.storage.memory import MemoryRevocationStore, MemoryUserStore
from sessionward.storage.redis_store import RedisRevocationStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        if parsed.username:
            netloc = f"{parsed.username}:***@{netloc}"
        else:
            netloc = f":***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Explicitly constructed service graph for one process.

    Owns the revocation store connection; ``close`` releases it. Create it
    through ``runtime_scope`` so release is guaranteed.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        # Persistent user records live outside this service; the in-memory
        # directory stands in for them.
        self.users = MemoryUserStore()
        self.store = self._build_store()
        self.sessions = SessionService(self.users, self.store, self.settings)
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            environment=self.settings.environment.value,
        )

    def _build_store(self) -> Union[RedisRevocationStore, MemoryRevocationStore]:
        if self.settings.use_memory_store:
            return MemoryRevocationStore()

        redis_error: Exception | None = None
        store = RedisRevocationStore(
            self.settings.redis_url,
            socket_timeout=self.settings.store_timeout_seconds,
            operation_timeout=self.settings.store_timeout_seconds,
            scan_batch_size=self.settings.store_scan_batch_size,
        )
        try:
            store.verify_connection()
            return store
        except (RedisError, OSError) as exc:
            redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for token revocation; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for an in-memory fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error),
            message=(
                f"Running without Redis under {fallback_mode}; revocation state is "
                "in-memory and not shared between workers."
            ),
            mode=fallback_mode,
        )
        return MemoryRevocationStore()

    async def close(self) -> None:
        await self.store.close()
        logger.info("runtime_closed")


@asynccontextmanager
async def runtime_scope(settings: Optional[Settings] = None) -> AsyncIterator[Runtime]:
    runtime = Runtime(settings)
    try:
        yield runtime
    finally:
        await runtime.close()
