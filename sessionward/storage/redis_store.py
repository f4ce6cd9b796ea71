from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, TypeVar

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError, ResponseError

from sessionward.logging import get_logger
from sessionward.storage.errors import StoreUnavailable
from sessionward.storage.keys import escape_glob

logger = get_logger(__name__)

T = TypeVar("T")

# Atomic get-and-delete for servers without GETDEL (Redis < 6.2)
_POP_SCRIPT = """
local value = redis.call('GET', KEYS[1])
if value then
    redis.call('DEL', KEYS[1])
end
return value
"""


class RedisRevocationStore:
    """Redis-backed revocation store.

    Each command is bounded by ``operation_timeout`` on top of the socket
    timeouts. Driver errors and timeouts surface as ``StoreUnavailable``; the
    raw driver text is logged here and never attached to the raised message.
    Nothing is retried.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 5.0,
        operation_timeout: float = DEFAULT_OPERATION_TIMEOUT,
        scan_batch_size: int = 500,
        client: Any = None,
    ) -> None:
        self.redis_url = redis_url
        self.operation_timeout = operation_timeout
        self.scan_batch_size = scan_batch_size
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._getdel_supported = True

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving requests."""
        # A short-lived sync client keeps the async pool off the startup loop.
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.operation_timeout,
            socket_connect_timeout=self.operation_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.warning(
                "revocation_store_call_failed",
                operation=operation,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StoreUnavailable(operation) from exc

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        await self._call("put", self.client.set(key, value, ex=int(ttl_seconds)))

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", self.client.get(key))

    async def delete(self, key: str) -> bool:
        return bool(await self._call("delete", self.client.delete(key)))

    async def pop(self, key: str) -> Optional[str]:
        if self._getdel_supported:
            try:
                return await self._call("pop", self.client.getdel(key))
            except StoreUnavailable as exc:
                if not isinstance(exc.__cause__, ResponseError):
                    raise
                # Older servers answer GETDEL with "unknown command"
                self._getdel_supported = False
                logger.info("redis_getdel_unsupported_using_script")
        return await self._call("pop", self.client.eval(_POP_SCRIPT, 1, key))

    async def delete_by_prefix(self, prefix: str) -> int:
        """Enumerate matching keys with SCAN and delete them batch by batch.

        SCAN guarantees only keys present for the whole sweep are returned, so
        a key written concurrently with the sweep may be left behind.
        """
        pattern = f"{escape_glob(prefix)}*"
        deleted = 0
        cursor: Any = 0
        while True:
            cursor, keys = await self._call(
                "scan",
                self.client.scan(cursor=cursor, match=pattern, count=self.scan_batch_size),
            )
            if keys:
                deleted += int(
                    await self._call("delete_by_prefix", self.client.delete(*keys))
                )
            if int(cursor) == 0:
                break
        return deleted

    async def close(self) -> None:
        """Close the connection pool. Call when shutting down the runtime."""
        await self.client.aclose()


__all__ = ["RedisRevocationStore"]
