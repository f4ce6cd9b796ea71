from __future__ import annotations

from typing import Optional, Protocol


class RevocationStore(Protocol):
    """Key-value contract with per-key TTL backing blacklist and renewal records.

    Every method may suspend and raises ``StoreUnavailable`` on transport
    failure or timeout. Implementations never retry internally.
    """

    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def delete(self, key: str) -> bool: ...

    async def pop(self, key: str) -> Optional[str]:
        """Atomically delete ``key`` and return its prior value, if any."""
        ...

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``.

        Best effort: keys written while the sweep runs may survive it.
        """
        ...

    async def close(self) -> None: ...


__all__ = ["RevocationStore"]
