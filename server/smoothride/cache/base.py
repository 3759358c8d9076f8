"""Cache and counter store interface (port).

Implementations raise DependencyUnavailable on any backend failure; callers
treat the cache as best-effort and fall through to storage.
"""

from __future__ import annotations

from typing import Protocol


class CacheStore(Protocol):
    """Port: string values with TTL, expiring counters, prefix invalidation."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter; the TTL starts when the counter is created."""
        ...

    async def delete(self, key: str) -> None: ...

    async def invalidate_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns how many were removed."""
        ...
