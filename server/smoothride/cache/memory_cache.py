"""In-memory cache with per-key TTL and max-size eviction. Zero dependencies."""

from __future__ import annotations

import time
from collections.abc import Callable


class MemoryCache:
    """CacheStore backed by a dict of (value, expires_at) pairs."""

    def __init__(self, max_entries: int = 10_000,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, tuple[str, float]] = {}
        self._max_entries = max_entries
        self._clock = clock

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() >= entry[1]:
            del self._store[key]
            return None
        return entry

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [k for k, (_, exp) in self._store.items() if now >= exp]
        for k in expired:
            del self._store[k]

    def _make_room(self, key: str) -> None:
        if key in self._store or len(self._store) < self._max_entries:
            return
        self._evict_expired()
        # Still full: drop the entries closest to expiry.
        while len(self._store) >= self._max_entries:
            oldest = min(self._store, key=lambda k: self._store[k][1])
            del self._store[oldest]

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._make_room(key)
        self._store[key] = (value, self._clock() + ttl_seconds)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        entry = self._live(key)
        if entry is None:
            self._make_room(key)
            self._store[key] = ("1", self._clock() + ttl_seconds)
            return 1
        count = int(entry[0]) + 1
        self._store[key] = (str(count), entry[1])
        return count

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def invalidate_by_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._store if k.startswith(prefix)]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def __len__(self) -> int:
        self._evict_expired()
        return len(self._store)
