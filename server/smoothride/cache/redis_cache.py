"""Redis implementation of CacheStore (redis-py asyncio client)."""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from smoothride.core.errors import DependencyUnavailable

log = structlog.get_logger()

# Keys deleted per SCAN batch during prefix invalidation.
_SCAN_BATCH = 500


class RedisCache:
    """CacheStore backed by Redis. Every RedisError becomes DependencyUnavailable."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise DependencyUnavailable(f"redis get failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise DependencyUnavailable(f"redis set failed: {e}") from e

    async def incr(self, key: str, ttl_seconds: int) -> int:
        # One MULTI: the key never exists without its TTL.
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=ttl_seconds, nx=True)
                pipe.incr(key)
                _, count = await pipe.execute()
            return int(count)
        except RedisError as e:
            raise DependencyUnavailable(f"redis incr failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise DependencyUnavailable(f"redis delete failed: {e}") from e

    async def invalidate_by_prefix(self, prefix: str) -> int:
        # SCAN instead of KEYS so large keyspaces don't block the server.
        removed = 0
        batch: list[str] = []
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH:
                    removed += await self._client.delete(*batch)
                    batch.clear()
            if batch:
                removed += await self._client.delete(*batch)
        except RedisError as e:
            raise DependencyUnavailable(f"redis prefix delete failed: {e}") from e
        log.debug("cache_prefix_invalidated", prefix=prefix, removed=removed)
        return removed

    async def close(self) -> None:
        await self._client.aclose()
