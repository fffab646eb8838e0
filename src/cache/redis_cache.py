"""
Shared cache port with TTL and prefix invalidation.

Processors receive a ``Cache`` rather than keeping module-level state,
so cached provider responses are shared by every worker and survive a
worker restart. Values are JSON; keys are namespaced under ``cache:``.

Cache misses and Redis errors look the same to callers: the cache is
an optimization, and an unreachable Redis only costs recomputation.
"""

import json
import logging
from typing import Any, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)

CACHE_NAMESPACE = "cache:"


class Cache(Protocol):
    """Port used by processors: get / set with TTL / invalidate by prefix."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def invalidate_prefix(self, prefix: str) -> int: ...


class RedisCache:
    """Cache over Redis strings with SCAN-based prefix invalidation."""

    def __init__(self, redis_client: redis.Redis | None, scan_count: int = 200) -> None:
        self._redis = redis_client
        self._scan_count = scan_count

    async def get(self, key: str) -> Any | None:
        if self._redis is None:
            return None
        try:
            cached = await self._redis.get(CACHE_NAMESPACE + key)
        except Exception as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if cached is None:
            return None
        logger.debug("Cache hit: %s", key)
        return json.loads(cached)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.setex(CACHE_NAMESPACE + key, ttl_seconds, json.dumps(value))
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``. Returns the number deleted."""
        if self._redis is None:
            return 0
        deleted = 0
        try:
            batch: list[str] = []
            async for key in self._redis.scan_iter(
                match=f"{CACHE_NAMESPACE}{prefix}*", count=self._scan_count
            ):
                batch.append(key)
                if len(batch) >= self._scan_count:
                    deleted += await self._redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._redis.delete(*batch)
        except Exception as e:
            logger.warning("Cache invalidation failed for %s*: %s", prefix, e)
        if deleted:
            logger.debug("Invalidated %d cache keys under %s", deleted, prefix)
        return deleted


class NullCache:
    """Cache that never stores anything."""

    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        return None

    async def invalidate_prefix(self, prefix: str) -> int:
        return 0


def site_cache_prefix(site_id: str) -> str:
    """Prefix for every cache entry derived from one site's data."""
    return f"site:{site_id}:"
