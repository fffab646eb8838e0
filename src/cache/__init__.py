"""Shared cache port backed by Redis."""

from src.cache.redis_cache import Cache, NullCache, RedisCache, site_cache_prefix

__all__ = ["Cache", "NullCache", "RedisCache", "site_cache_prefix"]
