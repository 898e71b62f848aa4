"""
Device cache module.

This module provides the cache abstraction used by the ingestion
pipeline to resolve devices without a round-trip to the relational
store, and its Redis implementation.
"""

from cache.store import CacheError, DeviceCache
from cache.redis_cache import RedisDeviceCache, DEFAULT_CACHE_TTL

__all__ = ["CacheError", "DeviceCache", "RedisDeviceCache", "DEFAULT_CACHE_TTL"]
