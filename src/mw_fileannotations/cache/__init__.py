"""
Cache Package

Read-through caching of rendered enrichment fragments: entry storage
(in-memory or Redis), the coordinator implementing single-flight, elastic
TTLs and freshness floors, and per-viewer freshness watermarks.
"""

from .store import CacheEntry, CacheStore, InMemoryCacheStore
from .redis_store import RedisCacheStore
from .coordinator import CacheCoordinator, ComputeResult
from .watermarks import WatermarkStore, InMemoryWatermarkStore, RedisWatermarkStore

__all__ = [
    "CacheEntry",
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
    "CacheCoordinator",
    "ComputeResult",
    "WatermarkStore",
    "InMemoryWatermarkStore",
    "RedisWatermarkStore",
]
