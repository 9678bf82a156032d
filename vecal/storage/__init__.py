"""
Storage Module: Record Stores and Read-Through Cache

Provides:
    - InMemoryRecordStore: dict-backed async store
    - RedisRecordStore: redis.asyncio hash-per-collection store (optional
      dependency, imported on open)
    - LRUCache: bounded id-to-record cache
"""

from vecal.storage.cache import CacheStats, LRUCache
from vecal.storage.memory import InMemoryRecordStore
from vecal.storage.redis_store import RedisRecordStore

__all__ = [
    "CacheStats",
    "LRUCache",
    "InMemoryRecordStore",
    "RedisRecordStore",
]
