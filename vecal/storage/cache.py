"""
Bounded LRU Cache

Id-to-record lookup in front of the record store. Capacity is owned by the
caller (VectorDB resizes it as the collection grows or shrinks), so the cache
itself knows nothing about records.

Ordering:
    OrderedDict order is recency order: first key = least recently used,
    last key = most recently used.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Generic, Iterator, Optional, TypeVar

K = TypeVar("K")
V = TypeVar("V")


# =============================================================================
# CACHE STATISTICS
# =============================================================================
@dataclass
class CacheStats:
    """Cache performance statistics."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 4),
        }


# =============================================================================
# LRU CACHE
# =============================================================================
class LRUCache(Generic[K, V]):
    """
    Fixed-capacity map with least-recently-used eviction.

    Complexity: O(1) for get/set/delete; set_max_size is O(evicted).

    Example:
        cache: LRUCache[str, VectorRecord] = LRUCache(max_size=2)
        cache.set("a", rec_a)
        cache.set("b", rec_b)
        cache.get("a")          # promotes "a"
        cache.set("c", rec_c)   # evicts "b"
    """

    __slots__ = ("_data", "_max_size", "_stats")

    def __init__(self, max_size: int = 1) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._data: OrderedDict[K, V] = OrderedDict()
        self._max_size = max_size
        self._stats = CacheStats()

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def get(self, key: K) -> Optional[V]:
        """Value for key promoted to most-recently-used, or None."""
        if key not in self._data:
            self._stats.misses += 1
            return None
        self._data.move_to_end(key)
        self._stats.hits += 1
        return self._data[key]

    def set(self, key: K, value: V) -> None:
        """Insert or overwrite as most-recently-used, then enforce capacity."""
        self._data[key] = value
        self._data.move_to_end(key)
        self._evict()

    def delete(self, key: K) -> bool:
        """Remove key; True if it was present."""
        if key not in self._data:
            return False
        del self._data[key]
        return True

    def set_max_size(self, max_size: int) -> None:
        """Change capacity. Shrinking evicts LRU entries immediately."""
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        self._evict()

    def _evict(self) -> None:
        while len(self._data) > self._max_size:
            self._data.popitem(last=False)
            self._stats.evictions += 1

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        return list(self._data.keys())

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"LRUCache(size={len(self._data)}, max_size={self._max_size})"
