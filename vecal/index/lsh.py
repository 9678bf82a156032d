"""
Random-Hyperplane LSH Index

Buckets vectors by the sign pattern of their projections onto `num_hashes`
random hyperplanes. Near vectors (in angle) tend to share signatures, so a
query only inspects its own bucket plus buckets within a small Hamming radius.

Algorithm Details:
    - Hyperplane components drawn uniform in [-1, 1]
    - Signature bit i = '1' if plane_i · v >= 0 else '0'
    - Radius probing enumerates every signature reachable by flipping
      1..radius bits

Complexity:
    - add/remove: O(num_hashes × d)
    - query: O(num_hashes × d + C(num_hashes, <=radius))

The index returns unordered candidate ids only; scoring is the caller's job.
"""

from __future__ import annotations

from typing import Iterator, Optional

import numpy as np

from vecal.core.types import VectorLike


class LSHIndex:
    """
    Hash-bucket candidate index.

    Example:
        index = LSHIndex(dimension=3, num_hashes=8, rng=np.random.default_rng(7))
        index.add("a", [0.9, 0.1, 0.1])
        index.query([0.85, 0.2, 0.15], radius=1)  # ["a", ...]
    """

    __slots__ = ("_dimension", "_num_hashes", "_hyperplanes", "_buckets")

    def __init__(
        self,
        dimension: int,
        num_hashes: int = 10,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """
        Args:
            dimension: Vector dimensionality
            num_hashes: Number of hyperplanes (signature length)
            rng: Random source for the hyperplanes (fresh generator if None)
        """
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        if num_hashes < 1:
            raise ValueError(f"num_hashes must be >= 1, got {num_hashes}")
        rng = rng if rng is not None else np.random.default_rng()
        self._dimension = dimension
        self._num_hashes = num_hashes
        self._hyperplanes = rng.uniform(-1.0, 1.0, size=(num_hashes, dimension)).astype(np.float32)
        self._buckets: dict[str, set[str]] = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def num_hashes(self) -> int:
        return self._num_hashes

    @property
    def hyperplanes(self) -> np.ndarray:
        return self._hyperplanes

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    # =========================================================================
    # HASHING
    # =========================================================================
    def signature(self, vector: VectorLike) -> str:
        """Bit string of hyperplane signs for a vector."""
        projections = self._hyperplanes.astype(np.float64) @ np.asarray(vector, dtype=np.float64)
        return "".join("1" if value >= 0 else "0" for value in projections)

    @staticmethod
    def neighbour_signatures(signature: str, radius: int) -> list[str]:
        """
        Every signature within Hamming distance 1..radius of `signature`.

        Built by recursive bit-flip enumeration; the original signature is
        excluded.
        """
        keys: set[str] = set()
        bits = list(signature)

        def recurse(prefix: str, idx: int, remaining: int) -> None:
            if remaining == 0 or idx == len(bits):
                keys.add(prefix + "".join(bits[idx:]))
                return
            recurse(prefix + bits[idx], idx + 1, remaining)
            flipped = "0" if bits[idx] == "1" else "1"
            recurse(prefix + flipped, idx + 1, remaining - 1)

        recurse("", 0, radius)
        keys.discard(signature)
        return sorted(keys)

    # =========================================================================
    # MUTATION
    # =========================================================================
    def add(self, id: str, vector: VectorLike) -> None:
        """Insert id into the bucket of its signature."""
        self._buckets.setdefault(self.signature(vector), set()).add(id)

    def remove(self, id: str, vector: VectorLike) -> None:
        """Remove id from the bucket of `vector`; empty buckets are dropped."""
        key = self.signature(vector)
        bucket = self._buckets.get(key)
        if bucket is None:
            return
        bucket.discard(id)
        if not bucket:
            del self._buckets[key]

    # =========================================================================
    # QUERY
    # =========================================================================
    def query(self, vector: VectorLike, radius: int = 0) -> list[str]:
        """
        Candidate ids for a query vector.

        Args:
            vector: Query vector
            radius: Max number of flipped signature bits to probe (0 = exact
                bucket only). Cost grows combinatorially; keep it small.

        Returns:
            Unordered, duplicate-free list of ids
        """
        key = self.signature(vector)
        results: set[str] = set(self._buckets.get(key, ()))
        if radius > 0:
            for neighbour in self.neighbour_signatures(key, radius):
                results.update(self._buckets.get(neighbour, ()))
        return list(results)

    # =========================================================================
    # INSPECTION
    # =========================================================================
    def ids(self) -> set[str]:
        """Every id held in any bucket."""
        out: set[str] = set()
        for bucket in self._buckets.values():
            out.update(bucket)
        return out

    def buckets(self) -> Iterator[tuple[str, frozenset[str]]]:
        for key, bucket in self._buckets.items():
            yield key, frozenset(bucket)

    def __contains__(self, id: object) -> bool:
        return any(id in bucket for bucket in self._buckets.values())

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def __repr__(self) -> str:
        return (
            f"LSHIndex(dimension={self._dimension}, num_hashes={self._num_hashes}, "
            f"buckets={len(self._buckets)})"
        )
