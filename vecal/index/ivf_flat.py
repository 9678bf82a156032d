"""
IVF-Flat (Inverted File, flat storage) Index

Partitions vectors into `nlist` clusters with a few Lloyd (k-means)
iterations and keeps one posting list of raw (id, vector) pairs per cluster.
A query scans only the `nprobe` clusters whose centroids are closest.

Build:
    1. Seed centroids from the first nlist vectors; pad by resampling
       inputs at random when there are fewer entries than clusters
    2. `iterations` rounds of assign-to-nearest + recompute-mean (Euclidean);
       an empty cluster keeps its previous centroid
    3. Materialize posting lists from the final assignment

Incremental add/remove never move centroids: drift between rebuilds is
accepted in exchange for O(nlist × d) updates.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from vecal.core.types import IndexEntry, VectorLike


class IVFFlatIndex:
    """
    Clustered inverted-list index with exact scoring inside probed lists.

    Thread Safety:
        None. Owned and mutated by a single VectorDB.
    """

    __slots__ = (
        "_dimension",
        "_nlist",
        "_nprobe",
        "_iterations",
        "_rng",
        "_centroids",
        "_lists",
        "_assignment",
    )

    def __init__(
        self,
        dimension: int,
        nlist: int = 256,
        nprobe: int = 8,
        iterations: int = 5,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        if nlist < 1 or nprobe < 1:
            raise ValueError(f"nlist and nprobe must be >= 1, got {nlist}/{nprobe}")
        self._dimension = dimension
        self._nlist = nlist
        self._nprobe = nprobe
        self._iterations = iterations
        self._rng = rng if rng is not None else np.random.default_rng()
        self._centroids = np.empty((0, dimension), dtype=np.float32)
        self._lists: list[list[IndexEntry]] = []
        # id -> posting list number
        self._assignment: dict[str, int] = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def nlist(self) -> int:
        return self._nlist

    @property
    def nprobe(self) -> int:
        return self._nprobe

    @property
    def centroids(self) -> np.ndarray:
        return self._centroids

    def posting_list(self, cluster: int) -> list[tuple[str, np.ndarray]]:
        return [(entry.id, entry.vector) for entry in self._lists[cluster]]

    def list_sizes(self) -> list[int]:
        return [len(lst) for lst in self._lists]

    # =========================================================================
    # DISTANCES
    # =========================================================================
    @staticmethod
    def _distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        diff = matrix.astype(np.float64) - query.astype(np.float64)
        return np.sqrt(np.einsum("ij,ij->i", diff, diff))

    @classmethod
    def _closest(cls, vector: np.ndarray, centroids: np.ndarray) -> int:
        """
        Index of the nearest centroid.

        NaN distances never win; ties and an all-NaN row pick the first
        centroid.
        """
        distances = cls._distances(vector, centroids)
        return int(np.argmin(np.where(np.isnan(distances), np.inf, distances)))

    def _nearest_centroid(self, vector: np.ndarray) -> int:
        return self._closest(vector, self._centroids)

    # =========================================================================
    # BUILD
    # =========================================================================
    def build(self, entries: Sequence[IndexEntry]) -> None:
        """
        (Re)build centroids and posting lists from scratch.

        Complexity: O(iterations × n × nlist × d)
        """
        self._lists = [[] for _ in range(self._nlist)]
        self._assignment = {}
        if not entries:
            self._centroids = np.empty((0, self._dimension), dtype=np.float32)
            return

        data = np.stack([np.asarray(e.vector, dtype=np.float32) for e in entries])
        n = len(entries)

        seeds = [data[i].copy() for i in range(min(self._nlist, n))]
        while len(seeds) < self._nlist:
            seeds.append(data[int(self._rng.integers(0, n))].copy())
        centroids = np.stack(seeds).astype(np.float32)

        assignment = np.zeros(n, dtype=np.int64)
        for _ in range(self._iterations):
            # assign
            for i in range(n):
                assignment[i] = self._closest(data[i], centroids)
            # update
            for c in range(self._nlist):
                members = data[assignment == c]
                if len(members) == 0:
                    continue
                centroids[c] = members.astype(np.float64).mean(axis=0).astype(np.float32)

        if self._iterations == 0:
            for i in range(n):
                assignment[i] = self._closest(data[i], centroids)

        self._centroids = centroids
        for i, entry in enumerate(entries):
            cluster = int(assignment[i])
            self._lists[cluster].append(IndexEntry(id=entry.id, vector=data[i]))
            self._assignment[entry.id] = cluster

    # =========================================================================
    # INCREMENTAL UPDATES
    # =========================================================================
    def add(self, id: str, vector: VectorLike) -> None:
        """File the vector under its nearest centroid. Centroids stay fixed."""
        vec = np.asarray(vector, dtype=np.float32)
        if id in self._assignment:
            self._discard(id, self._assignment[id])
        if len(self._centroids) == 0:
            # built from zero entries: this vector becomes the first centroid
            self._centroids = vec.reshape(1, -1).copy()
            self._lists = [[] for _ in range(self._nlist)]
        cluster = self._nearest_centroid(vec)
        self._lists[cluster].append(IndexEntry(id=id, vector=vec))
        self._assignment[id] = cluster

    def remove(self, id: str, vector: VectorLike) -> None:
        """Drop id from the list it was filed in."""
        if len(self._centroids) == 0:
            return
        cluster = self._assignment.get(id)
        if cluster is None:
            cluster = self._nearest_centroid(np.asarray(vector, dtype=np.float32))
        self._discard(id, cluster)

    def _discard(self, id: str, cluster: int) -> None:
        posting = self._lists[cluster]
        for pos, entry in enumerate(posting):
            if entry.id == id:
                del posting[pos]
                break
        self._assignment.pop(id, None)

    # =========================================================================
    # SEARCH
    # =========================================================================
    def search(self, query: VectorLike, k: int) -> list[tuple[str, float]]:
        """
        Approximate k-NN.

        Returns:
            Up to k (id, euclidean distance) pairs, ascending by distance
        """
        if len(self._centroids) == 0 or k <= 0:
            return []
        q = np.asarray(query, dtype=np.float32)
        order = np.argsort(self._distances(q, self._centroids), kind="stable")
        candidates: list[IndexEntry] = []
        for cluster in order[: min(self._nprobe, len(order))]:
            candidates.extend(self._lists[int(cluster)])
        if not candidates:
            return []

        distances = self._distances(q, np.stack([c.vector for c in candidates]))
        ranked = np.argsort(distances, kind="stable")[:k]
        return [(candidates[i].id, float(distances[i])) for i in ranked]

    # =========================================================================
    # INSPECTION
    # =========================================================================
    def ids(self) -> set[str]:
        return set(self._assignment)

    def __contains__(self, id: object) -> bool:
        return id in self._assignment

    def __len__(self) -> int:
        return len(self._assignment)

    def __repr__(self) -> str:
        return (
            f"IVFFlatIndex(dimension={self._dimension}, nlist={self._nlist}, "
            f"nprobe={self._nprobe}, size={len(self)})"
        )
