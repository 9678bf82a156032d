"""
Flat HNSW-Style Proximity Graph

Single-layer, degree-bounded nearest-neighbor graph.

Algorithm Details:
    - The first inserted vector becomes the entry point with no edges
    - Every later insertion scans all stored vectors exactly, links the new
      node to its M nearest and adds the reverse edge to each of them
      (only the new node's out-degree is capped at M)
    - search() ranks every stored vector exactly; the edges are not walked
    - greedy_search() walks the edges with a bounded beam from the entry point

This is not a hierarchical structure: there is one layer and construction is
O(n) per insertion.

Complexity (n vectors, d dims):
    - add: O(n × d)
    - search: O(n × d)
    - greedy_search: O(ef × degree × d) per expansion
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from vecal.core.types import IndexEntry, VectorLike


# =============================================================================
# GRAPH NODE
# =============================================================================
@dataclass(slots=True)
class HNSWNode:
    """
    Graph node for one vector.

    neighbors holds outgoing edges in insertion order; the first up-to-M
    come from the node's own insertion, the rest are back-links added when
    later nodes chose it as a neighbor.
    """
    id: str
    vector: np.ndarray
    neighbors: list[str] = field(default_factory=list)


# =============================================================================
# HNSW INDEX
# =============================================================================
class HNSWIndex:
    """
    Flat proximity-graph index.

    Build is deterministic: the same entries in the same order always give
    the same graph, so it can be built on a worker process or in-process
    interchangeably.
    """

    __slots__ = ("_dimension", "_M", "_ef_construction", "_ef_search", "_nodes", "_entry_point")

    def __init__(
        self,
        dimension: int,
        M: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
    ) -> None:
        """
        Args:
            dimension: Vector dimensionality
            M: Neighbors linked from each newly inserted node
            ef_construction: Kept for parity with build requests; the flat
                graph scans exhaustively during construction
            ef_search: Default beam width for greedy_search
        """
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        if M < 1:
            raise ValueError(f"M must be >= 1, got {M}")
        if ef_search < 1:
            raise ValueError(f"ef_search must be >= 1, got {ef_search}")
        self._dimension = dimension
        self._M = M
        self._ef_construction = ef_construction
        self._ef_search = ef_search
        # insertion-ordered: id -> node
        self._nodes: dict[str, HNSWNode] = {}
        self._entry_point: Optional[str] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def M(self) -> int:
        return self._M

    @property
    def ef_construction(self) -> int:
        return self._ef_construction

    @property
    def ef_search(self) -> int:
        return self._ef_search

    @property
    def entry_point(self) -> Optional[str]:
        return self._entry_point

    def neighbors(self, id: str) -> list[str]:
        """Outgoing edges of a node (empty list for unknown ids)."""
        node = self._nodes.get(id)
        return list(node.neighbors) if node is not None else []

    # =========================================================================
    # DISTANCE COMPUTATION
    # =========================================================================
    def _distances(self, query: np.ndarray, ids: Sequence[str]) -> np.ndarray:
        if not ids:
            return np.empty(0, dtype=np.float64)
        matrix = np.stack([self._nodes[i].vector for i in ids]).astype(np.float64)
        diff = matrix - query.astype(np.float64)
        return np.sqrt(np.einsum("ij,ij->i", diff, diff))

    # =========================================================================
    # BUILD / INSERT
    # =========================================================================
    def build(self, entries: Sequence[IndexEntry]) -> None:
        """Insert entries one at a time, in input order."""
        for entry in entries:
            self.add(entry.id, entry.vector)

    def add(self, id: str, vector: VectorLike) -> None:
        """
        Insert a vector and link it to its M nearest predecessors.

        Re-adding an existing id replaces the old node and its edges.
        """
        if id in self._nodes:
            self.remove(id)

        vec = np.asarray(vector, dtype=np.float32)
        previous = list(self._nodes)
        node = HNSWNode(id=id, vector=vec)
        self._nodes[id] = node

        if self._entry_point is None:
            self._entry_point = id
            return

        distances = self._distances(vec, previous)
        nearest = np.argsort(distances, kind="stable")[: self._M]
        node.neighbors = [previous[i] for i in nearest]
        for neighbor_id in node.neighbors:
            self._nodes[neighbor_id].neighbors.append(id)

    def remove(self, id: str, vector: Optional[VectorLike] = None) -> None:
        """
        Drop a node and every edge pointing at it.

        The entry point moves to the oldest remaining node.
        """
        node = self._nodes.pop(id, None)
        if node is None:
            return
        # edges are symmetric: only the node's own neighbors point back at it
        for neighbor_id in node.neighbors:
            other = self._nodes.get(neighbor_id)
            if other is not None:
                other.neighbors = [n for n in other.neighbors if n != id]
        if self._entry_point == id:
            self._entry_point = next(iter(self._nodes), None)

    # =========================================================================
    # SEARCH
    # =========================================================================
    def search(self, query: VectorLike, k: int = 1) -> list[tuple[str, float]]:
        """
        Exact k-NN by exhaustive scan.

        Returns:
            Up to k (id, euclidean distance) pairs, ascending by distance
        """
        if not self._nodes or k <= 0:
            return []
        ids = list(self._nodes)
        distances = self._distances(np.asarray(query, dtype=np.float32), ids)
        ranked = np.argsort(distances, kind="stable")[:k]
        return [(ids[i], float(distances[i])) for i in ranked]

    def greedy_search(
        self,
        query: VectorLike,
        k: int = 1,
        ef: Optional[int] = None,
    ) -> list[tuple[str, float]]:
        """
        Beam search over graph edges from the entry point.

        Args:
            query: Query vector
            k: Results to return
            ef: Beam width (number of candidates tracked), raised to k;
                defaults to ef_search

        Returns:
            Up to k (id, distance) pairs, ascending. Approximate: nodes not
            reachable within the beam are never scored.
        """
        if self._entry_point is None or k <= 0:
            return []
        q = np.asarray(query, dtype=np.float32)
        ef = max(ef if ef is not None else self._ef_search, k)

        entry = self._entry_point
        entry_dist = float(self._distances(q, [entry])[0])
        visited: set[str] = {entry}
        # candidates: min-heap on distance; results: max-heap via negation
        candidates: list[tuple[float, str]] = [(entry_dist, entry)]
        results: list[tuple[float, str]] = [(-entry_dist, entry)]

        while candidates:
            current_dist, current = heapq.heappop(candidates)
            if len(results) >= ef and current_dist > -results[0][0]:
                break

            unvisited = [n for n in self._nodes[current].neighbors if n not in visited]
            if not unvisited:
                continue
            visited.update(unvisited)

            for dist, neighbor in zip(self._distances(q, unvisited), unvisited):
                dist = float(dist)
                if len(results) < ef or dist < -results[0][0]:
                    heapq.heappush(candidates, (dist, neighbor))
                    heapq.heappush(results, (-dist, neighbor))
                    if len(results) > ef:
                        heapq.heappop(results)

        ordered = sorted(((-neg, node_id) for neg, node_id in results))
        return [(node_id, dist) for dist, node_id in ordered[:k]]

    # =========================================================================
    # INSPECTION
    # =========================================================================
    def ids(self) -> set[str]:
        return set(self._nodes)

    def __contains__(self, id: object) -> bool:
        return id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"HNSWIndex(dimension={self._dimension}, M={self._M}, size={len(self._nodes)})"
