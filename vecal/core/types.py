"""
Core Type Definitions: Records, Results and Metric Names

Memory Layout:
    - Vectors are contiguous float32 numpy arrays, marked read-only once they
      belong to a record so cached records cannot be mutated in place
    - __slots__ on every dataclass

Score Convention:
    Distance metrics (smaller = closer) are negated, so every search path
    returns results sorted by descending score.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence, Union

import numpy as np

# Anything that can be turned into a 1-D float vector
VectorLike = Union[np.ndarray, Sequence[float]]


# =============================================================================
# METRIC TYPES
# =============================================================================
class DistanceType(Enum):
    """
    Distance/similarity metrics for vector comparison.

    COSINE and DOT are similarities (higher = closer); the rest are
    distances and get negated when turned into scores.
    """
    COSINE = "cosine"
    L2 = "l2"
    L1 = "l1"
    DOT = "dot"
    HAMMING = "hamming"
    MINKOWSKI = "minkowski"

    def is_similarity(self) -> bool:
        """True if higher values = more similar."""
        return self in (DistanceType.COSINE, DistanceType.DOT)

    def is_distance(self) -> bool:
        """True if lower values = more similar."""
        return not self.is_similarity()

    @classmethod
    def parse(cls, value: Union[str, "DistanceType"]) -> "DistanceType":
        """Accept either an enum member or its string value."""
        if isinstance(value, DistanceType):
            return value
        return cls(str(value).lower())


class IndexKind(Enum):
    """Index slots owned by the orchestrator."""
    LSH = "lsh"
    IVF_FLAT = "ivf_flat"
    HNSW = "hnsw"


# =============================================================================
# VECTOR HELPERS
# =============================================================================
def as_vector(values: VectorLike) -> np.ndarray:
    """Convert input to a contiguous float32 array without changing its shape."""
    return np.ascontiguousarray(np.asarray(values, dtype=np.float32))


def _frozen_copy(values: VectorLike) -> np.ndarray:
    arr = np.array(values, dtype=np.float32, copy=True)
    arr.flags.writeable = False
    return arr


# =============================================================================
# VECTOR RECORD
# =============================================================================
@dataclass(frozen=True, slots=True, eq=False)
class VectorRecord:
    """
    Stored record.

    Attributes:
        id: Unique within a store, immutable after creation
        vector: float32 array of the store's dimension (read-only)
        metadata: Opaque key/value map, never seen by indexes
        norm: Euclidean norm of vector, cached for cosine scoring
    """
    id: str
    vector: np.ndarray
    metadata: dict[str, Any] = field(default_factory=dict)
    norm: float = 0.0

    @classmethod
    def create(
        cls,
        id: str,
        vector: VectorLike,
        metadata: dict[str, Any] | None = None,
    ) -> "VectorRecord":
        """Build a record, copying the vector and computing its norm."""
        arr = _frozen_copy(vector)
        return cls(
            id=id,
            vector=arr,
            metadata=copy.deepcopy(metadata) if metadata else {},
            norm=float(np.linalg.norm(arr)),
        )

    def with_changes(
        self,
        vector: VectorLike | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "VectorRecord":
        """Merge partial fields over this record. The id never changes."""
        if vector is None:
            return VectorRecord(
                id=self.id,
                vector=self.vector,
                metadata=copy.deepcopy(metadata if metadata is not None else self.metadata),
                norm=self.norm,
            )
        return VectorRecord.create(
            self.id,
            vector,
            metadata if metadata is not None else self.metadata,
        )

    def copy(self) -> "VectorRecord":
        """Independent copy for handing records across a store boundary."""
        return VectorRecord(
            id=self.id,
            vector=_frozen_copy(self.vector),
            metadata=copy.deepcopy(self.metadata),
            norm=self.norm,
        )

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    def to_entry(self) -> "IndexEntry":
        """Project onto the (id, vector) pair indexes work with."""
        return IndexEntry(id=self.id, vector=self.vector)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation."""
        return {
            "id": self.id,
            "vector": self.vector.astype(float).tolist(),
            "metadata": self.metadata,
            "norm": None if math.isnan(self.norm) else self.norm,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VectorRecord":
        vector = _frozen_copy(data["vector"])
        norm = data.get("norm")
        return cls(
            id=str(data["id"]),
            vector=vector,
            metadata=copy.deepcopy(data.get("metadata") or {}),
            norm=float(np.linalg.norm(vector)) if norm is None else float(norm),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorRecord):
            return NotImplemented
        return (
            self.id == other.id
            and np.array_equal(self.vector, other.vector, equal_nan=True)
            and self.metadata == other.metadata
        )


# =============================================================================
# INDEX ENTRY
# =============================================================================
@dataclass(frozen=True, slots=True, eq=False)
class IndexEntry:
    """(id, vector) projection handed to index structures."""
    id: str
    vector: np.ndarray


# =============================================================================
# SEARCH RESULT
# =============================================================================
@dataclass(frozen=True, slots=True)
class SearchResult:
    """
    Single search hit.

    Attributes:
        id: Record identifier
        score: Higher = more similar (distances are negated)
        metadata: Record metadata resolved through cache/store
    """
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "score": self.score, "metadata": self.metadata}


def rank_results(results: list[SearchResult], k: int) -> list[SearchResult]:
    """
    Sort by descending score and keep the top k.

    NaN scores rank after every real score; ties keep input order.
    """
    ordered = sorted(
        results,
        key=lambda r: (math.isnan(r.score), -r.score if not math.isnan(r.score) else 0.0),
    )
    return ordered[: max(k, 0)]
