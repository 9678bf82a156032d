"""
Distance Kernels

Pure functions over equal-length float vectors:
    - cosine, dot: similarities (higher = more similar)
    - euclidean, manhattan, hamming, minkowski: distances (lower = more similar)

NaN Handling:
    Every kernel propagates NaN (fail soft). The only special case is cosine
    returning 0.0 when either norm is zero. Lengths are not checked; callers
    guarantee equal length.

Batch scoring (score_batch) returns signed scores for exact search:
similarities as-is, distances negated, so callers can always sort descending.
"""

from __future__ import annotations

from functools import partial
from typing import Callable, Optional, Union

import numpy as np

from vecal.core.types import DistanceType, VectorLike

DistanceFn = Callable[[VectorLike, VectorLike], float]


def _pair(a: VectorLike, b: VectorLike) -> tuple[np.ndarray, np.ndarray]:
    return np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)


def _has_nan(*arrays: np.ndarray) -> bool:
    return any(bool(np.isnan(arr).any()) for arr in arrays)


# =============================================================================
# NORM
# =============================================================================
def vector_norm(v: VectorLike) -> float:
    """Euclidean norm ||v||."""
    return float(np.linalg.norm(np.asarray(v, dtype=np.float64)))


# =============================================================================
# SIMILARITIES
# =============================================================================
def cosine(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity.

    Formula: cos(θ) = (a · b) / (||a|| × ||b||)

    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero norm;
        NaN if any element is NaN.
    """
    a, b = _pair(a, b)
    if _has_nan(a, b):
        return float("nan")
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def dot(a: VectorLike, b: VectorLike) -> float:
    """Inner product Σ aᵢbᵢ (unbounded, higher = more similar)."""
    a, b = _pair(a, b)
    return float(np.dot(a, b))


# =============================================================================
# DISTANCES
# =============================================================================
def euclidean(a: VectorLike, b: VectorLike) -> float:
    """L2 distance √(Σ(aᵢ - bᵢ)²)."""
    a, b = _pair(a, b)
    diff = a - b
    return float(np.sqrt(np.dot(diff, diff)))


def manhattan(a: VectorLike, b: VectorLike) -> float:
    """L1 distance Σ|aᵢ - bᵢ|."""
    a, b = _pair(a, b)
    return float(np.abs(a - b).sum())


def hamming(a: VectorLike, b: VectorLike) -> float:
    """Number of positions where aᵢ != bᵢ (exact float equality)."""
    a, b = _pair(a, b)
    if _has_nan(a, b):
        return float("nan")
    return float(np.count_nonzero(a != b))


def minkowski(a: VectorLike, b: VectorLike, p: float = 3.0) -> float:
    """Minkowski distance (Σ|aᵢ - bᵢ|^p)^(1/p)."""
    a, b = _pair(a, b)
    return float(np.power(np.power(np.abs(a - b), p).sum(), 1.0 / p))


# =============================================================================
# DISTANCE FUNCTION FACTORY
# =============================================================================
def get_distance_fn(metric: Union[str, DistanceType], p: float = 3.0) -> DistanceFn:
    """
    Get the pairwise kernel for a metric.

    Args:
        metric: DistanceType or its name ("cosine", "l2", "l1", "dot",
            "hamming", "minkowski")
        p: Exponent used by minkowski

    Raises:
        ValueError: Unknown metric name
    """
    metric = DistanceType.parse(metric)
    if metric == DistanceType.COSINE:
        return cosine
    elif metric == DistanceType.L2:
        return euclidean
    elif metric == DistanceType.L1:
        return manhattan
    elif metric == DistanceType.DOT:
        return dot
    elif metric == DistanceType.HAMMING:
        return hamming
    return partial(minkowski, p=p)


def similarity_score(
    metric: Union[str, DistanceType],
    a: VectorLike,
    b: VectorLike,
    p: float = 3.0,
) -> float:
    """Signed score: similarities as-is, distances negated."""
    metric = DistanceType.parse(metric)
    value = get_distance_fn(metric, p)(a, b)
    return value if metric.is_similarity() else -value


# =============================================================================
# BATCH SCORING
# =============================================================================
def score_batch(
    metric: Union[str, DistanceType],
    query: VectorLike,
    vectors: VectorLike,
    norms: Optional[VectorLike] = None,
    p: float = 3.0,
) -> np.ndarray:
    """
    Signed scores between a query and every row of a matrix.

    Args:
        metric: Scoring metric
        query: Query vector (shape [d])
        vectors: Candidate vectors (shape [n, d])
        norms: Cached row norms for cosine (computed when omitted)
        p: Exponent used by minkowski

    Returns:
        float64 scores (shape [n]); higher = more similar for every metric.
        Rows containing NaN (or a NaN query) score NaN.

    Complexity: O(n × d)
    """
    metric = DistanceType.parse(metric)
    q = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)
    if matrix.size == 0:
        return np.empty(0, dtype=np.float64)
    matrix = matrix.reshape(-1, q.shape[0])

    with np.errstate(invalid="ignore", divide="ignore", over="ignore"):
        if metric == DistanceType.COSINE:
            row_norms = (
                np.asarray(norms, dtype=np.float64)
                if norms is not None
                else np.linalg.norm(matrix, axis=1)
            )
            query_norm = np.linalg.norm(q)
            scores = (matrix @ q) / (row_norms * query_norm)
            scores = np.where((row_norms == 0) | (query_norm == 0), 0.0, scores)
        elif metric == DistanceType.DOT:
            scores = matrix @ q
        elif metric == DistanceType.L2:
            diff = matrix - q
            scores = -np.sqrt(np.einsum("ij,ij->i", diff, diff))
        elif metric == DistanceType.L1:
            scores = -np.abs(matrix - q).sum(axis=1)
        elif metric == DistanceType.HAMMING:
            scores = -np.count_nonzero(matrix != q, axis=1).astype(np.float64)
        else:
            scores = -np.power(np.power(np.abs(matrix - q), p).sum(axis=1), 1.0 / p)

    nan_rows = np.isnan(matrix).any(axis=1) | bool(np.isnan(q).any())
    if nan_rows.any():
        scores = np.where(nan_rows, np.nan, scores)
    return scores.astype(np.float64, copy=False)
