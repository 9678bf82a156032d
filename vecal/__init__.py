"""
vecal: Embedded Vector-Similarity Engine

Features:
    - Exact search under cosine, dot, L2, L1, Hamming and Minkowski metrics
    - Random-hyperplane LSH candidate narrowing
    - IVF-Flat clustered inverted lists
    - Flat proximity graph built off the event loop
    - Bounded read-through LRU cache sized to the collection

Usage:
    from vecal import VectorDB, VectorDBConfig

    config = VectorDBConfig(name="docs", dimension=3)

    async with VectorDB(config) as db:
        doc_id = (await db.add([0.9, 0.1, 0.1], {"title": "Doc 1"})).unwrap()

        # Exact
        hits = (await db.search([0.85, 0.2, 0.15], k=2)).unwrap()

        # Approximate
        hits = (await db.ann_search([0.85, 0.2, 0.15], k=2, radius=1)).unwrap()
        hits = (await db.hnsw_search([0.85, 0.2, 0.15], k=2)).unwrap()
"""

from __future__ import annotations

__version__ = "0.1.0"

# =============================================================================
# LAZY IMPORTS FOR FAST STARTUP
# =============================================================================
# Core types (always available, numpy only)
from vecal.core.types import (
    DistanceType,
    IndexKind,
    SearchResult,
    VectorRecord,
)
from vecal.core.errors import (
    Result,
    Ok,
    Err,
    VecalError,
    DimensionMismatchError,
    NotFoundError,
    StorageError,
    ConfigError,
    IndexBuildError,
)
from vecal.core.config import VectorDBConfig


def __getattr__(name: str):
    """Lazy import of orchestrator and store modules."""
    if name == "VectorDB":
        from vecal.db.vector_db import VectorDB
        return VectorDB
    if name == "InMemoryRecordStore":
        from vecal.storage.memory import InMemoryRecordStore
        return InMemoryRecordStore
    if name == "RedisRecordStore":
        from vecal.storage.redis_store import RedisRecordStore
        return RedisRecordStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Version
    "__version__",
    # Core types
    "DistanceType",
    "IndexKind",
    "SearchResult",
    "VectorRecord",
    "VectorDBConfig",
    # Error handling
    "Result",
    "Ok",
    "Err",
    "VecalError",
    "DimensionMismatchError",
    "NotFoundError",
    "StorageError",
    "ConfigError",
    "IndexBuildError",
    # Orchestrator and stores (lazy)
    "VectorDB",
    "InMemoryRecordStore",
    "RedisRecordStore",
]
