"""
Core Module: Types, Errors, Configuration and Protocols

Foundational abstractions shared by indexes, stores and the orchestrator.
Depends only on numpy.
"""

from vecal.core.types import (
    DistanceType,
    IndexEntry,
    IndexKind,
    SearchResult,
    VectorLike,
    VectorRecord,
    as_vector,
    rank_results,
)
from vecal.core.errors import (
    ConfigError,
    DimensionMismatchError,
    Err,
    ErrorCode,
    IndexBuildError,
    NotFoundError,
    Ok,
    Result,
    StorageError,
    VecalError,
)
from vecal.core.config import (
    HNSWConfig,
    IVFFlatConfig,
    LSHConfig,
    RedisStoreConfig,
    VectorDBConfig,
)
from vecal.core.protocols import (
    CandidateIndexProtocol,
    RecordStoreProtocol,
)

__all__ = [
    # Types
    "DistanceType",
    "IndexEntry",
    "IndexKind",
    "SearchResult",
    "VectorLike",
    "VectorRecord",
    "as_vector",
    "rank_results",
    # Errors
    "ConfigError",
    "DimensionMismatchError",
    "Err",
    "ErrorCode",
    "IndexBuildError",
    "NotFoundError",
    "Ok",
    "Result",
    "StorageError",
    "VecalError",
    # Config
    "HNSWConfig",
    "IVFFlatConfig",
    "LSHConfig",
    "RedisStoreConfig",
    "VectorDBConfig",
    # Protocols
    "CandidateIndexProtocol",
    "RecordStoreProtocol",
]
