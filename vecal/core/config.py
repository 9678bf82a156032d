"""
Configuration Classes: Type-Safe Store and Index Configuration

Provides structured configuration with validation for:
    - The vector store itself (name, dimension, default metric)
    - LSH, IVF-Flat and HNSW index parameters
    - The optional Redis record store

All configs are fixed for the lifetime of the store that uses them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from vecal.core.errors import ConfigError, Err, Ok, Result
from vecal.core.types import DistanceType


# =============================================================================
# INDEX CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class LSHConfig:
    """
    Random-hyperplane LSH parameters.

    Parameters:
        num_hashes: Hyperplanes per signature (bits per bucket key)
        radius: Default Hamming radius probed by ann_search
    """
    num_hashes: int = 10
    radius: int = 1

    def validate(self) -> Optional[str]:
        if self.num_hashes < 1:
            return f"num_hashes must be >= 1, got {self.num_hashes}"
        if self.radius < 0:
            return f"radius must be >= 0, got {self.radius}"
        return None


@dataclass(frozen=True, slots=True)
class IVFFlatConfig:
    """
    IVF-Flat parameters.

    Parameters:
        nlist: Number of clusters / posting lists
        nprobe: Lists scanned per query
        iterations: Lloyd iterations run by build()
    """
    nlist: int = 256
    nprobe: int = 8
    iterations: int = 5

    def validate(self) -> Optional[str]:
        if self.nlist < 1:
            return f"nlist must be >= 1, got {self.nlist}"
        if self.nprobe < 1:
            return f"nprobe must be >= 1, got {self.nprobe}"
        if self.iterations < 0:
            return f"iterations must be >= 0, got {self.iterations}"
        return None


@dataclass(frozen=True, slots=True)
class HNSWConfig:
    """
    Flat proximity-graph parameters.

    Parameters:
        M: Neighbors linked from each newly inserted node
        ef_construction: Carried with build requests; the flat graph does an
            exhaustive neighbor scan so it does not narrow construction
        ef_search: Beam width for greedy_search
        use_worker: Build on an executor instead of the event loop thread
    """
    M: int = 16
    ef_construction: int = 200
    ef_search: int = 64
    use_worker: bool = True

    def validate(self) -> Optional[str]:
        if self.M < 1:
            return f"M must be >= 1, got {self.M}"
        if self.ef_construction < 1:
            return f"ef_construction must be >= 1, got {self.ef_construction}"
        if self.ef_search < 1:
            return f"ef_search must be >= 1, got {self.ef_search}"
        return None


# =============================================================================
# STORE CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class VectorDBConfig:
    """
    Vector store configuration.

    Parameters:
        name: Store name, used to open the backing record store
        dimension: Length every vector must have (> 0)
        record_collection: Collection holding records inside the store
        default_metric: Metric used when a search names none
        minkowski_p: Exponent for the minkowski metric
        seed: Seed for hyperplane and centroid sampling (None = random)
    """
    name: str
    dimension: int
    record_collection: str = "vectors"
    default_metric: DistanceType = DistanceType.COSINE
    minkowski_p: float = 3.0
    seed: Optional[int] = None
    lsh: LSHConfig = field(default_factory=LSHConfig)
    ivf_flat: IVFFlatConfig = field(default_factory=IVFFlatConfig)
    hnsw: HNSWConfig = field(default_factory=HNSWConfig)

    def validate(self) -> Optional[str]:
        if not self.name:
            return "name must not be empty"
        if self.dimension < 1:
            return f"dimension must be >= 1, got {self.dimension}"
        if not self.record_collection:
            return "record_collection must not be empty"
        if not isinstance(self.default_metric, DistanceType):
            return f"default_metric must be a DistanceType, got {self.default_metric!r}"
        if self.minkowski_p <= 0:
            return f"minkowski_p must be > 0, got {self.minkowski_p}"
        for sub in (self.lsh, self.ivf_flat, self.hnsw):
            if error := sub.validate():
                return error
        return None

    def check(self) -> Result["VectorDBConfig", ConfigError]:
        """validate() as a Result carrying a ConfigError."""
        if error := self.validate():
            return Err(ConfigError.invalid(type(self).__name__, None, error))
        return Ok(self)

    @classmethod
    def from_env(cls, prefix: str = "VECAL_") -> Result["VectorDBConfig", ConfigError]:
        """
        Load configuration from environment variables.

        Variables: VECAL_NAME, VECAL_DIMENSION (required), VECAL_COLLECTION,
        VECAL_METRIC, VECAL_MINKOWSKI_P, VECAL_SEED.
        """
        raw_dimension = os.getenv(f"{prefix}DIMENSION")
        if raw_dimension is None:
            return Err(ConfigError.invalid("dimension", None, f"{prefix}DIMENSION is not set"))
        try:
            seed = os.getenv(f"{prefix}SEED")
            config = cls(
                name=os.getenv(f"{prefix}NAME", "vecal"),
                dimension=int(raw_dimension),
                record_collection=os.getenv(f"{prefix}COLLECTION", "vectors"),
                default_metric=DistanceType.parse(os.getenv(f"{prefix}METRIC", "cosine")),
                minkowski_p=float(os.getenv(f"{prefix}MINKOWSKI_P", "3")),
                seed=int(seed) if seed is not None else None,
            )
        except (ValueError, TypeError) as e:
            return Err(ConfigError.invalid("environment", prefix, str(e)))
        return config.check()


@dataclass(frozen=True, slots=True)
class RedisStoreConfig:
    """Connection settings for RedisRecordStore."""
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "vecal:"
    socket_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "RedisStoreConfig":
        return cls(
            url=os.getenv("VECAL_REDIS_URL", "redis://localhost:6379/0"),
            key_prefix=os.getenv("VECAL_REDIS_PREFIX", "vecal:"),
            socket_timeout=float(os.getenv("VECAL_REDIS_TIMEOUT", "5.0")),
        )
