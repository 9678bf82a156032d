"""
Protocol Definitions: Structural Subtyping for Pluggable Collaborators

Defines the interfaces the orchestrator depends on:
    - RecordStoreProtocol: async, transactional record persistence
    - CandidateIndexProtocol: incremental add/remove shared by every index
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    import numpy as np

    from vecal.core.errors import Result, StorageError
    from vecal.core.types import VectorRecord


# =============================================================================
# RECORD STORE PROTOCOL
# =============================================================================
@runtime_checkable
class RecordStoreProtocol(Protocol):
    """
    Async record store keyed by record id.

    Every method is one atomic transaction and reports completion as
    Ok(...) or failure as Err(StorageError).

    Implementations:
        - InMemoryRecordStore: process-local, for tests and embedding
        - RedisRecordStore: one Redis hash per collection
    """

    @abstractmethod
    async def open(self) -> "Result[None, StorageError]":
        """Open the store, creating the record collection on first open."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def add(self, record: "VectorRecord") -> "Result[None, StorageError]":
        """Insert a new record. Fails if the id already exists."""
        ...

    @abstractmethod
    async def get(self, record_id: str) -> "Result[Optional[VectorRecord], StorageError]":
        ...

    @abstractmethod
    async def put(self, record: "VectorRecord") -> "Result[None, StorageError]":
        """Upsert."""
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> "Result[bool, StorageError]":
        """Remove a record. Returns True if it existed."""
        ...

    @abstractmethod
    async def get_all(self) -> "Result[list[VectorRecord], StorageError]":
        ...

    @abstractmethod
    async def count(self) -> "Result[int, StorageError]":
        ...


# =============================================================================
# INDEX PROTOCOL
# =============================================================================
@runtime_checkable
class CandidateIndexProtocol(Protocol):
    """Incremental maintenance shared by LSH, IVF-Flat and HNSW indexes."""

    @abstractmethod
    def add(self, id: str, vector: "np.ndarray") -> None:
        ...

    @abstractmethod
    def remove(self, id: str, vector: "np.ndarray") -> None:
        ...

    @abstractmethod
    def __contains__(self, id: object) -> bool:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...
