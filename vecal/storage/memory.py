"""
In-Memory Record Store

Async RecordStoreProtocol implementation backed by plain dicts. Used by
tests, the benchmark CLI, and embedded deployments that do not need
persistence.

Semantics:
    - Collections are created on first open and survive close/reopen
    - Records are copied on the way in and on the way out, so callers can
      never mutate stored state
    - Every operation runs under one asyncio.Lock and is atomic
"""

from __future__ import annotations

import asyncio
from typing import Optional

from vecal.core.errors import Err, Ok, Result, StorageError
from vecal.core.types import VectorRecord


class InMemoryRecordStore:
    """
    Named in-memory store with one dict per collection.

    Thread Safety:
        All operations are protected by asyncio.Lock for
        concurrent access safety within async context.

    Example:
        store = InMemoryRecordStore("docs")
        await store.open()
        await store.add(VectorRecord.create("a", [1.0, 0.0]))
        record = (await store.get("a")).unwrap()
    """

    __slots__ = ("_name", "_collection", "_collections", "_lock", "_open")

    def __init__(self, name: str, collection: str = "vectors") -> None:
        self._name = name
        self._collection = collection
        self._collections: dict[str, dict[str, VectorRecord]] = {}
        self._lock = asyncio.Lock()
        self._open = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def is_open(self) -> bool:
        return self._open

    def _records(self) -> Result[dict[str, VectorRecord], StorageError]:
        if not self._open:
            return Err(StorageError.not_open(self._name))
        return Ok(self._collections[self._collection])

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> Result[None, StorageError]:
        async with self._lock:
            self._collections.setdefault(self._collection, {})
            self._open = True
            return Ok(None)

    async def close(self) -> None:
        async with self._lock:
            self._open = False

    # -------------------------------------------------------------------------
    # RecordStoreProtocol
    # -------------------------------------------------------------------------

    async def add(self, record: VectorRecord) -> Result[None, StorageError]:
        """Insert a new record. Fails on an existing id."""
        async with self._lock:
            result = self._records()
            if result.is_err():
                return result
            records = result.unwrap()
            if record.id in records:
                return Err(StorageError.duplicate_key(self._collection, record.id))
            records[record.id] = record.copy()
            return Ok(None)

    async def get(self, record_id: str) -> Result[Optional[VectorRecord], StorageError]:
        async with self._lock:
            result = self._records()
            if result.is_err():
                return result
            record = result.unwrap().get(record_id)
            return Ok(record.copy() if record is not None else None)

    async def put(self, record: VectorRecord) -> Result[None, StorageError]:
        """Insert or replace (upsert)."""
        async with self._lock:
            result = self._records()
            if result.is_err():
                return result
            result.unwrap()[record.id] = record.copy()
            return Ok(None)

    async def delete(self, record_id: str) -> Result[bool, StorageError]:
        async with self._lock:
            result = self._records()
            if result.is_err():
                return result
            return Ok(result.unwrap().pop(record_id, None) is not None)

    async def get_all(self) -> Result[list[VectorRecord], StorageError]:
        """All records in insertion order."""
        async with self._lock:
            result = self._records()
            if result.is_err():
                return result
            return Ok([record.copy() for record in result.unwrap().values()])

    async def count(self) -> Result[int, StorageError]:
        async with self._lock:
            result = self._records()
            if result.is_err():
                return result
            return Ok(len(result.unwrap()))

    def __repr__(self) -> str:
        return f"InMemoryRecordStore(name={self._name!r}, collection={self._collection!r})"
