"""
VectorDB: Record Store + Index Orchestrator

Keeps the record store, every attached candidate index and the read-through
cache consistent, and routes queries to the exact or approximate paths.

Write Path:
    validate dimension -> store transaction -> (on success) every attached
    index -> cache -> cache capacity

Read Paths:
    search        exact scan of every stored record
    ann_search    LSH candidates, scored exactly (falls back to exact scan
                  when no candidate resolves)
    ivf_search    IVF-Flat probe, distances negated into scores
    hnsw_search   proximity graph, distances negated into scores

Failure Contract:
    A failed validation touches nothing. A failed store transaction is
    returned unchanged and leaves indexes and cache untouched.

Concurrency:
    One asyncio event loop. Index and cache mutations inside one operation
    run without intervening awaits. Mutations that land while an index build
    is awaiting (store read, graph worker) are logged and replayed onto the
    new index before it replaces the old one.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

import numpy as np

from vecal.core.config import VectorDBConfig
from vecal.core.errors import (
    ConfigError,
    DimensionMismatchError,
    Err,
    IndexBuildError,
    NotFoundError,
    Ok,
    Result,
    VecalError,
)
from vecal.core.protocols import CandidateIndexProtocol, RecordStoreProtocol
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
from vecal.index.distance import score_batch
from vecal.index.hnsw import HNSWIndex
from vecal.index.hnsw_worker import GraphBuildRequest, GraphBuildWorker, build_graph
from vecal.index.ivf_flat import IVFFlatIndex
from vecal.index.lsh import LSHIndex
from vecal.observability.logging import StructuredLogger
from vecal.storage.cache import LRUCache
from vecal.storage.memory import InMemoryRecordStore

# (operation, id, vector) recorded while a build is in flight
_Mutation = tuple[str, str, np.ndarray]


def cache_capacity_for(count: int) -> int:
    """Cache capacity for a collection size: max(floor(0.2 × count), 1)."""
    return max(count // 5, 1)


class VectorDB:
    """
    Embedded vector store.

    Example:
        config = VectorDBConfig(name="docs", dimension=3)
        async with VectorDB(config) as db:
            record_id = (await db.add([0.9, 0.1, 0.1], {"title": "a"})).unwrap()
            hits = (await db.search([0.85, 0.2, 0.15], k=2)).unwrap()

    Args:
        config: Store configuration (validated; ConfigError raised if invalid)
        store: Record store collaborator (InMemoryRecordStore by default)
        id_factory: Id generator for add() (uuid4 strings by default)
        rng: Random source for LSH hyperplanes and IVF seeding
            (default_rng(config.seed) by default)
        worker: Graph build worker (created on first worker build if None)
    """

    __slots__ = (
        "_config",
        "_store",
        "_id_factory",
        "_rng",
        "_worker",
        "_owns_worker",
        "_cache",
        "_count",
        "_opened",
        "_lsh",
        "_ivf_flat",
        "_hnsw",
        "_build_logs",
        "_log",
    )

    def __init__(
        self,
        config: VectorDBConfig,
        store: Optional[RecordStoreProtocol] = None,
        *,
        id_factory: Optional[Callable[[], str]] = None,
        rng: Optional[np.random.Generator] = None,
        worker: Optional[GraphBuildWorker] = None,
    ) -> None:
        self._config = config.check().unwrap()
        self._store: RecordStoreProtocol = (
            store if store is not None
            else InMemoryRecordStore(config.name, config.record_collection)
        )
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self._rng = rng if rng is not None else np.random.default_rng(config.seed)
        self._worker = worker
        self._owns_worker = worker is None
        self._cache: LRUCache[str, VectorRecord] = LRUCache(max_size=1)
        self._count = 0
        self._opened = False

        # One slot per index kind; each is replaced wholesale by a build
        self._lsh: Optional[LSHIndex] = None
        self._ivf_flat: Optional[IVFFlatIndex] = None
        self._hnsw: Optional[HNSWIndex] = None

        self._build_logs: list[list[_Mutation]] = []
        self._log = StructuredLogger(__name__).with_extra(db=config.name)

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def config(self) -> VectorDBConfig:
        return self._config

    @property
    def dimension(self) -> int:
        return self._config.dimension

    @property
    def cache(self) -> LRUCache[str, VectorRecord]:
        return self._cache

    @property
    def cache_capacity(self) -> int:
        return self._cache.max_size

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def attached_indexes(self) -> list[IndexKind]:
        """Index kinds currently built, in LSH, IVF-Flat, HNSW order."""
        return [kind for kind, _ in self._attached()]

    def index(self, kind: Union[IndexKind, str]) -> Optional[CandidateIndexProtocol]:
        """The attached index of a kind, or None."""
        kind = IndexKind(kind)
        if kind == IndexKind.LSH:
            return self._lsh
        elif kind == IndexKind.IVF_FLAT:
            return self._ivf_flat
        return self._hnsw

    def _attached(self) -> list[tuple[IndexKind, CandidateIndexProtocol]]:
        slots = (
            (IndexKind.LSH, self._lsh),
            (IndexKind.IVF_FLAT, self._ivf_flat),
            (IndexKind.HNSW, self._hnsw),
        )
        return [(kind, index) for kind, index in slots if index is not None]

    def _set_slot(self, kind: IndexKind, index: CandidateIndexProtocol) -> None:
        if kind == IndexKind.LSH:
            self._lsh = index
        elif kind == IndexKind.IVF_FLAT:
            self._ivf_flat = index
        else:
            self._hnsw = index

    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    async def open(self) -> Result[None, VecalError]:
        """
        Open the backing store, load the record count and size the cache.

        Idempotent; every operation calls it lazily.
        """
        if self._opened:
            return Ok(None)
        opened = await self._store.open()
        if opened.is_err():
            return opened
        counted = await self._store.count()
        if counted.is_err():
            return counted

        self._count = counted.unwrap()
        self._resize_cache()
        self._opened = True
        self._log.info(
            "Vector store opened",
            records=self._count,
            dimension=self._config.dimension,
            collection=self._config.record_collection,
        )
        return Ok(None)

    async def close(self) -> None:
        """Close the store and shut down an owned graph worker."""
        if self._worker is not None and self._owns_worker:
            self._worker.shutdown()
            self._worker = None
        if self._opened:
            await self._store.close()
            self._opened = False
            self._log.debug("Vector store closed")

    async def __aenter__(self) -> "VectorDB":
        (await self.open()).unwrap()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # VALIDATION
    # =========================================================================
    def _check_vector(self, vector: VectorLike) -> Result[np.ndarray, DimensionMismatchError]:
        expected = self._config.dimension
        try:
            arr = as_vector(vector)
        except (TypeError, ValueError):
            return Err(DimensionMismatchError.invalid_shape(expected, ()))
        if arr.ndim != 1:
            return Err(DimensionMismatchError.invalid_shape(expected, tuple(arr.shape)))
        if arr.shape[0] != expected:
            return Err(DimensionMismatchError.create(expected, int(arr.shape[0])))
        return Ok(arr)

    def _resolve_metric(
        self,
        metric: Optional[Union[str, DistanceType]],
    ) -> Result[DistanceType, ConfigError]:
        if metric is None:
            return Ok(self._config.default_metric)
        try:
            return Ok(DistanceType.parse(metric))
        except ValueError as e:
            return Err(ConfigError.invalid("metric", metric, str(e)))

    def _resize_cache(self) -> None:
        self._cache.set_max_size(cache_capacity_for(self._count))

    # =========================================================================
    # INDEX MAINTENANCE
    # =========================================================================
    def _index_add(self, record_id: str, vector: np.ndarray) -> None:
        for _, index in self._attached():
            index.add(record_id, vector)
        for log in self._build_logs:
            log.append(("add", record_id, vector))

    def _index_remove(self, record_id: str, vector: np.ndarray) -> None:
        for _, index in self._attached():
            index.remove(record_id, vector)
        for log in self._build_logs:
            log.append(("remove", record_id, vector))

    # =========================================================================
    # CRUD
    # =========================================================================
    async def add(
        self,
        vector: VectorLike,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Result[str, VecalError]:
        """
        Store a new vector and index it.

        Returns:
            Ok(new id), or Err(DimensionMismatchError | StorageError)
        """
        checked = self._check_vector(vector)
        if checked.is_err():
            return checked
        opened = await self.open()
        if opened.is_err():
            return opened

        record = VectorRecord.create(self._id_factory(), checked.unwrap(), metadata)
        stored = await self._store.add(record)
        if stored.is_err():
            return stored

        self._count += 1
        self._index_add(record.id, record.vector)
        self._resize_cache()
        self._cache.set(record.id, record)
        self._log.debug("Record added", record_id=record.id, records=self._count)
        return Ok(record.id)

    async def get(self, record_id: str) -> Result[Optional[VectorRecord], VecalError]:
        """
        Read through the cache.

        Returns:
            Ok(record), Ok(None) if absent, or Err(StorageError)
        """
        cached = self._cache.get(record_id)
        if cached is not None:
            return Ok(cached.copy())
        opened = await self.open()
        if opened.is_err():
            return opened

        fetched = await self._store.get(record_id)
        if fetched.is_err():
            return fetched
        record = fetched.unwrap()
        if record is None:
            return Ok(None)
        self._cache.set(record_id, record)
        return Ok(record.copy())

    async def update(
        self,
        record_id: str,
        vector: Optional[VectorLike] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Result[VectorRecord, VecalError]:
        """
        Replace the vector and/or metadata of an existing record.

        Metadata replaces the old map wholesale. The id never changes.

        Returns:
            Ok(updated record), or Err(NotFoundError | DimensionMismatchError
            | StorageError)
        """
        new_vector: Optional[np.ndarray] = None
        if vector is not None:
            checked = self._check_vector(vector)
            if checked.is_err():
                return checked
            new_vector = checked.unwrap()

        current_result = await self.get(record_id)
        if current_result.is_err():
            return current_result
        current = current_result.unwrap()
        if current is None:
            return Err(NotFoundError.record(record_id))

        updated = current.with_changes(vector=new_vector, metadata=metadata)
        stored = await self._store.put(updated)
        if stored.is_err():
            return stored

        self._index_remove(record_id, current.vector)
        self._index_add(record_id, updated.vector)
        self._cache.set(record_id, updated)
        self._resize_cache()
        self._log.debug("Record updated", record_id=record_id, vector_changed=new_vector is not None)
        return Ok(updated.copy())

    async def delete(self, record_id: str) -> Result[bool, VecalError]:
        """
        Remove a record from the store, every attached index and the cache.

        Returns:
            Ok(True) if it existed, Ok(False) if not, or Err(StorageError)
        """
        current_result = await self.get(record_id)
        if current_result.is_err():
            return current_result
        current = current_result.unwrap()

        removed = await self._store.delete(record_id)
        if removed.is_err():
            return removed
        existed = removed.unwrap()

        if existed:
            self._count = max(self._count - 1, 0)
        if current is not None:
            self._index_remove(record_id, current.vector)
        self._cache.delete(record_id)
        self._resize_cache()
        self._log.debug("Record deleted", record_id=record_id, existed=existed)
        return Ok(existed)

    async def count(self) -> Result[int, VecalError]:
        opened = await self.open()
        if opened.is_err():
            return opened
        return Ok(self._count)

    # =========================================================================
    # INDEX BUILDS
    # =========================================================================
    async def _rebuild(
        self,
        kind: IndexKind,
        construct: Callable[[list[IndexEntry]], Awaitable[CandidateIndexProtocol]],
    ) -> Result[CandidateIndexProtocol, VecalError]:
        """
        Read every record, construct a fresh index and swap it into its slot.

        Mutations committed after the store read are replayed onto the new
        index before the swap.
        """
        opened = await self.open()
        if opened.is_err():
            return opened

        log: list[_Mutation] = []
        self._build_logs.append(log)
        try:
            records = await self._store.get_all()
            if records.is_err():
                return records
            entries = [record.to_entry() for record in records.unwrap()]

            started = time.perf_counter()
            try:
                index = await construct(entries)
            except Exception as e:
                self._log.error("Index build failed", kind=kind.value, error=repr(e))
                return Err(IndexBuildError.build_failed(kind.value, e))

            for op, record_id, vector in log:
                if op == "add":
                    index.add(record_id, vector)
                else:
                    index.remove(record_id, vector)
            self._set_slot(kind, index)
        finally:
            self._build_logs = [other for other in self._build_logs if other is not log]

        self._log.info(
            "Index built",
            kind=kind.value,
            records=len(entries),
            replayed=len(log),
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return Ok(index)

    async def build_index(self, num_hashes: Optional[int] = None) -> Result[LSHIndex, VecalError]:
        """(Re)build the LSH index. num_hashes defaults to config.lsh.num_hashes."""
        num_hashes = num_hashes if num_hashes is not None else self._config.lsh.num_hashes

        async def construct(entries: list[IndexEntry]) -> LSHIndex:
            index = LSHIndex(self._config.dimension, num_hashes=num_hashes, rng=self._rng)
            for entry in entries:
                index.add(entry.id, entry.vector)
            return index

        return await self._rebuild(IndexKind.LSH, construct)

    async def build_ivf_flat_index(
        self,
        nlist: Optional[int] = None,
        nprobe: Optional[int] = None,
    ) -> Result[IVFFlatIndex, VecalError]:
        """(Re)build the IVF-Flat index. Parameters default to config.ivf_flat."""
        settings = self._config.ivf_flat
        nlist = nlist if nlist is not None else settings.nlist
        nprobe = nprobe if nprobe is not None else settings.nprobe

        async def construct(entries: list[IndexEntry]) -> IVFFlatIndex:
            index = IVFFlatIndex(
                self._config.dimension,
                nlist=nlist,
                nprobe=nprobe,
                iterations=settings.iterations,
                rng=self._rng,
            )
            index.build(entries)
            return index

        return await self._rebuild(IndexKind.IVF_FLAT, construct)

    async def build_hnsw_index(
        self,
        m: Optional[int] = None,
        ef_construction: Optional[int] = None,
        use_worker: Optional[bool] = None,
    ) -> Result[HNSWIndex, VecalError]:
        """
        (Re)build the proximity graph. Parameters default to config.hnsw.

        With use_worker the graph is built on the graph worker's executor;
        the worker itself falls back to an in-process build.
        """
        settings = self._config.hnsw
        request_m = m if m is not None else settings.M
        request_ef = ef_construction if ef_construction is not None else settings.ef_construction
        offload = use_worker if use_worker is not None else settings.use_worker

        async def construct(entries: list[IndexEntry]) -> HNSWIndex:
            request = GraphBuildRequest(
                dimension=self._config.dimension,
                m=request_m,
                ef_construction=request_ef,
                entries=tuple(entries),
                ef_search=settings.ef_search,
            )
            if offload:
                return await self._graph_worker().build(request)
            return build_graph(request)

        return await self._rebuild(IndexKind.HNSW, construct)

    def _graph_worker(self) -> GraphBuildWorker:
        if self._worker is None:
            self._worker = GraphBuildWorker()
            self._owns_worker = True
        return self._worker

    # =========================================================================
    # SEARCH
    # =========================================================================
    def _score(
        self,
        metric: DistanceType,
        query: np.ndarray,
        records: list[VectorRecord],
        k: int,
    ) -> list[SearchResult]:
        if not records:
            return []
        scores = score_batch(
            metric,
            query,
            np.stack([record.vector for record in records]),
            norms=np.array([record.norm for record in records], dtype=np.float64),
            p=self._config.minkowski_p,
        )
        results = [
            SearchResult(id=record.id, score=float(score), metadata=dict(record.metadata))
            for record, score in zip(records, scores)
        ]
        return rank_results(results, k)

    async def _resolve(self, ids: list[str]) -> Result[list[VectorRecord], VecalError]:
        records: list[VectorRecord] = []
        for record_id in ids:
            fetched = await self.get(record_id)
            if fetched.is_err():
                return fetched
            record = fetched.unwrap()
            if record is not None:
                records.append(record)
        return Ok(records)

    async def search(
        self,
        query: VectorLike,
        k: int = 5,
        metric: Optional[Union[str, DistanceType]] = None,
    ) -> Result[list[SearchResult], VecalError]:
        """
        Exact search over every stored record.

        Args:
            query: Query vector of the store's dimension
            k: Results to return
            metric: Scoring metric (config.default_metric if None)

        Returns:
            Ok(results sorted by descending score)
        """
        checked = self._check_vector(query)
        if checked.is_err():
            return checked
        resolved = self._resolve_metric(metric)
        if resolved.is_err():
            return resolved
        opened = await self.open()
        if opened.is_err():
            return opened

        records = await self._store.get_all()
        if records.is_err():
            return records
        return Ok(self._score(resolved.unwrap(), checked.unwrap(), records.unwrap(), k))

    async def ann_search(
        self,
        query: VectorLike,
        k: int = 5,
        radius: Optional[int] = None,
        metric: Optional[Union[str, DistanceType]] = None,
    ) -> Result[list[SearchResult], VecalError]:
        """
        LSH-narrowed search, scored exactly.

        Builds the LSH index on first use. When no candidate resolves to a
        stored record the query falls back to every record, so a non-empty
        store never yields an empty answer.
        """
        checked = self._check_vector(query)
        if checked.is_err():
            return checked
        resolved = self._resolve_metric(metric)
        if resolved.is_err():
            return resolved
        opened = await self.open()
        if opened.is_err():
            return opened
        q = checked.unwrap()
        radius = radius if radius is not None else self._config.lsh.radius

        if self._lsh is None:
            self._log.debug("Building LSH index on first ann_search")
            built = await self.build_index()
            if built.is_err():
                return built

        candidates = await self._resolve(self._lsh.query(q, radius=radius))
        if candidates.is_err():
            return candidates
        records = candidates.unwrap()
        if not records:
            everything = await self._store.get_all()
            if everything.is_err():
                return everything
            records = everything.unwrap()
        return Ok(self._score(resolved.unwrap(), q, records, k))

    async def _distance_search(
        self,
        kind: IndexKind,
        query: VectorLike,
        k: int,
        build: Callable[[], Awaitable[Result[Any, VecalError]]],
    ) -> Result[list[SearchResult], VecalError]:
        checked = self._check_vector(query)
        if checked.is_err():
            return checked

        if self.index(kind) is None:
            self._log.debug("Building index on first search", kind=kind.value)
            built = await build()
            if built.is_err():
                return built

        hits = self.index(kind).search(checked.unwrap(), k)
        results: list[SearchResult] = []
        for record_id, distance in hits:
            fetched = await self.get(record_id)
            if fetched.is_err():
                return fetched
            record = fetched.unwrap()
            if record is not None:
                results.append(SearchResult(id=record_id, score=-distance, metadata=dict(record.metadata)))
        return Ok(rank_results(results, k))

    async def ivf_search(self, query: VectorLike, k: int = 5) -> Result[list[SearchResult], VecalError]:
        """IVF-Flat search; scores are negated Euclidean distances."""
        return await self._distance_search(IndexKind.IVF_FLAT, query, k, self.build_ivf_flat_index)

    async def hnsw_search(self, query: VectorLike, k: int = 5) -> Result[list[SearchResult], VecalError]:
        """Proximity-graph search; scores are negated Euclidean distances."""
        return await self._distance_search(IndexKind.HNSW, query, k, self.build_hnsw_index)

    def __repr__(self) -> str:
        return (
            f"VectorDB(name={self._config.name!r}, dimension={self._config.dimension}, "
            f"records={self._count}, indexes={[kind.value for kind in self.attached_indexes]})"
        )
