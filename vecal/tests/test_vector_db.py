"""
Integration Tests: VectorDB Orchestrator

Tests:
    - CRUD through store, indexes and cache
    - Exact and approximate search paths
    - Cache capacity tracking
    - Dimension validation and error pass-through
    - Lazy index builds, worker builds and mutation replay during builds

Scenarios run with asyncio.run() inside synchronous tests.
"""

from __future__ import annotations

import asyncio
import itertools
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from vecal.core.config import HNSWConfig, IVFFlatConfig, VectorDBConfig
from vecal.core.errors import (
    ConfigError,
    DimensionMismatchError,
    Err,
    ErrorCode,
    NotFoundError,
    StorageError,
)
from vecal.core.types import IndexKind
from vecal.db.vector_db import VectorDB, cache_capacity_for
from vecal.index.hnsw_worker import GraphBuildWorker, build_graph
from vecal.storage.memory import InMemoryRecordStore


A = [0.9, 0.1, 0.1]
B = [0.1, 0.9, 0.1]
C = [0.1, 0.1, 0.9]
QUERY = [0.85, 0.2, 0.15]


def run(coro):
    return asyncio.run(coro)


def sequential_ids(prefix: str = "r"):
    counter = itertools.count()
    return lambda: f"{prefix}{next(counter)}"


def make_db(dimension: int = 3, store=None, worker=None, **kwargs) -> VectorDB:
    config = VectorDBConfig(
        name="test",
        dimension=dimension,
        seed=7,
        hnsw=HNSWConfig(M=4, use_worker=False),
        **kwargs,
    )
    return VectorDB(config, store=store, id_factory=sequential_ids(), worker=worker)


class FlakyStore(InMemoryRecordStore):
    """In-memory store that returns a queued error for the next named call."""

    def __init__(self, name: str = "test") -> None:
        super().__init__(name)
        self.fail_next: dict[str, StorageError] = {}

    async def add(self, record):
        if "add" in self.fail_next:
            return Err(self.fail_next.pop("add"))
        return await super().add(record)

    async def put(self, record):
        if "put" in self.fail_next:
            return Err(self.fail_next.pop("put"))
        return await super().put(record)

    async def delete(self, record_id):
        if "delete" in self.fail_next:
            return Err(self.fail_next.pop("delete"))
        return await super().delete(record_id)

    async def get_all(self):
        if "get_all" in self.fail_next:
            return Err(self.fail_next.pop("get_all"))
        return await super().get_all()


class GatedWorker(GraphBuildWorker):
    """Worker that holds every build until the gate opens."""

    def __init__(self) -> None:
        super().__init__(executor=None)
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def build(self, request):
        self.started.set()
        await self.gate.wait()
        return build_graph(request)


# =============================================================================
# LIFECYCLE & CONFIG
# =============================================================================
class TestLifecycle:
    """Construction, open/close and configuration."""

    def test_invalid_config_raises(self):
        with pytest.raises(ConfigError):
            VectorDB(VectorDBConfig(name="bad", dimension=0))

    def test_context_manager(self):
        async def scenario():
            async with make_db() as db:
                assert db.is_open
                (await db.add(A)).unwrap()
                count = (await db.count()).unwrap()
            return db, count

        db, count = run(scenario())
        assert count == 1
        assert not db.is_open

    def test_open_loads_existing_count(self):
        store = InMemoryRecordStore("shared")

        async def scenario():
            first = make_db(store=store)
            for _ in range(10):
                (await first.add(A)).unwrap()
            await first.close()

            second = VectorDB(VectorDBConfig(name="shared", dimension=3), store=store)
            (await second.open()).unwrap()
            return (await second.count()).unwrap(), second.cache_capacity

        assert run(scenario()) == (10, 2)

    def test_operations_open_lazily(self):
        db = make_db()
        record_id = run(db.add(A)).unwrap()
        assert db.is_open
        assert record_id == "r0"

    def test_reuse_after_close(self):
        v = np.array([0.9, 0.2, -0.4])

        async def scenario():
            db = make_db()
            record_id = (await db.add(v)).unwrap()
            (await db.build_index(num_hashes=8)).unwrap()
            assert db.index(IndexKind.LSH).query(-v, radius=0) == []
            await db.close()
            assert not db.is_open

            ann = (await db.ann_search(-v, k=1, radius=0)).unwrap()
            reopened = db.is_open
            await db.close()
            exact = (await db.search(v, k=1)).unwrap()
            count = (await db.count()).unwrap()
            return record_id, ann, reopened, exact, count

        record_id, ann, reopened, exact, count = run(scenario())
        assert [hit.id for hit in ann] == [record_id]
        assert reopened
        assert [hit.id for hit in exact] == [record_id]
        assert count == 1


# =============================================================================
# CRUD
# =============================================================================
class TestCrud:
    """add / get / update / delete."""

    def test_add_get_round_trip(self):
        async def scenario():
            db = make_db()
            record_id = (await db.add(A, {"title": "a"})).unwrap()
            db.cache.clear()
            return record_id, (await db.get(record_id)).unwrap(), db

        record_id, record, db = run(scenario())
        assert record.id == record_id
        assert record.metadata == {"title": "a"}
        np.testing.assert_allclose(record.vector, A, rtol=1e-6)
        assert record.norm == pytest.approx(np.linalg.norm(A), rel=1e-6)
        assert record_id in db.cache

    def test_get_missing_is_none(self):
        assert run(make_db().get("nope")).unwrap() is None

    def test_update_metadata_only(self):
        async def scenario():
            db = make_db()
            record_id = (await db.add(A, {"v": 1})).unwrap()
            updated = (await db.update(record_id, metadata={"v": 2})).unwrap()
            fetched = (await db.get(record_id)).unwrap()
            return updated, fetched

        updated, fetched = run(scenario())
        assert updated.metadata == {"v": 2}
        assert fetched.metadata == {"v": 2}
        np.testing.assert_allclose(fetched.vector, A, rtol=1e-6)

    def test_update_missing(self):
        result = run(make_db().update("missing", vector=A))
        assert isinstance(result.error, NotFoundError)
        assert result.error.code == ErrorCode.RECORD_NOT_FOUND

    def test_update_recomputes_norm(self):
        async def scenario():
            db = make_db()
            record_id = (await db.add(A)).unwrap()
            return (await db.update(record_id, vector=[0.0, 3.0, 4.0])).unwrap()

        assert run(scenario()).norm == pytest.approx(5.0)

    def test_delete(self):
        async def scenario():
            db = make_db()
            record_id = (await db.add(A)).unwrap()
            existed = (await db.delete(record_id)).unwrap()
            again = (await db.delete(record_id)).unwrap()
            fetched = (await db.get(record_id)).unwrap()
            return existed, again, fetched, (await db.count()).unwrap()

        assert run(scenario()) == (True, False, None, 0)

    def test_delete_removes_from_every_index(self):
        async def scenario():
            db = make_db()
            ids = [(await db.add(v)).unwrap() for v in (A, B, C)]
            (await db.build_index(num_hashes=6)).unwrap()
            (await db.build_ivf_flat_index(nlist=2, nprobe=2)).unwrap()
            (await db.build_hnsw_index()).unwrap()
            (await db.delete(ids[1])).unwrap()
            return db, ids

        db, ids = run(scenario())
        assert db.attached_indexes == [IndexKind.LSH, IndexKind.IVF_FLAT, IndexKind.HNSW]
        for kind in db.attached_indexes:
            index = db.index(kind)
            assert ids[1] not in index
            assert len(index) == 2
        assert ids[1] not in db.index(IndexKind.LSH).query(B, radius=6)
        assert ids[1] not in db.cache

    def test_update_relocates_lsh_bucket(self):
        v1 = np.array([0.9, 0.2, -0.4])
        v2 = -v1

        async def scenario():
            db = make_db()
            record_id = (await db.add(v1)).unwrap()
            (await db.build_index(num_hashes=8)).unwrap()
            (await db.update(record_id, vector=v2)).unwrap()
            hits = (await db.ann_search(v2, k=1, radius=0)).unwrap()
            return db, record_id, hits

        db, record_id, hits = run(scenario())
        lsh = db.index(IndexKind.LSH)
        assert lsh.query(v2, radius=0) == [record_id]
        assert lsh.query(v1, radius=0) == []
        assert [hit.id for hit in hits] == [record_id]

    def test_update_moves_record_in_every_index(self):
        async def scenario():
            db = make_db()
            ids = [(await db.add(v)).unwrap() for v in (A, B, C)]
            (await db.build_ivf_flat_index(nlist=1)).unwrap()
            (await db.build_hnsw_index()).unwrap()
            (await db.update(ids[0], vector=[5.0, 5.0, 5.0])).unwrap()
            ivf = (await db.ivf_search([5.0, 5.0, 5.0], k=1)).unwrap()
            graph = (await db.hnsw_search([5.0, 5.0, 5.0], k=1)).unwrap()
            return ids, ivf, graph

        ids, ivf, graph = run(scenario())
        assert ivf[0].id == ids[0]
        assert graph[0].id == ids[0]
        assert ivf[0].score == pytest.approx(0.0)


# =============================================================================
# CACHE
# =============================================================================
class TestCacheCapacity:
    """Cache capacity follows max(floor(0.2 × count), 1)."""

    @pytest.mark.parametrize("count, expected", [(0, 1), (4, 1), (5, 1), (9, 1), (10, 2), (15, 3)])
    def test_formula(self, count, expected):
        assert cache_capacity_for(count) == expected

    def test_capacity_tracks_adds_and_deletes(self):
        async def scenario():
            db = make_db()
            ids = []
            for _ in range(5):
                ids.append((await db.add(A)).unwrap())
            after_five = db.cache_capacity
            for _ in range(5):
                ids.append((await db.add(B)).unwrap())
            after_ten = db.cache_capacity
            (await db.delete(ids[0])).unwrap()
            after_delete = db.cache_capacity
            return after_five, after_ten, after_delete, len(db.cache)

        after_five, after_ten, after_delete, cached = run(scenario())
        assert after_five == 1
        assert after_ten == 2
        assert after_delete == 1
        assert cached <= 1


# =============================================================================
# VALIDATION & ERRORS
# =============================================================================
class TestValidation:
    """Dimension checks and error propagation."""

    def test_add_wrong_dimension_leaves_count(self):
        async def scenario():
            db = make_db()
            (await db.add(A)).unwrap()
            result = await db.add([1.0, 2.0])
            return result, (await db.count()).unwrap()

        result, count = run(scenario())
        assert isinstance(result.error, DimensionMismatchError)
        assert result.error.message == "Vector dimension mismatch. Expected 3, got 2"
        assert count == 1

    def test_non_flat_vector(self):
        result = run(make_db().add([[1.0, 2.0, 3.0]]))
        assert result.error.code == ErrorCode.INVALID_VECTOR

    @pytest.mark.parametrize("method", ["search", "ann_search", "ivf_search", "hnsw_search"])
    def test_search_wrong_dimension(self, method):
        async def scenario():
            db = make_db()
            (await db.add(A)).unwrap()
            return await getattr(db, method)([1.0, 2.0])

        assert isinstance(run(scenario()).error, DimensionMismatchError)

    def test_update_wrong_dimension_touches_nothing(self):
        async def scenario():
            db = make_db()
            record_id = (await db.add(A)).unwrap()
            result = await db.update(record_id, vector=[1.0])
            return result, (await db.get(record_id)).unwrap()

        result, record = run(scenario())
        assert isinstance(result.error, DimensionMismatchError)
        np.testing.assert_allclose(record.vector, A, rtol=1e-6)

    def test_unknown_metric(self):
        async def scenario():
            db = make_db()
            (await db.add(A)).unwrap()
            return await db.search(A, metric="chebyshev")

        assert isinstance(run(scenario()).error, ConfigError)

    def test_store_add_error_passes_through(self):
        store = FlakyStore()
        error = StorageError.write_error("vectors", "disk full")
        store.fail_next["add"] = error

        async def scenario():
            db = make_db(store=store)
            (await db.build_index()).unwrap()
            result = await db.add(A)
            return db, result

        db, result = run(scenario())
        assert result.error is error
        assert len(db.index(IndexKind.LSH)) == 0
        assert len(db.cache) == 0
        assert run(db.count()).unwrap() == 0

    def test_store_put_error_keeps_indexes(self):
        store = FlakyStore()
        error = StorageError.write_error("vectors", "timeout")

        async def scenario():
            db = make_db(store=store)
            record_id = (await db.add(A)).unwrap()
            (await db.build_index(num_hashes=8)).unwrap()
            store.fail_next["put"] = error
            result = await db.update(record_id, vector=[-0.9, -0.1, -0.1])
            return db, record_id, result

        db, record_id, result = run(scenario())
        assert result.error is error
        assert db.index(IndexKind.LSH).query(A, radius=0) == [record_id]

    def test_store_delete_error_passes_through(self):
        store = FlakyStore()
        error = StorageError.write_error("vectors", "locked")

        async def scenario():
            db = make_db(store=store)
            record_id = (await db.add(A)).unwrap()
            store.fail_next["delete"] = error
            return db, record_id, await db.delete(record_id)

        db, record_id, result = run(scenario())
        assert result.error is error
        assert run(db.count()).unwrap() == 1

    def test_search_store_error_passes_through(self):
        store = FlakyStore()
        error = StorageError.read_error("vectors", "unavailable")
        store.fail_next["get_all"] = error
        assert run(make_db(store=store).search(A)).error is error


# =============================================================================
# SEARCH
# =============================================================================
class TestSearch:
    """Exact and approximate search paths."""

    def test_cosine_scenario(self):
        async def scenario():
            db = make_db()
            ids = [(await db.add(v)).unwrap() for v in (A, B, C)]
            hits = (await db.search(QUERY, k=2, metric="cosine")).unwrap()
            return ids, hits

        ids, hits = run(scenario())
        assert [hit.id for hit in hits] == [ids[0], ids[1]]
        assert hits[0].score > hits[1].score

    def test_default_metric_is_config(self):
        async def scenario():
            db = make_db()
            for v in (A, B, C):
                (await db.add(v)).unwrap()
            return (
                (await db.search(QUERY, k=3)).unwrap(),
                (await db.search(QUERY, k=3, metric="cosine")).unwrap(),
            )

        default, explicit = run(scenario())
        assert default == explicit

    @pytest.mark.parametrize("metric", ["dot", "cosine", "l2"])
    def test_singleton_round_trip(self, metric):
        v = [0.3, -0.6, 0.2]

        async def scenario():
            db = make_db()
            record_id = (await db.add(v)).unwrap()
            return record_id, (await db.search(v, k=1, metric=metric)).unwrap()

        record_id, hits = run(scenario())
        assert [hit.id for hit in hits] == [record_id]

    def test_distance_scores_negated(self):
        async def scenario():
            db = make_db()
            (await db.add([0.0, 0.0, 0.0])).unwrap()
            (await db.add([3.0, 4.0, 0.0])).unwrap()
            return (await db.search([0.0, 0.0, 0.0], k=2, metric="l2")).unwrap()

        hits = run(scenario())
        assert [hit.score for hit in hits] == pytest.approx([0.0, -5.0])

    def test_ann_search_full_radius_matches_exact(self):
        async def scenario():
            db = make_db()
            ids = [(await db.add(v)).unwrap() for v in (A, B, C)]
            (await db.build_index(num_hashes=4)).unwrap()
            hits = (await db.ann_search(QUERY, k=2, radius=4, metric="cosine")).unwrap()
            return ids, hits

        ids, hits = run(scenario())
        assert [hit.id for hit in hits] == [ids[0], ids[1]]

    def test_ann_search_builds_lsh_lazily(self):
        async def scenario():
            db = make_db()
            (await db.add(A)).unwrap()
            assert db.attached_indexes == []
            (await db.ann_search(A, k=1)).unwrap()
            return db

        db = run(scenario())
        assert db.attached_indexes == [IndexKind.LSH]
        assert db.index(IndexKind.LSH).num_hashes == db.config.lsh.num_hashes

    def test_ann_search_radius_zero_finds_own_vector(self):
        async def scenario():
            db = make_db()
            ids = [(await db.add(v)).unwrap() for v in (A, B, C)]
            hits = (await db.ann_search(B, k=1, radius=0)).unwrap()
            return ids, hits

        ids, hits = run(scenario())
        assert hits[0].id == ids[1]

    def test_ann_search_falls_back_when_no_candidates(self):
        v = np.array([0.9, 0.2, -0.4])

        async def scenario():
            db = make_db()
            record_id = (await db.add(v)).unwrap()
            (await db.build_index(num_hashes=8)).unwrap()
            assert db.index(IndexKind.LSH).query(-v, radius=0) == []
            return record_id, (await db.ann_search(-v, k=3, radius=0)).unwrap()

        record_id, hits = run(scenario())
        assert [hit.id for hit in hits] == [record_id]

    def test_ivf_search_tolerates_nan_record(self):
        points = [[np.nan, 0.0], [0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0], [0.1, 0.1]]

        async def scenario():
            db = make_db(dimension=2, ivf_flat=IVFFlatConfig(nlist=4, nprobe=1))
            for p in points:
                (await db.add(p)).unwrap()
            exact = (await db.search([0.0, 0.0], k=2, metric="l2")).unwrap()
            ivf = (await db.ivf_search([0.0, 0.0], k=2)).unwrap()
            return exact, ivf

        exact, ivf = run(scenario())
        assert [hit.id for hit in ivf] == ["r1", "r5"] == [hit.id for hit in exact]
        assert [hit.score for hit in ivf] == pytest.approx([0.0, -np.hypot(0.1, 0.1)], rel=1e-5)

    def test_ivf_single_list_equals_exact(self):
        rng = np.random.default_rng(11)
        data = rng.standard_normal((30, 3))
        query = rng.standard_normal(3)

        async def scenario():
            db = make_db()
            for v in data:
                (await db.add(v)).unwrap()
            (await db.build_ivf_flat_index(nlist=1, nprobe=1)).unwrap()
            return (
                (await db.ivf_search(query, k=5)).unwrap(),
                (await db.search(query, k=5, metric="l2")).unwrap(),
            )

        ivf, exact = run(scenario())
        assert [hit.id for hit in ivf] == [hit.id for hit in exact]
        assert [hit.score for hit in ivf] == pytest.approx([hit.score for hit in exact], rel=1e-5)

    def test_ivf_and_hnsw_build_lazily(self):
        async def scenario():
            db = make_db()
            for v in (A, B, C):
                (await db.add(v)).unwrap()
            ivf = (await db.ivf_search(A, k=1)).unwrap()
            graph = (await db.hnsw_search(A, k=1)).unwrap()
            return db, ivf, graph

        db, ivf, graph = run(scenario())
        assert db.attached_indexes == [IndexKind.IVF_FLAT, IndexKind.HNSW]
        assert ivf[0].id == graph[0].id == "r0"

    def test_hnsw_search_matches_exact_l2(self):
        rng = np.random.default_rng(5)
        data = rng.standard_normal((25, 3))

        async def scenario():
            db = make_db()
            for v in data:
                (await db.add(v)).unwrap()
            (await db.build_hnsw_index()).unwrap()
            return (
                (await db.hnsw_search(data[3], k=4)).unwrap(),
                (await db.search(data[3], k=4, metric="l2")).unwrap(),
            )

        graph, exact = run(scenario())
        assert [hit.id for hit in graph] == [hit.id for hit in exact]
        assert graph[0].id == "r3"

    def test_search_results_carry_metadata(self):
        async def scenario():
            db = make_db()
            (await db.add(A, {"title": "alpha"})).unwrap()
            return (await db.search(A, k=1)).unwrap()

        assert run(scenario())[0].metadata == {"title": "alpha"}


# =============================================================================
# INDEX BUILDS
# =============================================================================
class TestIndexBuilds:
    """Worker builds, rebuild replacement and mutation replay."""

    def test_hnsw_build_uses_configured_ef_search(self):
        config = VectorDBConfig(
            name="test",
            dimension=3,
            hnsw=HNSWConfig(M=4, ef_search=12, use_worker=False),
        )

        async def scenario():
            db = VectorDB(config)
            (await db.add(A)).unwrap()
            return (await db.build_hnsw_index()).unwrap()

        assert run(scenario()).ef_search == 12

    def test_nested_metadata_isolated_from_caller(self):
        async def scenario():
            db = make_db()
            metadata = {"tags": ["a"]}
            record_id = (await db.add(A, metadata)).unwrap()
            metadata["tags"].append("b")
            cached = (await db.get(record_id)).unwrap()
            cached.metadata["tags"].append("c")
            db.cache.clear()
            return cached, (await db.get(record_id)).unwrap()

        cached, stored = run(scenario())
        assert cached.metadata == {"tags": ["a", "c"]}
        assert stored.metadata == {"tags": ["a"]}

    def test_rebuild_replaces_slot(self):
        async def scenario():
            db = make_db()
            (await db.add(A)).unwrap()
            first = (await db.build_index(num_hashes=4)).unwrap()
            second = (await db.build_index(num_hashes=6)).unwrap()
            return db, first, second

        db, first, second = run(scenario())
        assert db.index(IndexKind.LSH) is second
        assert second is not first
        assert second.num_hashes == 6

    def test_build_on_empty_store(self):
        async def scenario():
            db = make_db()
            (await db.build_ivf_flat_index()).unwrap()
            (await db.build_hnsw_index()).unwrap()
            record_id = (await db.add(A)).unwrap()
            return record_id, (await db.ivf_search(A, k=1)).unwrap(), (await db.hnsw_search(A, k=1)).unwrap()

        record_id, ivf, graph = run(scenario())
        assert ivf[0].id == graph[0].id == record_id

    def test_worker_build_matches_in_process(self):
        rng = np.random.default_rng(3)
        data = rng.standard_normal((20, 3))
        executor = ThreadPoolExecutor(max_workers=1)

        async def scenario():
            db = make_db(worker=GraphBuildWorker(executor=executor))
            for v in data:
                (await db.add(v)).unwrap()
            offloaded = (await db.build_hnsw_index(use_worker=True)).unwrap()
            local = (await db.build_hnsw_index(use_worker=False)).unwrap()
            await db.close()
            return offloaded, local

        try:
            offloaded, local = run(scenario())
        finally:
            executor.shutdown(wait=True)

        for node_id in local.ids():
            assert offloaded.neighbors(node_id) == local.neighbors(node_id)

    def test_mutations_during_build_are_replayed(self):
        async def scenario():
            worker = GatedWorker()
            db = make_db(worker=worker)
            first = (await db.add(A)).unwrap()
            second = (await db.add(B)).unwrap()

            task = asyncio.create_task(db.build_hnsw_index(use_worker=True))
            await worker.started.wait()
            late = (await db.add(C)).unwrap()
            (await db.delete(first)).unwrap()
            (await db.update(second, vector=[0.0, 0.0, 1.0])).unwrap()
            worker.gate.set()
            (await task).unwrap()

            graph = db.index(IndexKind.HNSW)
            hits = (await db.hnsw_search([0.0, 0.0, 1.0], k=1)).unwrap()
            return graph, first, second, late, hits

        graph, first, second, late, hits = run(scenario())
        assert graph.ids() == {second, late}
        assert first not in graph
        assert hits[0].id == second
