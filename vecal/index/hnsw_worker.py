"""
Off-Thread HNSW Graph Construction

Building the flat graph is O(n² × d); doing it on the event loop would stall
every other coroutine. GraphBuildWorker ships a GraphBuildRequest to an
executor (a process pool by default) and awaits the finished HNSWIndex.

Fallback:
    If no executor can be created, or the executor raises for any reason
    (pickling, a crashed worker process, a broken pool), the graph is built
    in-process instead. Construction is deterministic, so both paths yield
    the same graph for the same request.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ProcessPoolExecutor
from dataclasses import dataclass
from typing import Optional

from vecal.core.errors import IndexBuildError
from vecal.core.types import IndexEntry
from vecal.index.hnsw import HNSWIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GraphBuildRequest:
    """Everything a worker needs to rebuild the graph. Must stay picklable."""
    dimension: int
    m: int
    ef_construction: int
    entries: tuple[IndexEntry, ...]
    ef_search: int = 64


def build_graph(request: GraphBuildRequest) -> HNSWIndex:
    """Build an HNSWIndex from a request (runs inside the executor)."""
    index = HNSWIndex(
        dimension=request.dimension,
        M=request.m,
        ef_construction=request.ef_construction,
        ef_search=request.ef_search,
    )
    index.build(request.entries)
    return index


class GraphBuildWorker:
    """
    Async facade over an executor for graph builds.

    Args:
        executor: Executor to submit to. When None a single-process
            ProcessPoolExecutor is created on first use and owned (and shut
            down) by this worker.
        max_workers: Pool size for the owned executor
    """

    __slots__ = ("_executor", "_owns_executor", "_max_workers", "_unavailable")

    def __init__(self, executor: Optional[Executor] = None, max_workers: int = 1) -> None:
        self._executor = executor
        self._owns_executor = executor is None
        self._max_workers = max_workers
        self._unavailable = False

    def _get_executor(self) -> Optional[Executor]:
        if self._executor is None and not self._unavailable:
            try:
                self._executor = ProcessPoolExecutor(max_workers=self._max_workers)
            except (NotImplementedError, OSError) as e:
                logger.warning("Process pool unavailable, building graphs in-process: %s", e)
                self._unavailable = True
        return self._executor

    async def build(self, request: GraphBuildRequest) -> HNSWIndex:
        """
        Build the graph on the executor, falling back to in-process.

        Never raises for executor failures; errors from the in-process
        fallback propagate to the caller.
        """
        executor = self._get_executor()
        if executor is not None:
            loop = asyncio.get_running_loop()
            try:
                return await loop.run_in_executor(executor, build_graph, request)
            except Exception as e:
                failure = IndexBuildError.worker_failed(e)
                logger.warning(
                    "%s, building in-process",
                    failure,
                    exc_info=True,
                    extra={"code": failure.code.name},
                )
        return build_graph(request)

    def shutdown(self) -> None:
        """Release an owned executor. Injected executors are left running."""
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    @property
    def executor(self) -> Optional[Executor]:
        return self._executor
