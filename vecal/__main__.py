"""
vecal CLI Entrypoint

Commands:
    vecal benchmark  Compare exact, LSH, IVF-Flat and HNSW search paths
    vecal version    Show version info
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, NoReturn, Optional

import numpy as np

from vecal.core.config import HNSWConfig, IVFFlatConfig, VectorDBConfig
from vecal.core.errors import Result
from vecal.core.types import SearchResult
from vecal.db.vector_db import VectorDB
from vecal.observability.logging import LogLevel, setup_logging

SearchFn = Callable[[np.ndarray], Awaitable[Result[list[SearchResult], object]]]


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="vecal",
        description="Embedded vector-similarity engine",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit JSON log lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("version", help="Show version info")

    bench_parser = subparsers.add_parser("benchmark", help="Run recall/latency benchmark")
    bench_parser.add_argument(
        "--vectors",
        type=int,
        default=2000,
        help="Number of random vectors (default: 2000)",
    )
    bench_parser.add_argument(
        "--dimension",
        type=int,
        default=32,
        help="Vector dimension (default: 32)",
    )
    bench_parser.add_argument(
        "--queries",
        type=int,
        default=50,
        help="Number of search queries (default: 50)",
    )
    bench_parser.add_argument(
        "--k",
        type=int,
        default=10,
        help="Results per query (default: 10)",
    )
    bench_parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed (default: 42)",
    )

    args = parser.parse_args(argv)
    setup_logging(level=LogLevel.parse(args.log_level), json_output=args.log_json)

    if args.command == "version":
        print(f"vecal {_get_version()}")
    elif args.command == "benchmark":
        asyncio.run(_run_benchmark(args))
    else:
        parser.print_help()

    sys.exit(0)


def _get_version() -> str:
    """Get package version."""
    from vecal import __version__
    return __version__


# =============================================================================
# BENCHMARK
# =============================================================================
@dataclass
class PathResults:
    """Recall and latency of one search path."""
    name: str
    latencies_ms: list[float] = field(default_factory=list)
    recalls: list[float] = field(default_factory=list)

    @property
    def mean_ms(self) -> float:
        return float(np.mean(self.latencies_ms)) if self.latencies_ms else 0.0

    @property
    def recall(self) -> float:
        return float(np.mean(self.recalls)) if self.recalls else 0.0


def compute_recall(found: list[SearchResult], truth: list[SearchResult]) -> float:
    """Fraction of exact top-k ids present in an approximate answer."""
    if not truth:
        return 1.0
    expected = {result.id for result in truth}
    return len(expected & {result.id for result in found}) / len(expected)


async def _time_path(
    path: PathResults,
    search: SearchFn,
    queries: np.ndarray,
    truth: list[list[SearchResult]],
) -> None:
    for query, expected in zip(queries, truth):
        start = time.perf_counter()
        found = (await search(query)).unwrap()
        path.latencies_ms.append((time.perf_counter() - start) * 1000)
        path.recalls.append(compute_recall(found, expected))


async def _run_benchmark(args: argparse.Namespace) -> None:
    """Build every index over random data and compare against exact search."""
    print("Running vecal benchmark...")
    print(f"  Vectors:   {args.vectors:,}")
    print(f"  Dimension: {args.dimension}")
    print(f"  Queries:   {args.queries}")
    print(f"  k:         {args.k}")

    rng = np.random.default_rng(args.seed)
    data = rng.standard_normal((args.vectors, args.dimension)).astype(np.float32)
    queries = rng.standard_normal((args.queries, args.dimension)).astype(np.float32)

    config = VectorDBConfig(
        name="benchmark",
        dimension=args.dimension,
        seed=args.seed,
        ivf_flat=IVFFlatConfig(nlist=max(1, int(np.sqrt(args.vectors))), nprobe=8),
        hnsw=HNSWConfig(use_worker=False),
    )

    async with VectorDB(config) as db:
        start = time.perf_counter()
        for vector in data:
            (await db.add(vector)).unwrap()
        insert_s = time.perf_counter() - start
        print(f"\nInserted in {insert_s:.2f}s ({args.vectors / max(insert_s, 1e-9):,.0f} vectors/sec)")

        for label, build in (
            ("LSH", db.build_index),
            ("IVF-Flat", db.build_ivf_flat_index),
            ("HNSW", db.build_hnsw_index),
        ):
            start = time.perf_counter()
            (await build()).unwrap()
            print(f"  {label:<9} built in {time.perf_counter() - start:.2f}s")

        # Euclidean ground truth for the distance-based paths, cosine for LSH
        l2_truth = [(await db.search(q, k=args.k, metric="l2")).unwrap() for q in queries]
        cos_truth = [(await db.search(q, k=args.k, metric="cosine")).unwrap() for q in queries]

        paths = [
            (PathResults("exact"), lambda q: db.search(q, k=args.k, metric="l2"), l2_truth),
            (PathResults("lsh"), lambda q: db.ann_search(q, k=args.k, metric="cosine"), cos_truth),
            (PathResults("ivf_flat"), lambda q: db.ivf_search(q, k=args.k), l2_truth),
            (PathResults("hnsw"), lambda q: db.hnsw_search(q, k=args.k), l2_truth),
        ]
        for path, search, truth in paths:
            await _time_path(path, search, queries, truth)

    print(f"\n{'Path':<10} {'Recall@' + str(args.k):>10} {'Mean ms':>10}")
    for path, _, _ in paths:
        print(f"{path.name:<10} {path.recall:>10.4f} {path.mean_ms:>10.3f}")


if __name__ == "__main__":
    main()
