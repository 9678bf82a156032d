"""
Index Module: Distance Kernels and Candidate Indexes

Provides:
    - Distance kernels: cosine, dot, euclidean, manhattan, hamming, minkowski
    - LSHIndex: random-hyperplane hash buckets
    - IVFFlatIndex: k-means clustered inverted lists
    - HNSWIndex: flat proximity graph, plus an executor-backed builder
"""

from vecal.index.distance import (
    cosine,
    dot,
    euclidean,
    get_distance_fn,
    hamming,
    manhattan,
    minkowski,
    score_batch,
    similarity_score,
    vector_norm,
)
from vecal.index.lsh import LSHIndex
from vecal.index.ivf_flat import IVFFlatIndex
from vecal.index.hnsw import HNSWIndex, HNSWNode
from vecal.index.hnsw_worker import GraphBuildRequest, GraphBuildWorker, build_graph

__all__ = [
    # Candidate indexes
    "LSHIndex",
    "IVFFlatIndex",
    "HNSWIndex",
    "HNSWNode",
    # Graph build
    "GraphBuildRequest",
    "GraphBuildWorker",
    "build_graph",
    # Distance
    "cosine",
    "dot",
    "euclidean",
    "manhattan",
    "hamming",
    "minkowski",
    "get_distance_fn",
    "similarity_score",
    "score_batch",
    "vector_norm",
]
