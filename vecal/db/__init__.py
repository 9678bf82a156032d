"""
Database Module: the VectorDB orchestrator.
"""

from vecal.db.vector_db import VectorDB, cache_capacity_for

__all__ = [
    "VectorDB",
    "cache_capacity_for",
]
