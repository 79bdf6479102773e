# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Document store access layer
# PURPOSE: Cluster document store backends and connection pool
# CREATED: 16 OCT 2026
# ============================================================================
"""
Repositories Module

Provides the cluster document store (work queue + state repository).
PostgreSQL uses psycopg3 async with connection pooling.

Usage:
    from repositories import PostgresClusterRepository, init_pool, close_pool

    pool = await init_pool(concurrency=4)
    store = PostgresClusterRepository(pool)
    doc = await store.get(key)
"""

from .database import init_pool, close_pool, pool_bounds
from .cluster_repo import (
    ClusterDocumentStore,
    PostgresClusterRepository,
    new_concurrency_token,
)
from .memory_repo import InMemoryClusterRepository

__all__ = [
    "pool_bounds",
    "init_pool",
    "close_pool",
    "ClusterDocumentStore",
    "PostgresClusterRepository",
    "InMemoryClusterRepository",
    "new_concurrency_token",
]
