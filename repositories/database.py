# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Provide connection pooling for psycopg3 async
# CREATED: 16 OCT 2026
# ============================================================================
"""
Database Connection Pool

One psycopg3 AsyncConnectionPool per process, shared by every WorkerLoop
in it and sized from the loop count. Connections identify themselves as
application_name=clusterplane so lease traffic is visible in
pg_stat_activity.

Authentication:
1. Managed Identity (Azure) - USE_MANAGED_IDENTITY=true
2. Password auth (local dev) - DATABASE_URL or POSTGRES_* vars

Usage:
    from repositories.database import init_pool, close_pool

    pool = await init_pool(concurrency=config.concurrency)
    try:
        store = PostgresClusterRepository(pool)
        ...
    finally:
        await close_pool()
"""

import os
import logging
from typing import Optional, Tuple

from psycopg import sql as psycopg_sql
from psycopg_pool import AsyncConnectionPool

from infrastructure.auth import get_postgres_connection_string, use_managed_identity

logger = logging.getLogger(__name__)

APPLICATION_NAME = "clusterplane"
DEFAULT_POOL_MAX = 10

_pool: Optional[AsyncConnectionPool] = None


def get_connection_string() -> str:
    """
    Get database connection string from environment.

    Priority:
    1. Managed Identity (if USE_MANAGED_IDENTITY=true)
    2. DATABASE_URL environment variable
    3. Individual POSTGRES_* components

    Returns:
        PostgreSQL connection string
    """
    if use_managed_identity():
        logger.info("Using Managed Identity for PostgreSQL authentication")
        return get_postgres_connection_string()

    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "require")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def mask_conninfo(conninfo: str) -> str:
    """Strip credentials from a connection string for logging."""
    if "@" in conninfo:
        return conninfo.split("@")[-1]
    if "password=" in conninfo:
        head, _, tail = conninfo.partition("password=")
        rest = tail.split(" ", 1)[1] if " " in tail else ""
        return f"{head}password=*** {rest}".strip()
    return conninfo


def pool_bounds(concurrency: int = 1) -> Tuple[int, int]:
    """
    Pool (min, max) for a process running `concurrency` worker loops.

    Each loop holds at most one connection for its claim/write and one for
    its lease heartbeat, so the ceiling is twice the loop count, never
    below the default of 10.
    """
    concurrency = max(1, concurrency)
    return min(concurrency, DEFAULT_POOL_MAX), max(DEFAULT_POOL_MAX, concurrency * 2)


async def init_pool(
    concurrency: int = 1,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Open the process-wide connection pool.

    Args:
        concurrency: Worker loops sharing the pool (sizes it)
        connection_string: Override connection string (defaults to env)

    Returns:
        Opened AsyncConnectionPool
    """
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    conninfo = connection_string or get_connection_string()
    min_size, max_size = pool_bounds(concurrency)
    logger.info(f"Initializing connection pool: {mask_conninfo(conninfo)}")

    _pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=min_size,
        max_size=max_size,
        kwargs={"application_name": APPLICATION_NAME},
        open=False,
    )

    await _pool.open()
    logger.info(
        f"Connection pool opened for {concurrency} worker loop(s) "
        f"(min={min_size}, max={max_size})"
    )

    return _pool


async def close_pool() -> None:
    """Close the process-wide connection pool, if open."""
    global _pool

    if _pool is None:
        return

    pool, _pool = _pool, None
    await pool.close()
    logger.info("Connection pool closed")


# ============================================================================
# SCHEMA CONSTANTS
# ============================================================================

SCHEMA = "clusterplane"

# Table identifiers - use with psycopg sql.SQL().format() for injection-safe queries
TABLE_CLUSTER_DOCUMENTS = psycopg_sql.Identifier(SCHEMA, "cluster_documents")


__all__ = [
    "get_connection_string",
    "mask_conninfo",
    "pool_bounds",
    "init_pool",
    "close_pool",
    "APPLICATION_NAME",
    "SCHEMA",
    "TABLE_CLUSTER_DOCUMENTS",
]
