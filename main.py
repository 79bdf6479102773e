# ============================================================================
# CLUSTER CONTROL PLANE - MAIN ENTRY POINT
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Backend process entry point
# PURPOSE: Start worker loops against the shared document store
# CREATED: 16 OCT 2026
# ============================================================================
"""
Cluster Control Plane Backend

Starts WORKER_CONCURRENCY worker loops that share one document store and
runs them until SIGTERM/SIGINT. The process exposes no network surface.

Startup order:
1. Configure logging
2. Load and validate configuration (exit 1 on any problem)
3. Open the PostgreSQL pool (or build the in-memory store)
4. Register signal handlers that stop every loop
5. Run the loops until they all return
6. Close the pool

Usage:
    CP_GIT_COMMIT=$(git rev-parse --short HEAD) python main.py

Environment Variables:
    LOG_LEVEL / LOG_FORMAT    Logging level and format (json for production)
    CP_STORE                  postgres (default) or memory
    DATABASE_URL / POSTGRES_* Database connection (see repositories.database)
    USE_MANAGED_IDENTITY      Azure AD auth for PostgreSQL (see infrastructure.auth)
    ... see worker.contracts for worker tunables
"""

import asyncio
import os
import signal
import sys
from typing import List, Optional

from __version__ import __version__, BUILD_DATE, EPOCH
from core.errors import ConfigurationError
from core.logging import configure_logging, get_logger
from core.observability import get_metrics
from orchestrator.pipelines import default_pipelines
from repositories import (
    ClusterDocumentStore,
    InMemoryClusterRepository,
    PostgresClusterRepository,
    close_pool,
    init_pool,
)
from worker import WorkerConfig, WorkerLoop, manager_factory_for

logger = get_logger(__name__)


def load_config() -> WorkerConfig:
    """
    Load and validate configuration.

    Raises:
        ConfigurationError: Any setting missing or invalid
    """
    try:
        config = WorkerConfig.from_env()
    except ValueError as e:
        raise ConfigurationError([f"Malformed numeric setting: {e}"]) from e
    return config.validate()


async def build_store(config: WorkerConfig) -> ClusterDocumentStore:
    """Open the configured document store backend."""
    if config.store_backend == "memory":
        logger.warning("Using in-memory document store; state is lost on exit")
        return InMemoryClusterRepository(
            lease_ttl_seconds=config.lease_ttl,
            write_retry_attempts=config.write_retry_attempts,
        )

    pool = await init_pool(concurrency=config.concurrency)
    return PostgresClusterRepository(
        pool,
        lease_ttl_seconds=config.lease_ttl,
        write_retry_attempts=config.write_retry_attempts,
    )


def install_signal_handlers(loops: List[WorkerLoop]) -> None:
    """Stop every loop on SIGTERM/SIGINT."""
    loop = asyncio.get_running_loop()

    def shutdown_handler(sig: signal.Signals) -> None:
        logger.info(f"{sig.name} received, stopping {len(loops)} worker loop(s)")
        for worker in loops:
            worker.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_handler, sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


async def main(config: Optional[WorkerConfig] = None) -> int:
    """Run the backend. Returns the process exit code."""
    logger.info(f"Starting cluster control plane v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    if config is None:
        try:
            config = load_config()
        except ConfigurationError as e:
            for problem in e.problems:
                logger.error(f"Configuration: {problem}")
            return 1

    logger.info(
        f"Worker {config.worker_id}: concurrency={config.concurrency}, "
        f"store={config.store_backend}, build={config.build_stamp}"
    )

    store = await build_store(config)
    try:
        pipelines = default_pipelines()
        factory = manager_factory_for(store, config, emitter=get_metrics())

        loops = [
            WorkerLoop(store, pipelines, factory, config, owner_id=config.owner_id(i))
            for i in range(config.concurrency)
        ]
        install_signal_handlers(loops)

        await asyncio.gather(*(worker.run() for worker in loops))
    finally:
        await close_pool()

    logger.info("Cluster control plane stopped")
    return 0


def run() -> None:
    """Synchronous entry point."""
    configure_logging(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
    )
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
