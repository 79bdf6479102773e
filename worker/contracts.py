# ============================================================================
# WORKER CONTRACTS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Worker configuration
# PURPOSE: Settings for the worker loop, loaded from the environment
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Contracts

WorkerConfig collects every tunable the worker loop, the lease queue and
the step runner read. It is immutable and built once at startup.

Environment Variables:
    CP_WORKER_ID              Worker identity prefix (default: worker-<hostname>)
    WORKER_CONCURRENCY        WorkerLoops per process (default: 1)
    CP_STORE                  "postgres" or "memory" (default: postgres)
    CP_POLL_INTERVAL_SEC      Idle wait between empty dequeues
    CP_LEASE_TTL_SEC          Lease lifetime
    CP_LEASE_RENEW_SEC        Heartbeat interval (< TTL)
    CP_MAX_DEQUEUES           Claims before a document is failed
    CP_RETRY_BACKOFF_SEC      Delay before re-running after a failed final write
    CP_WRITE_RETRY_ATTEMPTS   Read-modify-write attempts on version conflicts
    CP_CONDITION_POLL_SEC     Default condition step poll interval
    CP_CONDITION_TIMEOUT_SEC  Default condition step deadline
    CP_GIT_COMMIT             Build stamp written to provisionedBy
"""

import os
import socket
import logging
from dataclasses import dataclass
from typing import List

from __version__ import GIT_COMMIT
from core.config import LeaseDefaults, TimeoutDefaults
from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("postgres", "memory")


@dataclass(frozen=True)
class WorkerConfig:
    """Configuration for the cluster worker."""

    # Identity
    worker_id: str
    build_stamp: str = GIT_COMMIT

    # Process layout
    concurrency: int = 1
    store_backend: str = "postgres"

    # Queue polling
    poll_interval: float = 1.0

    # Leases
    lease_ttl: float = 60.0
    lease_renew_interval: float = 20.0
    max_dequeues: int = 100
    write_retry_attempts: int = 5
    retry_backoff: float = 30.0

    # Condition steps
    condition_poll_interval: float = 10.0
    condition_timeout: float = 30 * 60.0

    def owner_id(self, index: int = 0) -> str:
        """Lease owner identity for the index-th loop in this process."""
        if self.concurrency == 1:
            return self.worker_id
        return f"{self.worker_id}-{index}"

    def problems(self) -> List[str]:
        """Every invalid or missing setting (empty when valid)."""
        errors = []
        if not self.worker_id:
            errors.append("CP_WORKER_ID must not be empty")
        if not self.build_stamp or self.build_stamp == "unknown":
            errors.append("CP_GIT_COMMIT must be set to the build stamp")
        if self.concurrency < 1:
            errors.append("WORKER_CONCURRENCY must be at least 1")
        if self.store_backend not in STORE_BACKENDS:
            errors.append(f"CP_STORE must be one of {', '.join(STORE_BACKENDS)}")
        errors.extend(LeaseDefaults(
            lease_ttl_seconds=self.lease_ttl,
            lease_renew_seconds=self.lease_renew_interval,
            max_dequeues=self.max_dequeues,
            write_retry_attempts=self.write_retry_attempts,
        ).problems())
        errors.extend(TimeoutDefaults(
            poll_interval=self.poll_interval,
            condition_poll_interval=self.condition_poll_interval,
            condition_timeout=self.condition_timeout,
            retry_backoff=self.retry_backoff,
        ).problems())
        return errors

    def validate(self) -> "WorkerConfig":
        """
        Check the configuration before any loop starts.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = self.problems()
        if errors:
            raise ConfigurationError(errors)
        return self

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Create config from environment variables."""
        leases = LeaseDefaults.from_env()
        timeouts = TimeoutDefaults.from_env()

        return cls(
            worker_id=os.getenv("CP_WORKER_ID", f"worker-{socket.gethostname()}"),
            build_stamp=os.getenv("CP_GIT_COMMIT", GIT_COMMIT),
            concurrency=int(os.getenv("WORKER_CONCURRENCY", "1")),
            store_backend=os.getenv("CP_STORE", "postgres").lower(),
            poll_interval=timeouts.poll_interval,
            lease_ttl=leases.lease_ttl_seconds,
            lease_renew_interval=leases.lease_renew_seconds,
            max_dequeues=leases.max_dequeues,
            write_retry_attempts=leases.write_retry_attempts,
            retry_backoff=timeouts.retry_backoff,
            condition_poll_interval=timeouts.condition_poll_interval,
            condition_timeout=timeouts.condition_timeout,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "STORE_BACKENDS",
    "WorkerConfig",
]
