# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for leases, polling and step timeouts
# CREATED: 16 OCT 2026
# ============================================================================
"""
Configuration Defaults

Tunables shared by the store adapter, the step runner and the worker loop.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class LeaseDefaults:
    """
    Defaults for the lease queue.

    The renew interval must stay well below the TTL so a live worker
    never lets its lease lapse between heartbeats.
    """
    lease_ttl_seconds: float = 60.0
    lease_renew_seconds: float = 20.0
    max_dequeues: int = 100
    write_retry_attempts: int = 5

    def problems(self) -> List[str]:
        """Return a list of invalid settings (empty when valid)."""
        errors = []
        if self.lease_ttl_seconds <= 0:
            errors.append("CP_LEASE_TTL_SEC must be positive")
        if self.lease_renew_seconds <= 0:
            errors.append("CP_LEASE_RENEW_SEC must be positive")
        if self.lease_renew_seconds >= self.lease_ttl_seconds:
            errors.append("CP_LEASE_RENEW_SEC must be shorter than CP_LEASE_TTL_SEC")
        if self.max_dequeues < 1:
            errors.append("CP_MAX_DEQUEUES must be at least 1")
        if self.write_retry_attempts < 1:
            errors.append("CP_WRITE_RETRY_ATTEMPTS must be at least 1")
        return errors

    @classmethod
    def from_env(cls) -> "LeaseDefaults":
        """Create from environment variables."""
        return cls(
            lease_ttl_seconds=float(os.getenv("CP_LEASE_TTL_SEC", 60)),
            lease_renew_seconds=float(os.getenv("CP_LEASE_RENEW_SEC", 20)),
            max_dequeues=int(os.getenv("CP_MAX_DEQUEUES", 100)),
            write_retry_attempts=int(os.getenv("CP_WRITE_RETRY_ATTEMPTS", 5)),
        )


@dataclass(frozen=True)
class TimeoutDefaults:
    """
    Defaults for polling and step deadlines.
    """
    # Worker idle poll (seconds)
    poll_interval: float = 1.0

    # Condition steps
    condition_poll_interval: float = 10.0
    condition_timeout: float = 30 * 60.0  # 30 min

    # Backoff before a document whose final write failed is retried
    retry_backoff: float = 30.0

    def problems(self) -> List[str]:
        """Return a list of invalid settings (empty when valid)."""
        errors = []
        if self.poll_interval <= 0:
            errors.append("CP_POLL_INTERVAL_SEC must be positive")
        if self.condition_poll_interval <= 0:
            errors.append("CP_CONDITION_POLL_SEC must be positive")
        if self.condition_timeout <= 0:
            errors.append("CP_CONDITION_TIMEOUT_SEC must be positive")
        if self.retry_backoff < 0:
            errors.append("CP_RETRY_BACKOFF_SEC must not be negative")
        return errors

    @classmethod
    def from_env(cls) -> "TimeoutDefaults":
        """Create from environment variables."""
        return cls(
            poll_interval=float(os.getenv("CP_POLL_INTERVAL_SEC", 1)),
            condition_poll_interval=float(os.getenv("CP_CONDITION_POLL_SEC", 10)),
            condition_timeout=float(os.getenv("CP_CONDITION_TIMEOUT_SEC", 1800)),
            retry_backoff=float(os.getenv("CP_RETRY_BACKOFF_SEC", 30)),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    leases: LeaseDefaults = field(default_factory=LeaseDefaults)
    timeouts: TimeoutDefaults = field(default_factory=TimeoutDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            leases=LeaseDefaults.from_env(),
            timeouts=TimeoutDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LeaseDefaults",
    "TimeoutDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
