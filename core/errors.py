# ============================================================================
# CLAUDE CONTEXT - ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Foundation - Exceptions shared by store, runner and worker
# PURPOSE: One place for every error the control plane raises
# LAST_REVIEWED: 16 OCT 2026
# ============================================================================
"""
Error taxonomy.

Fatal to a pipeline run:
    StepError, StepTimeoutError

Swallowed locally:
    DiagnosticsProbeError

Transient (handled inside the worker loop / store adapter):
    LeaseConflictError, VersionConflictError, NotFoundError

Fatal at startup:
    ConfigurationError
"""

from typing import List, Optional


class ClusterPlaneError(Exception):
    """Base exception for control plane errors."""
    pass


# ============================================================================
# PIPELINE ERRORS
# ============================================================================

class StepError(ClusterPlaneError):
    """
    A pipeline step failed.

    The step runner re-raises the original exception; the worker loop
    wraps it in a StepError to record which step failed.
    """

    def __init__(self, name: str, cause: BaseException):
        self.name = name
        self.cause = cause
        super().__init__(f"step [{name}] encountered error: {cause}")


class StepTimeoutError(ClusterPlaneError):
    """Raised when a condition step does not hold before its deadline."""

    def __init__(self, name: str, timeout_seconds: float):
        self.name = name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"timed out waiting for condition [{name}] after {timeout_seconds:g}s"
        )


class DiagnosticsProbeError(ClusterPlaneError):
    """A diagnostics probe could not read its resource."""

    def __init__(self, probe: str, cause: BaseException):
        self.probe = probe
        self.cause = cause
        super().__init__(str(cause))


class PipelineNotFoundError(ClusterPlaneError):
    """Raised when no pipeline is registered for a provisioning state."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"No pipeline registered for state: {state}")


class DuplicatePipelineError(ClusterPlaneError):
    """Raised when a pipeline is registered twice for the same state."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Pipeline already registered for state: {state}")


# ============================================================================
# STORE ERRORS
# ============================================================================

class StoreError(ClusterPlaneError):
    """Base exception for document store errors."""
    pass


class NotFoundError(StoreError):
    """No document (or no eligible document) exists. Not a failure."""

    def __init__(self, key: Optional[str] = None):
        self.key = key
        if key:
            super().__init__(f"Cluster document not found: {key}")
        else:
            super().__init__("No eligible cluster document")


class ConflictError(StoreError):
    """A conditional write was rejected."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(message)


class LeaseConflictError(ConflictError):
    """Another worker won the race for a document, or the lease was lost."""

    def __init__(self, key: str, owner: Optional[str] = None):
        self.owner = owner
        super().__init__(key, f"Lease conflict on {key}")


class VersionConflictError(ConflictError):
    """The stored concurrency token moved since the document was read."""

    def __init__(self, key: str, token: Optional[str] = None):
        self.token = token
        super().__init__(key, f"Concurrency token {token} is stale for {key}")


# ============================================================================
# STARTUP ERRORS
# ============================================================================

class ConfigurationError(ClusterPlaneError):
    """Required settings are missing or invalid. Fatal before startup."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid configuration: " + "; ".join(problems))


__all__ = [
    "ClusterPlaneError",
    "StepError",
    "StepTimeoutError",
    "DiagnosticsProbeError",
    "PipelineNotFoundError",
    "DuplicatePipelineError",
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "LeaseConflictError",
    "VersionConflictError",
    "ConfigurationError",
]
