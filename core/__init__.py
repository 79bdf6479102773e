# ============================================================================
# CLAUDE CONTEXT - CORE MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models and errors
# LAST_REVIEWED: 16 OCT 2026
# ============================================================================

from core.contracts import ProvisioningState, RunState, StepKind
from core.errors import (
    ClusterPlaneError,
    StepError,
    StepTimeoutError,
    NotFoundError,
    LeaseConflictError,
    VersionConflictError,
    ConfigurationError,
)
from core.models import (
    ClusterDocument,
    ClusterProperties,
    Lease,
    DiagnosticsSnapshot,
    InstallationRecord,
)

__all__ = [
    # Enums
    "ProvisioningState",
    "RunState",
    "StepKind",
    # Errors
    "ClusterPlaneError",
    "StepError",
    "StepTimeoutError",
    "NotFoundError",
    "LeaseConflictError",
    "VersionConflictError",
    "ConfigurationError",
    # Models
    "ClusterDocument",
    "ClusterProperties",
    "Lease",
    "DiagnosticsSnapshot",
    "InstallationRecord",
]
