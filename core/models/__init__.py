# ============================================================================
# CLAUDE CONTEXT - MODELS MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 16 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the cluster control plane.
"""

from core.models.lease import Lease
from core.models.cluster_document import ClusterDocument, ClusterProperties, utcnow
from core.models.diagnostics import DiagnosticsSnapshot, InstallationRecord, PROBE_ORDER

__all__ = [
    # Document
    "ClusterDocument",
    "ClusterProperties",
    "utcnow",
    # Lease
    "Lease",
    # Diagnostics
    "DiagnosticsSnapshot",
    "InstallationRecord",
    "PROBE_ORDER",
]
