# ============================================================================
# CLAUDE CONTEXT - DIAGNOSTICS & INSTALLATION MODELS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core model - Failure diagnostics and run timing
# PURPOSE: Best-effort cluster health bundle; successful run duration
# LAST_REVIEWED: 16 OCT 2026
# EXPORTS: DiagnosticsSnapshot, InstallationRecord, PROBE_ORDER
# DEPENDENCIES: pydantic
# ============================================================================
"""
Diagnostics and installation records.

Neither model is persisted. A DiagnosticsSnapshot is gathered only when a
pipeline fails; an InstallationRecord only exists to produce the install
time metric when a pipeline succeeds.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field


# Fixed probe order - diagnostics are always logged in this order
PROBE_ORDER = (
    "cluster_version",
    "nodes",
    "cluster_operators",
    "ingress_controllers",
)


class DiagnosticsSnapshot(BaseModel):
    """
    Best-effort bundle of target cluster health signals.

    Each field is fetched independently; None means the probe failed or
    the resource was absent. One missing field never invalidates another.
    """

    cluster_version: Optional[Dict[str, Any]] = None
    nodes: Optional[List[Dict[str, Any]]] = None
    cluster_operators: Optional[List[Dict[str, Any]]] = None
    ingress_controllers: Optional[List[Dict[str, Any]]] = None

    # Probe name -> error message, for probes that failed
    errors: Dict[str, str] = Field(default_factory=dict)

    def get(self, probe: str) -> Any:
        """Data for one probe by name."""
        return getattr(self, probe)

    @property
    def is_empty(self) -> bool:
        """True if no probe produced data."""
        return all(self.get(probe) is None for probe in PROBE_ORDER)


class InstallationRecord(BaseModel):
    """Wall-clock timing of one successful pipeline run."""

    started_at: datetime
    finished_at: datetime
    elapsed: float = Field(
        ge=0,
        description="Elapsed seconds measured on a monotonic clock"
    )

    @computed_field
    @property
    def elapsed_seconds(self) -> int:
        """Whole elapsed seconds (the metric value)."""
        return int(self.elapsed)


__all__ = ["DiagnosticsSnapshot", "InstallationRecord", "PROBE_ORDER"]
