# ============================================================================
# CLAUDE CONTEXT - CLUSTER DOCUMENT MODEL
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core model - Cluster document (work item + state record)
# PURPOSE: One managed cluster, its lifecycle phase and its lease
# LAST_REVIEWED: 16 OCT 2026
# EXPORTS: ClusterDocument, ClusterProperties
# DEPENDENCIES: pydantic
# ============================================================================
"""
Cluster Document Model

The cluster document is both the work queue entry and the state record.
The front door writes it in Creating (or flips it to Updating/Deleting);
a worker that holds the lease drives it to Succeeded or Failed.

Every write presents the concurrency token the writer last read. A stale
token is rejected by the store (see repositories.cluster_repo).
"""

from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from core.contracts import ClusterData, ProvisioningState
from core.models.lease import Lease


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ClusterProperties(BaseModel):
    """
    Domain payload of a cluster document.

    The control plane treats spec and status as opaque; only the pieces
    the backend reads itself have dedicated fields.
    """

    cluster_version: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Requested cluster version"
    )
    admin_kubeconfig: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Admin kubeconfig (parsed) used for diagnostics and in-cluster steps"
    )
    spec: Dict[str, Any] = Field(
        default_factory=dict,
        description="Cluster spec as accepted by the front door"
    )
    status: Dict[str, Any] = Field(
        default_factory=dict,
        description="Cluster status written by pipeline steps"
    )

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class ClusterDocument(ClusterData):
    """
    A cluster document.

    Maps to: clusterplane.cluster_documents table

    Lifecycle:
        1. Created by the front door with provisioning_state=CREATING
        2. Claimed by a worker via dequeue (lease_owner/lease_expiry set)
        3. Pipeline for the current state runs under the lease
        4. Final state written (SUCCEEDED / FAILED) or document deleted
        5. Lease released
    """

    # =========================================================================
    # SQL DDL METADATA
    # =========================================================================
    __sql_table__: ClassVar[str] = "cluster_documents"
    __sql_schema__: ClassVar[str] = "clusterplane"
    __sql_primary_key__: ClassVar[List[str]] = ["key"]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_cluster_documents_state", ["provisioning_state"]),
        ("idx_cluster_documents_lease", ["lease_expiry"]),
        ("idx_cluster_documents_retry", ["retry_after"]),
    ]

    # Optimistic concurrency
    concurrency_token: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Opaque etag - replaced on every successful write"
    )

    # Lifecycle
    provisioning_state: ProvisioningState = Field(default=ProvisioningState.CREATING)
    failed_provisioning_state: Optional[ProvisioningState] = Field(
        default=None,
        description="State whose pipeline failed (set with FAILED)"
    )
    last_error: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Error that failed the last pipeline run"
    )
    provisioned_by: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Build stamp of the backend that last provisioned this cluster"
    )

    # Lease
    lease_owner: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Worker identity holding the lease"
    )
    lease_expiry: Optional[datetime] = Field(
        default=None,
        description="When the lease stops being valid"
    )
    dequeues: int = Field(
        default=0,
        ge=0,
        description="Claims since the last terminal state"
    )
    retry_after: Optional[datetime] = Field(
        default=None,
        description="Not eligible for dequeue before this time"
    )

    # Payload
    properties: ClusterProperties = Field(default_factory=ClusterProperties)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "id": "/subscriptions/0000/resourceGroups/rg/providers/Example.Clusters/clusters/c1",
                    "key": "/subscriptions/0000/resourcegroups/rg/providers/example.clusters/clusters/c1",
                    "concurrencyToken": "5f0c6d7e9a1b4c2d8e3f4a5b6c7d8e9f",
                    "provisioningState": "Creating",
                    "provisionedBy": "abc1234",
                    "leaseOwner": "worker-a1b2c3d4",
                    "leaseExpiry": "2026-10-16T12:01:00Z",
                }
            ]
        },
    }

    @model_validator(mode="after")
    def _normalize_key(self) -> "ClusterDocument":
        """Key is always the lower-cased resource ID."""
        self.key = (self.key or self.id).lower()
        return self

    @staticmethod
    def normalize_key(key: str) -> str:
        """Normalise a caller-supplied key for lookups."""
        return key.lower()

    # =========================================================================
    # STATE HELPERS
    # =========================================================================

    @property
    def is_terminal(self) -> bool:
        """Check if the document is in a terminal state."""
        return self.provisioning_state.is_terminal()

    @property
    def lease(self) -> Optional[Lease]:
        """The current lease, if one has been recorded."""
        if self.lease_owner is None or self.lease_expiry is None:
            return None
        return Lease(owner=self.lease_owner, expiry=self.lease_expiry)

    def lease_expired(self, now: Optional[datetime] = None) -> bool:
        """True if there is no lease or the recorded lease has expired."""
        lease = self.lease
        return lease is None or lease.is_expired(now)

    def is_leased(self, now: Optional[datetime] = None) -> bool:
        """True if a live (unexpired) lease exists."""
        return not self.lease_expired(now)

    def is_held_by(self, owner: str, now: Optional[datetime] = None) -> bool:
        """True if `owner` holds a live lease on this document."""
        return self.lease_owner == owner and self.is_leased(now)

    def is_eligible(self, now: Optional[datetime] = None) -> bool:
        """
        Check if a worker may claim this document.

        Eligible when the state is non-terminal, no live lease exists
        (a stale lease_owner is ignored once expired) and the retry
        eligibility time has arrived.
        """
        now = now or utcnow()
        if self.is_terminal:
            return False
        if self.is_leased(now):
            return False
        if self.retry_after is not None and self.retry_after > now:
            return False
        return True

    def set_lease(self, owner: str, ttl_seconds: float, now: Optional[datetime] = None) -> None:
        """Record a fresh lease for `owner`."""
        now = now or utcnow()
        self.lease_owner = owner
        self.lease_expiry = now + timedelta(seconds=ttl_seconds)

    def clear_lease(self) -> None:
        """Remove the lease fields."""
        self.lease_owner = None
        self.lease_expiry = None

    def to_wire(self) -> Dict[str, Any]:
        """Serialise to the persisted/exchanged document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ClusterDocument":
        """Parse a document from its wire shape."""
        return cls.model_validate(data)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["ClusterDocument", "ClusterProperties", "utcnow"]
