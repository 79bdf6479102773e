# ============================================================================
# CLAUDE CONTEXT - BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Define provisioning/run enums and base data contracts
# LAST_REVIEWED: 16 OCT 2026
# EXPORTS: ProvisioningState, StepKind, RunState, ClusterData
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Base contracts for the cluster control plane.

These define the minimal identity fields that cross boundaries:
- SQL (PostgreSQL document table)
- Wire (document JSON exchanged with the front door)
- Python (worker loop and step runner)
"""

from enum import Enum

from pydantic import BaseModel, Field


# ============================================================================
# STATUS ENUMS
# ============================================================================

class ProvisioningState(str, Enum):
    """
    Cluster document lifecycle phase.

    State transitions:
        CREATING -> SUCCEEDED
                 -> FAILED
        UPDATING -> SUCCEEDED
                 -> FAILED
        DELETING -> (document removed)
                 -> FAILED

    The front door moves terminal documents back into UPDATING or
    DELETING when the user asks for another operation.
    """
    CREATING = "Creating"
    UPDATING = "Updating"
    DELETING = "Deleting"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no pipeline to run)."""
        return self in (ProvisioningState.SUCCEEDED, ProvisioningState.FAILED)

    @classmethod
    def active_states(cls) -> tuple:
        """States a worker may claim."""
        return (cls.CREATING, cls.UPDATING, cls.DELETING)


class StepKind(str, Enum):
    """Shape of a pipeline step."""
    ACTION = "Action"          # Single attempt
    CONDITION = "Condition"    # Poll a predicate until true or deadline


class RunState(str, Enum):
    """
    State of one step runner invocation.

    State transitions:
        PENDING -> RUNNING -> SUCCEEDED
                           -> FAILED
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.FAILED)


# ============================================================================
# BASE DATA CONTRACTS
# ============================================================================

class ClusterData(BaseModel):
    """
    Essential cluster identity - the minimum fields that define a document.
    """
    id: str = Field(..., max_length=512, description="Resource ID, original case")
    key: str = Field(default="", max_length=512, description="Lower-cased resource ID")

    model_config = {"frozen": False}
