# ============================================================================
# PIPELINE REGISTRY
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Pipeline registration and lookup
# PURPOSE: Map each provisioning state to the pipeline that drives it
# CREATED: 16 OCT 2026
# ============================================================================
"""
Pipeline Registry

Maps a provisioning state to a pipeline builder. A builder receives the
ClusterManager for the claimed document and returns the ordered steps.

Design:
- One registry per WorkerLoop (caller-supplied, no module global)
- Fail-fast on duplicate registration
- Builders are plain callables; register with a decorator or directly

Usage:
    pipelines = PipelineRegistry()

    @pipelines.register(ProvisioningState.CREATING)
    def create(manager):
        return [action("updateProvisionedBy", manager.update_provisioned_by)]

    steps = pipelines.get_or_raise(doc.provisioning_state)(manager)
"""

import logging
from typing import Callable, Dict, List, Optional

from core.contracts import ProvisioningState
from core.errors import DuplicatePipelineError, PipelineNotFoundError
from orchestrator.manager import ClusterManager
from orchestrator.steps import Step, action, condition

logger = logging.getLogger(__name__)

PipelineBuilder = Callable[[ClusterManager], List[Step]]


class PipelineRegistry:
    """Provisioning state -> pipeline builder."""

    def __init__(self):
        self._builders: Dict[ProvisioningState, PipelineBuilder] = {}

    def register(
        self,
        state: ProvisioningState,
        builder: Optional[PipelineBuilder] = None,
    ):
        """
        Register a builder for `state`.

        Usable directly (register(state, fn)) or as a decorator
        (@register(state)).

        Raises:
            DuplicatePipelineError: A builder already exists for `state`
        """
        def decorator(func: PipelineBuilder) -> PipelineBuilder:
            if state in self._builders:
                raise DuplicatePipelineError(state.value)
            self._builders[state] = func
            logger.debug(f"Registered pipeline for {state.value}: {func.__name__}")
            return func

        if builder is not None:
            return decorator(builder)
        return decorator

    def get(self, state: ProvisioningState) -> Optional[PipelineBuilder]:
        return self._builders.get(state)

    def get_or_raise(self, state: ProvisioningState) -> PipelineBuilder:
        """
        Look up the builder for `state`.

        Raises:
            PipelineNotFoundError: Nothing is registered for `state`
        """
        builder = self._builders.get(state)
        if builder is None:
            raise PipelineNotFoundError(state.value)
        return builder

    def states(self) -> List[ProvisioningState]:
        return list(self._builders)

    def clear(self) -> None:
        """Remove all registrations (tests)."""
        self._builders.clear()

    def __contains__(self, state: ProvisioningState) -> bool:
        return state in self._builders


# ============================================================================
# DEFAULT PIPELINES
# ============================================================================

def create_pipeline(manager: ClusterManager) -> List[Step]:
    steps = [action("updateProvisionedBy", manager.update_provisioned_by)]
    if manager.cluster_client is not None:
        steps.append(condition("clusterVersionAvailable", manager.cluster_version_available))
    return steps


def update_pipeline(manager: ClusterManager) -> List[Step]:
    """Updates re-stamp the document and wait for the same readiness as creates."""
    return create_pipeline(manager)


def delete_pipeline(manager: ClusterManager) -> List[Step]:
    return [action("clearAdminKubeconfig", manager.clear_admin_kubeconfig)]


def default_pipelines() -> PipelineRegistry:
    """Registry with the built-in create/update/delete pipelines."""
    registry = PipelineRegistry()
    registry.register(ProvisioningState.CREATING, create_pipeline)
    registry.register(ProvisioningState.UPDATING, update_pipeline)
    registry.register(ProvisioningState.DELETING, delete_pipeline)
    return registry


__all__ = [
    "PipelineBuilder",
    "PipelineRegistry",
    "create_pipeline",
    "update_pipeline",
    "delete_pipeline",
    "default_pipelines",
]
