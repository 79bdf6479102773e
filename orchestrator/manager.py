# ============================================================================
# CLUSTER MANAGER
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Per-document pipeline host
# PURPOSE: Bind one claimed document to its store, cluster client and runner
# CREATED: 16 OCT 2026
# ============================================================================
"""
Cluster Manager

A ClusterManager is built for each claimed document. It owns everything a
pipeline needs (document, store, lease owner, cluster client, build
stamp) and exposes the step bodies that pipelines are assembled from.
The manager owns its cluster client; close() releases it once the run
is over.

Usage:
    manager = ClusterManager(doc, store, owner_id="worker-1", build_stamp="abc1234")
    await manager.run_steps([action("updateProvisionedBy", manager.update_provisioned_by)])
"""

import logging
from typing import Any, Dict, Optional, Sequence, Union

from core.logging import ComponentType, get_logger
from core.models import ClusterDocument
from core.observability import MetricsEmitter
from infrastructure.kubernetes import ClusterClient, UnreachableClusterClient
from orchestrator.diagnostics import DiagnosticsCollector
from orchestrator.runner import (
    DEFAULT_CONDITION_POLL_INTERVAL,
    DEFAULT_CONDITION_TIMEOUT,
    StepRunner,
)
from orchestrator.steps import Step, StepContext
from repositories.cluster_repo import ClusterDocumentStore

logger = logging.getLogger(__name__)


class ClusterManager:
    """Runs pipelines for one claimed cluster document."""

    def __init__(
        self,
        document: ClusterDocument,
        store: ClusterDocumentStore,
        owner_id: str,
        build_stamp: str,
        cluster_client: Optional[ClusterClient] = None,
        emitter: Optional[MetricsEmitter] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        condition_poll_interval: float = DEFAULT_CONDITION_POLL_INTERVAL,
        condition_timeout: float = DEFAULT_CONDITION_TIMEOUT,
    ):
        self.document = document
        self.store = store
        self.owner_id = owner_id
        self.build_stamp = build_stamp
        self.cluster_client = cluster_client
        self.emitter = emitter
        self.log = log or get_logger("orchestrator.runner", ComponentType.RUNNER)
        self.condition_poll_interval = condition_poll_interval
        self.condition_timeout = condition_timeout

        self.runner: Optional[StepRunner] = None

    @property
    def key(self) -> str:
        return self.document.key

    def context(self) -> StepContext:
        """Fresh StepContext bound to this manager's document."""
        return StepContext(document=self.document, owner_id=self.owner_id, log=self.log)

    def _diagnostics(self) -> DiagnosticsCollector:
        client = self.cluster_client or UnreachableClusterClient("no admin kubeconfig")
        return DiagnosticsCollector(client, log=self.log)

    def close(self) -> None:
        """Release the cluster client, if this manager holds one."""
        if self.cluster_client is None:
            return
        try:
            self.cluster_client.close()
        except Exception as e:
            logger.warning(f"Closing cluster client for {self.key} failed: {e}")

    async def run_steps(self, steps: Sequence[Step]) -> None:
        """
        Run a pipeline for this document with a fresh StepRunner.

        Raises:
            The failing step's exception, unchanged
        """
        self.runner = StepRunner(
            log=self.log,
            diagnostics=self._diagnostics(),
            emitter=self.emitter,
            metric_dimensions={
                "provisioningState": self.document.provisioning_state.value,
            },
            condition_poll_interval=self.condition_poll_interval,
            condition_timeout=self.condition_timeout,
        )
        await self.runner.run(steps, self.context())

    # =========================================================================
    # STEP BODIES
    # =========================================================================

    async def update_provisioned_by(self, ctx: StepContext) -> None:
        """
        Stamp the document with this backend's build.

        Idempotent: no write happens when the stamp already matches.
        """
        build_stamp = self.build_stamp

        def mutate(doc: ClusterDocument) -> Optional[bool]:
            if doc.provisioned_by == build_stamp:
                return False
            doc.provisioned_by = build_stamp
            return True

        self.document = await self.store.patch_with_lease(self.key, self.owner_id, mutate)
        ctx.document = self.document

    async def clear_admin_kubeconfig(self, ctx: StepContext) -> None:
        """Drop stored cluster credentials before the document is removed."""

        def mutate(doc: ClusterDocument) -> Optional[bool]:
            if doc.properties.admin_kubeconfig is None:
                return False
            doc.properties.admin_kubeconfig = None
            return True

        self.document = await self.store.patch_with_lease(self.key, self.owner_id, mutate)
        ctx.document = self.document

    async def cluster_version_available(self, ctx: StepContext) -> bool:
        """Predicate: the ClusterVersion reports Available=True."""
        if self.cluster_client is None:
            return True

        version = await self.cluster_client.get_cluster_version()
        return is_condition_true(version, "Available")


def is_condition_true(resource: Optional[Dict[str, Any]], condition_type: str) -> bool:
    """Check a status condition on an API resource dict."""
    if not resource:
        return False
    for cond in resource.get("status", {}).get("conditions") or []:
        if cond.get("type") == condition_type:
            return cond.get("status") == "True"
    return False


__all__ = ["ClusterManager", "is_condition_true"]
