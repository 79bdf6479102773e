# ============================================================================
# WORKER LOOP
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Claim and drive cluster documents
# PURPOSE: Continuously dequeue documents and run their pipelines under lease
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Loop - Competing Consumers on the Document Store

Many WorkerLoops (across processes, or several per process) share one
backlog. They never talk to each other; the store's conditional write is
the only coordination.

Each cycle:
1. dequeue() a document (claims its lease)
2. Build a ClusterManager and the pipeline for the document's state
3. Run the pipeline while a heartbeat renews the lease
4. Write the final state under the lease (or delete on a finished Deleting)
5. release() the lease

Failure handling:
- Empty queue        -> wait poll_interval (stop() cuts the wait short)
- Lost dequeue race  -> retry immediately
- Lease lost mid-run -> cancel the run, write nothing
- Setup fails        -> Failed with the setup error (no wait for lease expiry)
- Final write fails  -> release with retry_after so the pipeline re-runs later

Shutdown: stop() prevents the next dequeue; an in-flight pipeline is
allowed to finish before run() returns.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

from core.contracts import ProvisioningState
from core.errors import (
    LeaseConflictError,
    NotFoundError,
    PipelineNotFoundError,
    StepError,
)
from core.logging import log_context
from core.models import ClusterDocument
from core.observability import MetricsEmitter
from infrastructure.kubernetes import ClusterClient, KubernetesClusterClient
from orchestrator.manager import ClusterManager
from orchestrator.pipelines import PipelineBuilder, PipelineRegistry
from orchestrator.runner import describe_error
from repositories.cluster_repo import ClusterDocumentStore
from worker.contracts import WorkerConfig

logger = logging.getLogger(__name__)

ManagerFactory = Callable[[ClusterDocument, str], ClusterManager]
ClientFactory = Callable[[ClusterDocument], Optional[ClusterClient]]


def kubernetes_client_for(doc: ClusterDocument) -> Optional[ClusterClient]:
    """Cluster client from the document's admin kubeconfig, if it has one."""
    kubeconfig = doc.properties.admin_kubeconfig
    if not kubeconfig:
        return None
    return KubernetesClusterClient.from_kubeconfig(kubeconfig)


def manager_factory_for(
    store: ClusterDocumentStore,
    config: WorkerConfig,
    emitter: Optional[MetricsEmitter] = None,
    client_factory: ClientFactory = kubernetes_client_for,
) -> ManagerFactory:
    """
    Standard ClusterManager factory.

    Args:
        store: Store the managers write through
        config: Supplies the build stamp and condition defaults
        emitter: Metrics sink for install time
        client_factory: Builds the target cluster client per document
    """
    def build(doc: ClusterDocument, owner_id: str) -> ClusterManager:
        return ClusterManager(
            document=doc,
            store=store,
            owner_id=owner_id,
            build_stamp=config.build_stamp,
            cluster_client=client_factory(doc),
            emitter=emitter,
            condition_poll_interval=config.condition_poll_interval,
            condition_timeout=config.condition_timeout,
        )

    return build


class WorkerLoop:
    """
    One competing consumer of the cluster document backlog.

    Args:
        store: Document store adapter / lease queue
        pipelines: Provisioning state -> pipeline builder
        manager_factory: Builds a ClusterManager for (document, owner_id)
        config: Worker configuration
        owner_id: Lease owner identity (defaults to config.owner_id())
    """

    def __init__(
        self,
        store: ClusterDocumentStore,
        pipelines: PipelineRegistry,
        manager_factory: ManagerFactory,
        config: WorkerConfig,
        owner_id: Optional[str] = None,
    ):
        self.store = store
        self.pipelines = pipelines
        self.manager_factory = manager_factory
        self.config = config
        self._owner_id = owner_id or config.owner_id()

        # State
        self._running = False
        self._stop_event = asyncio.Event()
        self._current_key: Optional[str] = None

        # Metrics
        self._started_at: Optional[datetime] = None
        self._cycles = 0
        self._claimed = 0
        self._succeeded = 0
        self._failed = 0
        self._conflicts = 0
        self._leases_lost = 0
        self._write_failures = 0
        self._errors = 0

    @property
    def owner_id(self) -> str:
        """This loop's lease owner identity."""
        return self._owner_id

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def run(self) -> None:
        """Claim and process documents until stop() is called."""
        if self._running:
            logger.warning(f"Worker loop {self._owner_id} already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        logger.info(
            f"Worker loop started (owner={self._owner_id}, "
            f"poll={self.config.poll_interval}s, lease_ttl={self.config.lease_ttl}s)"
        )

        try:
            while not self._stop_event.is_set():
                await self._cycle()
        finally:
            self._running = False
            logger.info(f"Worker loop stopped (owner={self._owner_id}) stats={self.stats()}")

    def stop(self) -> None:
        """Request shutdown; the in-flight pipeline (if any) finishes first."""
        if not self._stop_event.is_set():
            logger.info(
                f"Stop requested for {self._owner_id}"
                + (f" (finishing {self._current_key})" if self._current_key else "")
            )
        self._stop_event.set()

    async def _wait(self, seconds: float) -> None:
        """Sleep that returns early when stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _cycle(self) -> None:
        self._cycles += 1

        try:
            doc = await self.store.dequeue(self._owner_id)
        except NotFoundError:
            await self._wait(self.config.poll_interval)
            return
        except LeaseConflictError:
            self._conflicts += 1
            # Retry immediately but let other tasks run
            await asyncio.sleep(0)
            return
        except Exception as e:
            self._errors += 1
            logger.exception(f"Dequeue failed: {e}")
            await self._wait(self.config.poll_interval)
            return

        self._claimed += 1
        self._current_key = doc.key
        try:
            await self.process(doc)
        except Exception as e:
            self._errors += 1
            logger.exception(f"Processing {doc.key} failed: {e}")
        finally:
            self._current_key = None

    # =========================================================================
    # DOCUMENT PROCESSING
    # =========================================================================

    async def process(self, doc: ClusterDocument) -> None:
        """Drive one claimed document to its next state."""
        state = doc.provisioning_state

        with log_context(
            cluster_key=doc.key,
            worker_id=self._owner_id,
            provisioning_state=state.value,
        ):
            if doc.dequeues > self.config.max_dequeues:
                logger.error(
                    f"Failing {doc.key}: too many dequeues "
                    f"({doc.dequeues} > {self.config.max_dequeues})"
                )
                await self._finish(doc, state, error="too many dequeues")
                return

            try:
                builder = self.pipelines.get_or_raise(state)
            except PipelineNotFoundError as e:
                logger.error(str(e))
                await self._finish(doc, state, error=str(e))
                return

            try:
                manager = self.manager_factory(doc, self._owner_id)
            except Exception as e:
                logger.exception(f"Could not prepare {doc.key} for {state.value}")
                await self._finish(doc, state, error=describe_error(e))
                return

            try:
                await self._run_pipeline(doc, state, builder, manager)
            finally:
                manager.close()

    async def _run_pipeline(
        self,
        doc: ClusterDocument,
        state: ProvisioningState,
        builder: PipelineBuilder,
        manager: ClusterManager,
    ) -> None:
        try:
            steps = builder(manager)
        except Exception as e:
            logger.exception(f"Could not build the {state.value} pipeline for {doc.key}")
            await self._finish(doc, state, error=describe_error(e))
            return

        lease_lost = asyncio.Event()
        run_task = asyncio.create_task(
            manager.run_steps(steps),
            name=f"pipeline-{self._owner_id}",
        )
        heartbeat_task = asyncio.create_task(
            self._heartbeat(doc.key, run_task, lease_lost),
            name=f"heartbeat-{self._owner_id}",
        )

        error: Optional[StepError] = None
        try:
            await run_task
        except asyncio.CancelledError:
            if not lease_lost.is_set():
                raise
        except Exception as e:
            failed_step = manager.runner.failed_step if manager.runner else None
            error = StepError(failed_step or "unknown", e)
        finally:
            heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat_task

        if lease_lost.is_set():
            self._leases_lost += 1
            logger.error(f"Lease on {doc.key} lost mid-pipeline; abandoning without write")
            return

        await self._finish(doc, state, error=error)

    async def _heartbeat(
        self,
        key: str,
        run_task: asyncio.Task,
        lease_lost: asyncio.Event,
    ) -> None:
        """Renew the lease until cancelled; cancel the run if the lease is gone."""
        while True:
            await asyncio.sleep(self.config.lease_renew_interval)
            try:
                await self.store.renew_lease(key, self._owner_id)
                logger.debug(f"Renewed lease on {key}")
            except (LeaseConflictError, NotFoundError) as e:
                logger.error(f"Lease renewal refused for {key}: {e}")
                lease_lost.set()
                run_task.cancel()
                return
            except Exception as e:
                logger.warning(f"Lease renewal for {key} failed, will retry: {e}")

    async def _finish(
        self,
        doc: ClusterDocument,
        state: ProvisioningState,
        error: Optional[Union[StepError, str]] = None,
    ) -> None:
        """Persist the outcome under the lease, then release the lease."""
        try:
            if error is None and state == ProvisioningState.DELETING:
                await self.store.delete_with_lease(doc.key, self._owner_id)
                self._succeeded += 1
                logger.info(f"Deleted {doc.key}")
                return

            def mutate(current: ClusterDocument) -> None:
                current.dequeues = 0
                if error is None:
                    current.provisioning_state = ProvisioningState.SUCCEEDED
                    current.failed_provisioning_state = None
                    current.last_error = None
                else:
                    current.provisioning_state = ProvisioningState.FAILED
                    current.failed_provisioning_state = state
                    current.last_error = str(error)[:2000]

            await self.store.patch_with_lease(doc.key, self._owner_id, mutate)

        except Exception as e:
            self._write_failures += 1
            retry_after = self.store.now() + timedelta(seconds=self.config.retry_backoff)
            logger.error(
                f"Could not persist outcome for {doc.key} ({type(e).__name__}: {e}); "
                f"retrying after {retry_after.isoformat()}"
            )
            await self._release(doc.key, retry_after=retry_after)
            return

        if error is None:
            self._succeeded += 1
            logger.info(f"{doc.key} {state.value} -> {ProvisioningState.SUCCEEDED.value}")
        else:
            self._failed += 1
            logger.info(f"{doc.key} {state.value} -> {ProvisioningState.FAILED.value}: {error}")

        await self._release(doc.key)

    async def _release(self, key: str, retry_after: Optional[datetime] = None) -> None:
        try:
            await self.store.release(key, owner=self._owner_id, retry_after=retry_after)
        except Exception as e:
            self._errors += 1
            logger.error(f"Failed to release lease on {key}: {e}")

    # =========================================================================
    # STATS
    # =========================================================================

    def stats(self) -> Dict[str, Any]:
        """Loop counters."""
        return {
            "owner_id": self._owner_id,
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "cycles": self._cycles,
            "claimed": self._claimed,
            "succeeded": self._succeeded,
            "failed": self._failed,
            "conflicts": self._conflicts,
            "leases_lost": self._leases_lost,
            "write_failures": self._write_failures,
            "errors": self._errors,
        }


__all__ = [
    "ManagerFactory",
    "ClientFactory",
    "kubernetes_client_for",
    "manager_factory_for",
    "WorkerLoop",
]
