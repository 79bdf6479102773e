# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Tests - Fixtures shared across the suite
# PURPOSE: Fake cluster client, controllable clock, in-memory store
# CREATED: 16 OCT 2026
# ============================================================================
"""
Shared fixtures.

Nothing here talks to a database or a real cluster: the store is the
in-memory backend and the cluster client is a scripted fake.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from core.contracts import ProvisioningState
from core.models import ClusterDocument
from core.observability import MetricsCollector
from infrastructure.kubernetes import ClusterClient, ResourceNotFoundError
from repositories.memory_repo import InMemoryClusterRepository
from worker.contracts import WorkerConfig


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FakeClusterClient(ClusterClient):
    """
    Scripted ClusterClient.

    Each probe returns the configured value, or raises it if it is an
    exception. Calls are recorded by name.
    """

    def __init__(
        self,
        cluster_version: Any = None,
        nodes: Any = None,
        cluster_operators: Any = None,
        ingress_controllers: Any = None,
    ):
        self.responses: Dict[str, Any] = {
            "cluster_version": cluster_version,
            "nodes": nodes if nodes is not None else [],
            "cluster_operators": cluster_operators if cluster_operators is not None else [],
            "ingress_controllers": ingress_controllers if ingress_controllers is not None else [],
        }
        self.calls: List[str] = []
        self.closed = 0

    def _respond(self, name: str) -> Any:
        self.calls.append(name)
        value = self.responses[name]
        if isinstance(value, BaseException):
            raise value
        return value

    async def get_cluster_version(self):
        return self._respond("cluster_version")

    async def list_nodes(self):
        return self._respond("nodes")

    async def list_cluster_operators(self):
        return self._respond("cluster_operators")

    async def list_ingress_controllers(self):
        return self._respond("ingress_controllers")

    def close(self):
        self.closed += 1


def unreachable_cluster() -> FakeClusterClient:
    """Client whose every probe fails."""
    return FakeClusterClient(
        cluster_version=ResourceNotFoundError("clusterversions.config.openshift.io", "version"),
        nodes=ConnectionError("connection refused"),
        cluster_operators=ConnectionError("connection refused"),
        ingress_controllers=ConnectionError("connection refused"),
    )


def available_version() -> Dict[str, Any]:
    return {
        "metadata": {"name": "version"},
        "status": {"conditions": [{"type": "Available", "status": "True"}]},
    }


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryClusterRepository(lease_ttl_seconds=60, write_retry_attempts=3, clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def make_document():
    """Factory for cluster documents."""
    def _make(
        name: str = "c1",
        state: ProvisioningState = ProvisioningState.CREATING,
        **kwargs,
    ) -> ClusterDocument:
        return ClusterDocument(
            id=f"/subscriptions/0000/resourceGroups/RG/providers/Example.Clusters/clusters/{name}",
            provisioning_state=state,
            **kwargs,
        )
    return _make


@pytest.fixture
def worker_config():
    return WorkerConfig(
        worker_id="worker-test",
        build_stamp="abc1234",
        poll_interval=0.01,
        lease_ttl=60,
        lease_renew_interval=20,
        max_dequeues=3,
        write_retry_attempts=3,
        retry_backoff=30,
        condition_poll_interval=0.01,
        condition_timeout=1,
    )
