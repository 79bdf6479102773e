# ============================================================================
# KUBERNETES CLUSTER CLIENT
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Infrastructure - Read access to the target cluster
# PURPOSE: Fetch cluster version, nodes, operators and ingress controllers
# CREATED: 16 OCT 2026
# ============================================================================
"""
Kubernetes Cluster Client

Read-only access to the customer cluster, used by the diagnostics
collector when a pipeline fails. Resources are returned as plain dicts in
their API (camelCase) shape so they can be logged as JSON as-is.

The kubernetes client is synchronous; every call is moved off the event
loop with asyncio.to_thread.

Usage:
    from infrastructure.kubernetes import KubernetesClusterClient

    client = KubernetesClusterClient.from_kubeconfig(doc.properties.admin_kubeconfig)
    version = await client.get_cluster_version()
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException

from core.errors import ClusterPlaneError

logger = logging.getLogger(__name__)


# ============================================================================
# RESOURCE COORDINATES
# ============================================================================

CONFIG_GROUP = "config.openshift.io"
OPERATOR_GROUP = "operator.openshift.io"
CLUSTER_VERSION_NAME = "version"
INGRESS_OPERATOR_NAMESPACE = "openshift-ingress-operator"


class ResourceNotFoundError(ClusterPlaneError):
    """A named resource does not exist on the cluster."""

    def __init__(self, resource: str, name: str):
        self.resource = resource
        self.name = name
        super().__init__(f'{resource} "{name}" not found')


class ClusterUnreachableError(ClusterPlaneError):
    """The target cluster cannot be contacted."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"cluster unreachable: {reason}")


# ============================================================================
# CLIENT INTERFACE
# ============================================================================

class ClusterClient(ABC):
    """Read operations the control plane needs against a target cluster."""

    @abstractmethod
    async def get_cluster_version(self) -> Optional[Dict[str, Any]]:
        """The singleton ClusterVersion resource."""

    @abstractmethod
    async def list_nodes(self) -> List[Dict[str, Any]]:
        """All nodes."""

    @abstractmethod
    async def list_cluster_operators(self) -> List[Dict[str, Any]]:
        """All ClusterOperators."""

    @abstractmethod
    async def list_ingress_controllers(self) -> List[Dict[str, Any]]:
        """IngressControllers in the ingress operator namespace."""

    def close(self) -> None:
        """Release connections held by the client."""


class UnreachableClusterClient(ClusterClient):
    """
    Stand-in for a cluster the control plane has no credentials for.

    Every read fails with ClusterUnreachableError, so diagnostics still
    log one entry per probe.
    """

    def __init__(self, reason: str = "no admin kubeconfig"):
        self.reason = reason

    def _fail(self):
        raise ClusterUnreachableError(self.reason)

    async def get_cluster_version(self) -> Optional[Dict[str, Any]]:
        self._fail()

    async def list_nodes(self) -> List[Dict[str, Any]]:
        self._fail()

    async def list_cluster_operators(self) -> List[Dict[str, Any]]:
        self._fail()

    async def list_ingress_controllers(self) -> List[Dict[str, Any]]:
        self._fail()


# ============================================================================
# KUBERNETES IMPLEMENTATION
# ============================================================================

class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the official kubernetes Python client."""

    def __init__(self, api_client: ApiClient):
        self._api_client = api_client
        self._core_v1 = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)

    @classmethod
    def from_kubeconfig(cls, kubeconfig: Dict[str, Any]) -> "KubernetesClusterClient":
        """
        Build a client from a parsed kubeconfig.

        Args:
            kubeconfig: Kubeconfig document (as loaded from YAML/JSON)
        """
        return cls(config.new_client_from_config_dict(kubeconfig))

    async def get_cluster_version(self) -> Optional[Dict[str, Any]]:
        def _get() -> Dict[str, Any]:
            try:
                return self._custom.get_cluster_custom_object(
                    CONFIG_GROUP, "v1", "clusterversions", CLUSTER_VERSION_NAME
                )
            except ApiException as e:
                if e.status == 404:
                    raise ResourceNotFoundError(
                        f"clusterversions.{CONFIG_GROUP}", CLUSTER_VERSION_NAME
                    ) from e
                raise

        return await asyncio.to_thread(_get)

    async def list_nodes(self) -> List[Dict[str, Any]]:
        def _list() -> List[Dict[str, Any]]:
            nodes = self._core_v1.list_node().items
            return [self._api_client.sanitize_for_serialization(node) for node in nodes]

        return await asyncio.to_thread(_list)

    async def list_cluster_operators(self) -> List[Dict[str, Any]]:
        def _list() -> List[Dict[str, Any]]:
            result = self._custom.list_cluster_custom_object(
                CONFIG_GROUP, "v1", "clusteroperators"
            )
            return result.get("items", [])

        return await asyncio.to_thread(_list)

    async def list_ingress_controllers(self) -> List[Dict[str, Any]]:
        def _list() -> List[Dict[str, Any]]:
            result = self._custom.list_namespaced_custom_object(
                OPERATOR_GROUP, "v1", INGRESS_OPERATOR_NAMESPACE, "ingresscontrollers"
            )
            return result.get("items", [])

        return await asyncio.to_thread(_list)

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._api_client.close()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CONFIG_GROUP",
    "OPERATOR_GROUP",
    "INGRESS_OPERATOR_NAMESPACE",
    "ResourceNotFoundError",
    "ClusterUnreachableError",
    "ClusterClient",
    "UnreachableClusterClient",
    "KubernetesClusterClient",
]
