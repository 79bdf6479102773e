# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Infrastructure - External system clients
# PURPOSE: Target cluster access and Azure database authentication
# CREATED: 16 OCT 2026
# ============================================================================
"""
Infrastructure module.

Provides:
- ClusterClient / KubernetesClusterClient: read access to the target cluster
- auth: managed identity tokens for PostgreSQL

Usage:
    from infrastructure import KubernetesClusterClient

    client = KubernetesClusterClient.from_kubeconfig(kubeconfig)
    nodes = await client.list_nodes()
"""

from infrastructure.kubernetes import (
    ClusterClient,
    ClusterUnreachableError,
    KubernetesClusterClient,
    ResourceNotFoundError,
    UnreachableClusterClient,
)

__all__ = [
    'ClusterClient',
    'ClusterUnreachableError',
    'UnreachableClusterClient',
    'KubernetesClusterClient',
    'ResourceNotFoundError',
]
