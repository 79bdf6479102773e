# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Worker loop components
# PURPOSE: Claim cluster documents and drive them through their pipelines
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Module

Components:
- contracts: Worker configuration
- loop: WorkerLoop (dequeue, run pipeline under lease, write, release)
"""

from worker.contracts import WorkerConfig
from worker.loop import (
    WorkerLoop,
    ManagerFactory,
    kubernetes_client_for,
    manager_factory_for,
)

__all__ = [
    "WorkerConfig",
    "WorkerLoop",
    "ManagerFactory",
    "kubernetes_client_for",
    "manager_factory_for",
]
