# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Pipeline execution
# PURPOSE: Steps, step runner, diagnostics and per-cluster manager
# CREATED: 16 OCT 2026
# ============================================================================
"""
Orchestrator Module

Runs ordered pipelines of idempotent steps against one cluster.

Usage:
    from orchestrator import StepRunner, action

    runner = StepRunner(emitter=get_metrics())
    await runner.run([action("updateProvisionedBy", fn)], ctx)
"""

from .steps import Step, StepContext, action, condition
from .runner import StepRunner
from .diagnostics import DiagnosticsCollector
from .manager import ClusterManager
from .pipelines import PipelineRegistry, default_pipelines

__all__ = [
    "Step",
    "StepContext",
    "action",
    "condition",
    "StepRunner",
    "DiagnosticsCollector",
    "ClusterManager",
    "PipelineRegistry",
    "default_pipelines",
]
