# ============================================================================
# PIPELINE STEPS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Step definitions
# PURPOSE: Named, idempotent units of a cluster pipeline
# CREATED: 16 OCT 2026
# ============================================================================
"""
Pipeline Steps

A pipeline is an ordered list of steps. Two shapes exist:

    action(name, fn)        - run fn(ctx) once; raising fails the step
    condition(name, pred)   - poll pred(ctx) until it returns True or the
                              deadline passes

Step names are explicit so logs stay stable across refactors.

Bodies may be `async def` or plain functions; plain functions run in the
default executor so they never block the event loop. Steps must be
idempotent: a pipeline is re-run from the top after a crash.

Usage:
    from orchestrator.steps import action, condition

    steps = [
        action("updateProvisionedBy", manager.update_provisioned_by),
        condition("clusterVersionAvailable", manager.cluster_version_available,
                  poll_interval=10, timeout=1800),
    ]
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from core.contracts import StepKind
from core.models import ClusterDocument

logger = logging.getLogger(__name__)


# ============================================================================
# STEP CONTEXT
# ============================================================================

@dataclass
class StepContext:
    """
    Context passed to every step body.

    `document` is the latest copy the manager holds; steps that write
    through the store replace it with the stored result.
    """
    document: Optional[ClusterDocument] = None
    owner_id: Optional[str] = None
    log: Union[logging.Logger, logging.LoggerAdapter] = logger
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def cluster_key(self) -> Optional[str]:
        return self.document.key if self.document else None


StepFunc = Callable[[StepContext], Union[None, Awaitable[None]]]
PredicateFunc = Callable[[StepContext], Union[bool, Awaitable[bool]]]


# ============================================================================
# STEP
# ============================================================================

@dataclass(frozen=True)
class Step:
    """
    One pipeline step.

    poll_interval/timeout only apply to CONDITION steps; None means the
    runner's configured default.
    """
    name: str
    kind: StepKind
    body: Callable[[StepContext], Any]
    poll_interval: Optional[float] = None
    timeout: Optional[float] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Step name must not be empty")
        if self.poll_interval is not None and self.poll_interval <= 0:
            raise ValueError(f"Step [{self.name}]: poll_interval must be positive")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Step [{self.name}]: timeout must be positive")

    @property
    def is_condition(self) -> bool:
        return self.kind == StepKind.CONDITION


def action(name: str, fn: StepFunc) -> Step:
    """Build an action step."""
    return Step(name=name, kind=StepKind.ACTION, body=fn)


def condition(
    name: str,
    predicate: PredicateFunc,
    poll_interval: Optional[float] = None,
    timeout: Optional[float] = None,
) -> Step:
    """
    Build a condition step.

    Args:
        name: Step name
        predicate: Returns True once the awaited state is reached
        poll_interval: Seconds between evaluations
        timeout: Seconds before the step fails with StepTimeoutError
    """
    return Step(
        name=name,
        kind=StepKind.CONDITION,
        body=predicate,
        poll_interval=poll_interval,
        timeout=timeout,
    )


async def call_step_body(fn: Callable[[StepContext], Any], ctx: StepContext) -> Any:
    """
    Invoke a step body, async or sync.

    Sync bodies run in the default thread pool executor.
    """
    if asyncio.iscoroutinefunction(fn):
        return await fn(ctx)

    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, fn, ctx)
    if inspect.isawaitable(result):
        result = await result
    return result


__all__ = [
    "StepContext",
    "StepFunc",
    "PredicateFunc",
    "Step",
    "action",
    "condition",
    "call_step_body",
]
