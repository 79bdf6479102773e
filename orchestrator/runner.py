# ============================================================================
# STEP RUNNER
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Pipeline execution engine
# PURPOSE: Run an ordered pipeline against one cluster
# CREATED: 16 OCT 2026
# ============================================================================
"""
Step Runner

Executes a pipeline strictly in order:

    for each step:
        log INFO  "running step [<name>]"
        run it
        on error:
            log ERROR "step [<name>] encountered error: <cause>"
            collect diagnostics (best effort)
            re-raise the original exception unchanged
    on success:
        emit backend.cluster.installtime = whole elapsed seconds

Fail-fast: no step after a failed one runs. No rollback, no retry; the
caller decides what a failure means for the document.

Run state machine:
    PENDING -> RUNNING -> SUCCEEDED
                       -> FAILED

A runner is single-use; build a new one per run.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Sequence, Union

from core.contracts import RunState
from core.errors import StepTimeoutError
from core.logging import log_context
from core.models import InstallationRecord, utcnow
from core.observability import MetricsEmitter, TOPIC_INSTALL_TIME
from orchestrator.diagnostics import DiagnosticsCollector
from orchestrator.steps import Step, StepContext, call_step_body

logger = logging.getLogger(__name__)

DEFAULT_CONDITION_POLL_INTERVAL = 10.0
DEFAULT_CONDITION_TIMEOUT = 30 * 60.0


def describe_error(error: BaseException) -> str:
    """Error text for logs; falls back to the type for message-less errors."""
    return str(error) or type(error).__name__


class StepRunner:
    """
    Runs one pipeline.

    Args:
        log: Logger (or adapter) receiving step and diagnostics lines
        diagnostics: Collector to invoke on failure (None = skip)
        emitter: Metrics sink for the install time (None = skip)
        metric_dimensions: Dimensions attached to the install time metric
        condition_poll_interval: Default poll interval for condition steps
        condition_timeout: Default deadline for condition steps
    """

    def __init__(
        self,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        diagnostics: Optional[DiagnosticsCollector] = None,
        emitter: Optional[MetricsEmitter] = None,
        metric_dimensions: Optional[Dict[str, str]] = None,
        condition_poll_interval: float = DEFAULT_CONDITION_POLL_INTERVAL,
        condition_timeout: float = DEFAULT_CONDITION_TIMEOUT,
    ):
        self.log = log or logger
        self.diagnostics = diagnostics
        self.emitter = emitter
        self.metric_dimensions = dict(metric_dimensions or {})
        self.condition_poll_interval = condition_poll_interval
        self.condition_timeout = condition_timeout

        self.state = RunState.PENDING
        self.failed_step: Optional[str] = None
        self.installation: Optional[InstallationRecord] = None

    async def run(self, steps: Sequence[Step], ctx: Optional[StepContext] = None) -> None:
        """
        Run all steps in order.

        Args:
            steps: Pipeline to run
            ctx: Context handed to every step body

        Raises:
            Whatever the failing step raised, unchanged
        """
        if self.state != RunState.PENDING:
            raise RuntimeError(f"StepRunner already used (state={self.state.value})")

        ctx = ctx if ctx is not None else StepContext(log=self.log)
        self.state = RunState.RUNNING
        started_at = utcnow()
        start = time.monotonic()

        for step in steps:
            with log_context(step=step.name):
                self.log.info(f"running step [{step.name}]")
                try:
                    await self._run_step(step, ctx)
                except (Exception, asyncio.CancelledError) as e:
                    self.state = RunState.FAILED
                    self.failed_step = step.name
                    self.log.error(f"step [{step.name}] encountered error: {describe_error(e)}")
                    await self._collect_diagnostics()
                    raise

        self.installation = InstallationRecord(
            started_at=started_at,
            finished_at=utcnow(),
            elapsed=time.monotonic() - start,
        )
        self.state = RunState.SUCCEEDED

        if self.emitter is not None:
            self.emitter.emit_gauge(
                TOPIC_INSTALL_TIME,
                self.installation.elapsed_seconds,
                self.metric_dimensions,
            )

    # =========================================================================
    # STEP EXECUTION
    # =========================================================================

    async def _run_step(self, step: Step, ctx: StepContext) -> None:
        if step.is_condition:
            await self._wait_for_condition(step, ctx)
        else:
            await call_step_body(step.body, ctx)

    async def _wait_for_condition(self, step: Step, ctx: StepContext) -> None:
        poll_interval = step.poll_interval or self.condition_poll_interval
        timeout = step.timeout or self.condition_timeout

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        async def poll() -> None:
            while not await call_step_body(step.body, ctx):
                await asyncio.sleep(poll_interval)

        # The deadline also bounds a predicate call that never returns
        try:
            await asyncio.wait_for(poll(), timeout)
        except asyncio.TimeoutError:
            if loop.time() < deadline:
                raise
            raise StepTimeoutError(step.name, timeout) from None

    async def _collect_diagnostics(self) -> None:
        if self.diagnostics is None:
            return
        try:
            await asyncio.shield(self.diagnostics.collect())
        except asyncio.CancelledError:
            self.log.warning("diagnostics interrupted by cancellation")


__all__ = [
    "StepRunner",
    "describe_error",
    "DEFAULT_CONDITION_POLL_INTERVAL",
    "DEFAULT_CONDITION_TIMEOUT",
]
