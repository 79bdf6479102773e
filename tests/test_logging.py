# ============================================================================
# STRUCTURED LOGGING TESTS
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Tests - Log context and formatters
# PURPOSE: Verify JSON entries carry level/msg and per-task context
# CREATED: 16 OCT 2026
# ============================================================================
"""
Structured Logging Tests

Covers:
1. StructuredFormatter emits level, msg, context
2. log_context nesting and restoration
3. Context is isolated between concurrent asyncio tasks
4. ContextLogger component tagging

Run with:
    pytest tests/test_logging.py -v
"""

import asyncio
import json
import logging

from core.logging import (
    ComponentType,
    HumanFormatter,
    StructuredFormatter,
    get_current_context,
    get_logger,
    log_context,
)


def _record(msg="running step [updateProvisionedBy]", level=logging.INFO, **attrs):
    record = logging.LogRecord("orchestrator.runner", level, __file__, 10, msg, None, None)
    for name, value in attrs.items():
        setattr(record, name, value)
    return record


class TestStructuredFormatter:

    def test_level_and_msg(self):
        entry = json.loads(StructuredFormatter().format(_record()))

        assert entry["level"] == "INFO"
        assert entry["msg"] == "running step [updateProvisionedBy]"
        assert entry["logger"] == "orchestrator.runner"
        assert "timestamp" in entry

    def test_context_included(self):
        with log_context(cluster_key="c1", worker_id="worker-a", step="allocate"):
            entry = json.loads(StructuredFormatter().format(_record()))

        assert entry["context"] == {"cluster_key": "c1", "worker_id": "worker-a", "step": "allocate"}

    def test_extra_data(self):
        entry = json.loads(StructuredFormatter().format(_record(extra={"component": "runner"})))
        assert entry["data"] == {"component": "runner"}

    def test_human_format_shows_context(self):
        with log_context(worker_id="worker-a", cluster_key="c1"):
            line = HumanFormatter().format(_record())

        assert "[worker=worker-a, cluster=c1]" in line
        assert line.endswith("running step [updateProvisionedBy]")


class TestLogContext:

    def test_nesting_and_restore(self):
        with log_context(worker_id="worker-a"):
            with log_context(cluster_key="c1", attempt=2):
                inner = get_current_context()
            outer = get_current_context()

        assert inner.worker_id == "worker-a"
        assert inner.cluster_key == "c1"
        assert inner.extra == {"attempt": 2}
        assert outer.cluster_key is None
        assert get_current_context().worker_id is None

    def test_isolated_between_tasks(self):
        seen = {}

        async def worker(name):
            with log_context(worker_id=name):
                await asyncio.sleep(0.01)
                seen[name] = get_current_context().worker_id

        async def run_test():
            await asyncio.gather(worker("worker-0"), worker("worker-1"))

        asyncio.run(run_test())

        assert seen == {"worker-0": "worker-0", "worker-1": "worker-1"}


class TestContextLogger:

    def test_component_attached(self, caplog):
        caplog.set_level(logging.INFO, logger="tests.context_logger")
        log = get_logger("tests.context_logger", ComponentType.WORKER)

        log.info("claimed")

        record = caplog.records[-1]
        assert record.getMessage() == "claimed"
        assert record.extra == {"component": "worker"}
