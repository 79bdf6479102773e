# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Structured logging with cluster context
# PURPOSE: Consistent, queryable logging across worker, runner and store
# CREATED: 16 OCT 2026
# ============================================================================
"""
Structured Logging

Provides structured logging for the cluster control plane. Human-readable
lines by default, one JSON object per line when LOG_FORMAT=json.

Features:
- Component-based loggers
- Contextual fields (cluster_key, worker_id, provisioning_state, step)
- JSON output for log aggregation
- Context is carried per asyncio task, so concurrent workers in one
  process never see each other's fields

Usage:
    from core.logging import get_logger, log_context

    logger = get_logger("worker.loop")

    with log_context(cluster_key="/subscriptions/.../clusters/c1"):
        logger.info("Dequeued cluster", extra={"dequeues": 1})
"""

import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from enum import Enum


class ComponentType(str, Enum):
    """Component types for logging categorization."""
    WORKER = "worker"
    RUNNER = "runner"
    DIAGNOSTICS = "diagnostics"
    REPOSITORY = "repository"
    METRICS = "metrics"
    INFRASTRUCTURE = "infrastructure"


@dataclass(frozen=True)
class LogContext:
    """
    Context for structured logging.

    Immutable; nested log_context() blocks build a new one from the parent.
    """
    cluster_key: Optional[str] = None
    worker_id: Optional[str] = None
    provisioning_state: Optional[str] = None
    step: Optional[str] = None
    operation: Optional[str] = None
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


_current_context: contextvars.ContextVar[LogContext] = contextvars.ContextVar(
    "clusterplane_log_context", default=LogContext()
)

_CONTEXT_FIELDS = (
    "cluster_key",
    "worker_id",
    "provisioning_state",
    "step",
    "operation",
    "correlation_id",
    "component",
)


def get_current_context() -> LogContext:
    """Get current logging context."""
    return _current_context.get()


@contextmanager
def log_context(**kwargs):
    """
    Context manager for adding logging context.

    Args:
        **kwargs: Context fields to add (unknown names go into `extra`)

    Example:
        with log_context(cluster_key=key, step="updateProvisionedBy"):
            logger.info("running step")
    """
    parent = get_current_context()
    known = {k: v for k, v in kwargs.items() if k in _CONTEXT_FIELDS}
    unknown = {k: v for k, v in kwargs.items() if k not in _CONTEXT_FIELDS and k != "extra"}
    new_context = replace(
        parent,
        extra={**parent.extra, **kwargs.get("extra", {}), **unknown},
        **known,
    )

    token = _current_context.set(new_context)
    try:
        yield new_context
    finally:
        _current_context.reset(token)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON for easy parsing by log aggregators.
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_context: bool = True,
        include_source: bool = True,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_context = include_context
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {}

        if self.include_timestamp:
            log_data["timestamp"] = _utc_timestamp()

        log_data["level"] = record.levelname
        log_data["logger"] = record.name
        log_data["msg"] = record.getMessage()

        if self.include_context:
            context_dict = get_current_context().to_dict()
            if context_dict:
                log_data["context"] = context_dict

        # Extra fields passed through ContextLogger
        if getattr(record, "extra", None):
            log_data["data"] = record.extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_source:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Includes context fields inline for easy reading.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human reading."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = []
        if context.worker_id:
            context_parts.append(f"worker={context.worker_id}")
        if context.cluster_key:
            context_parts.append(f"cluster={context.cluster_key}")
        if context.step:
            context_parts.append(f"step={context.step}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        message = record.getMessage()

        extra_str = ""
        if getattr(record, "extra", None):
            extra_str = f" {record.extra}"

        result = f"{timestamp} {level} {record.name}{context_str}: {message}{extra_str}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that attaches caller-supplied fields to the record.

    The formatter reads them back from `record.extra`.
    """

    def process(self, msg, kwargs):
        """Move `extra` under a single record attribute."""
        extra = dict(kwargs.get("extra") or {})
        if self.extra and self.extra.get("component"):
            extra.setdefault("component", str(self.extra["component"].value))
        kwargs["extra"] = {"extra": extra}
        return msg, kwargs


def get_logger(
    name: str,
    component: Optional[ComponentType] = None,
) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (e.g., "worker.loop")
        component: Optional component type for categorization

    Returns:
        ContextLogger instance
    """
    base_logger = logging.getLogger(name)
    return ContextLogger(base_logger, {"component": component})


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format (LOG_FORMAT=json also enables it)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter: logging.Formatter = StructuredFormatter(include_context=True)
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # Kubernetes client logs every request at INFO
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ComponentType",
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
]
