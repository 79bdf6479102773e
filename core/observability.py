# ============================================================================
# OBSERVABILITY
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Metrics emission
# PURPOSE: Gauge/float metric sink used by the step runner
# CREATED: 16 OCT 2026
# ============================================================================
"""
Observability

Metrics are pushed to a MetricsEmitter as (topic, value, dimensions).
Two value shapes exist: integer gauges and floats. The emitter is shared
by every worker in the process, so implementations must tolerate
concurrent calls.

Usage:
    from core.observability import get_metrics

    emitter = get_metrics()
    emitter.emit_gauge("backend.cluster.installtime", 42, {"state": "Creating"})
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# METRIC TOPICS
# ============================================================================

TOPIC_INSTALL_TIME = "backend.cluster.installtime"


# ============================================================================
# EMITTER INTERFACE
# ============================================================================

class MetricsEmitter(ABC):
    """Sink for numeric metrics."""

    @abstractmethod
    def emit_gauge(
        self,
        topic: str,
        value: int,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record an integer gauge."""
        pass

    @abstractmethod
    def emit_float(
        self,
        topic: str,
        value: float,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> None:
        """Record a floating point value."""
        pass


# ============================================================================
# IN-PROCESS COLLECTOR
# ============================================================================

@dataclass
class MetricPoint:
    """A single metric data point."""
    topic: str
    value: float
    kind: str = "gauge"
    timestamp: float = field(default_factory=time.time)
    dimensions: Dict[str, str] = field(default_factory=dict)


class MetricsCollector(MetricsEmitter):
    """
    Collects metrics in memory and logs them at DEBUG.

    Keeps the latest value per topic alongside the full point history,
    which is what a scraping exporter or a test needs.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._points: List[MetricPoint] = []
        self._latest: Dict[str, float] = {}

    def _record(self, point: MetricPoint) -> None:
        with self._lock:
            self._points.append(point)
            self._latest[point.topic] = point.value
        logger.debug(
            f"Metric {point.kind}: {point.topic}={point.value} {point.dimensions}"
        )

    def emit_gauge(
        self,
        topic: str,
        value: int,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Record an integer gauge.

        Args:
            topic: Metric topic
            value: Gauge value (truncated to int)
            dimensions: Optional dimensions
        """
        self._record(MetricPoint(
            topic=topic,
            value=int(value),
            kind="gauge",
            dimensions=dict(dimensions or {}),
        ))

    def emit_float(
        self,
        topic: str,
        value: float,
        dimensions: Optional[Dict[str, str]] = None,
    ) -> None:
        self._record(MetricPoint(
            topic=topic,
            value=float(value),
            kind="float",
            dimensions=dict(dimensions or {}),
        ))

    def get(self, topic: str) -> Optional[float]:
        """Latest value recorded for a topic, or None if never emitted."""
        with self._lock:
            return self._latest.get(topic)

    def get_metrics(self, topic: Optional[str] = None) -> List[MetricPoint]:
        """All collected points, optionally filtered by topic."""
        with self._lock:
            if topic is None:
                return list(self._points)
            return [p for p in self._points if p.topic == topic]

    def clear(self) -> None:
        """Clear collected metrics."""
        with self._lock:
            self._points.clear()
            self._latest.clear()


# ============================================================================
# GLOBAL INSTANCE
# ============================================================================

_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "TOPIC_INSTALL_TIME",
    "MetricsEmitter",
    "MetricPoint",
    "MetricsCollector",
    "get_metrics",
]
