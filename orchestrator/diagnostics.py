# ============================================================================
# DIAGNOSTICS COLLECTOR
# ============================================================================
# EPOCH: 1 - CLUSTER LIFECYCLE
# STATUS: Core - Failure diagnostics
# PURPOSE: Log a best-effort snapshot of target cluster health
# CREATED: 16 OCT 2026
# ============================================================================
"""
Diagnostics Collector

Runs after a pipeline step fails. Four probes read the target cluster
concurrently; results are logged at the join point in a fixed order:

    cluster_version, nodes, cluster_operators, ingress_controllers

Per probe:
    failure          -> ERROR <cause>, then INFO "<probe>: null"
    absent / empty   -> INFO "<probe>: null"
    data             -> INFO "<probe>: <indented JSON>"

The collector never raises; nothing it does can change the outcome of the
run that triggered it.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from core.errors import DiagnosticsProbeError
from core.models import DiagnosticsSnapshot, PROBE_ORDER
from infrastructure.kubernetes import ClusterClient

logger = logging.getLogger(__name__)


class DiagnosticsCollector:
    """Collects and logs a DiagnosticsSnapshot from one cluster."""

    def __init__(
        self,
        client: ClusterClient,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ):
        self.client = client
        self.log = log or logger

    def _probes(self) -> Dict[str, Callable[[], Awaitable[Any]]]:
        return {
            "cluster_version": self.client.get_cluster_version,
            "nodes": self.client.list_nodes,
            "cluster_operators": self.client.list_cluster_operators,
            "ingress_controllers": self.client.list_ingress_controllers,
        }

    @staticmethod
    async def _run_probe(name: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await fetch()
        except Exception as e:
            raise DiagnosticsProbeError(name, e) from e

    async def collect(self) -> DiagnosticsSnapshot:
        """
        Run all probes and log their results.

        Returns:
            The snapshot (fields None where a probe failed or found nothing)
        """
        snapshot = DiagnosticsSnapshot()
        try:
            probes = self._probes()
            results = await asyncio.gather(
                *(self._run_probe(name, probes[name]) for name in PROBE_ORDER),
                return_exceptions=True,
            )

            for name, result in zip(PROBE_ORDER, results):
                if isinstance(result, BaseException):
                    self.log.error(str(result))
                    snapshot.errors[name] = str(result)
                    result = None

                if not result:
                    self.log.info(f"{name}: null")
                    continue

                setattr(snapshot, name, result)
                self.log.info(f"{name}: {json.dumps(result, indent=2, default=str)}")

        except Exception as e:
            self.log.error(f"diagnostics collection failed: {e}")

        return snapshot


__all__ = ["DiagnosticsCollector"]
