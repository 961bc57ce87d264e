"""Concurrent connectivity checks across all registered contexts."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable

import structlog

from kubepulse.classify import classify
from kubepulse.connectivity.probe import probe
from kubepulse.models.connectivity import (
    ClusterContext,
    ConnectivityResult,
    ConnectivityStatus,
    require_context_name,
)
from kubepulse.observability.metrics import failures_total
from kubepulse.sources.registry import ContextRegistry

_log = structlog.get_logger(component="connectivity.monitor")


class ConnectivityMonitor:
    """Probes contexts and keeps the latest result per context.

    Each context's probe is independent: a hung or failing cluster only ever
    affects its own result.  There are no retries; the next check is a fresh
    probe.  A context whose handle failed to build with a retryable error is
    reopened in the background so a later check can reach it.

    When checks of one context overlap, the stored result is the one from the
    most recently started probe.

    Args:
        registry: Source of per-context handles.
        timeout:  Per-probe deadline in seconds.
    """

    def __init__(self, registry: ContextRegistry, timeout: float = 5.0) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self._registry = registry
        self._timeout = timeout
        self._latest: dict[str, ConnectivityResult] = {}
        self._started: dict[str, float] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    async def check_all(self, contexts: Iterable[str | ClusterContext] | None = None) -> list[ConnectivityResult]:
        """Probe *contexts* (default: every registered one) concurrently.

        Returns one result per input, in input order.
        """
        if contexts is None:
            contexts = self._registry.names()
        names = [c.name if isinstance(c, ClusterContext) else c for c in contexts]
        for name in names:
            require_context_name(name)
        results = await asyncio.gather(*(self._probe_one(name) for name in names))
        connected = sum(1 for r in results if r.connected)
        _log.info("connectivity_checked", contexts=len(results), connected=connected)
        return list(results)

    async def check(self, context_name: str) -> ConnectivityResult:
        """Probe a single context."""
        require_context_name(context_name)
        return await self._probe_one(context_name)

    def status(self, context_name: str) -> ConnectivityResult | None:
        """Latest known result, or None if the context was never probed."""
        return self._latest.get(context_name)

    def snapshot(self) -> dict[str, ConnectivityResult]:
        return dict(self._latest)

    def forget(self, context_name: str) -> None:
        self._latest.pop(context_name, None)
        self._started.pop(context_name, None)

    async def _probe_one(self, name: str) -> ConnectivityResult:
        started = time.monotonic()
        handle = self._registry.get(name)
        if handle is None:
            if self._registry.retry_setup(name):
                _log.debug("connection_setup_retry_scheduled", context=name)
            error = self._registry.setup_error(name) or classify(
                LookupError(f"context '{name}' has no connection handle"),
                name,
            )
            failures_total.labels(kind=str(error.kind), operation="probe").inc()
            result = ConnectivityResult(context_name=name, status=ConnectivityStatus.DISCONNECTED, error=error)
        else:
            result = await probe(handle.source, name, self._timeout)
        if started < self._started.get(name, started):
            _log.debug("stale_probe_result_dropped", context=name)
            return result
        self._started[name] = started
        self._latest[name] = result
        return result
