"""Single-cluster reachability probe."""

from __future__ import annotations

import asyncio

import structlog

from kubepulse.classify import classify
from kubepulse.models.connectivity import ConnectivityResult, ConnectivityStatus
from kubepulse.models.errors import ClassifiedError
from kubepulse.observability.metrics import failures_total, probe_duration_seconds, probe_total
from kubepulse.sources.base import ClusterSource

_log = structlog.get_logger(component="connectivity.probe")


async def probe(source: ClusterSource, context_name: str, timeout: float) -> ConnectivityResult:
    """Issue one ``ping`` against *source* and wait at most *timeout* seconds.

    On deadline the ping is cancelled but not awaited, so a hung connection
    can never hold up the caller.  Never raises for cluster-side failures.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    task = asyncio.ensure_future(source.ping())
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise
    elapsed = loop.time() - started

    error: ClassifiedError | None = None
    if task not in done:
        task.cancel()
        task.add_done_callback(_consume)
        error = classify(
            TimeoutError(f"no response within {timeout:g}s"),
            context_name,
            elapsed=elapsed,
            timeout=timeout,
        )
    elif task.cancelled():
        error = classify(asyncio.CancelledError("probe cancelled"), context_name)
    elif task.exception() is not None:
        error = classify(task.exception(), context_name, elapsed=elapsed, timeout=timeout)

    status = ConnectivityStatus.CONNECTED if error is None else ConnectivityStatus.DISCONNECTED
    duration_ms = round(elapsed * 1000, 1)
    probe_total.labels(status=str(status)).inc()
    probe_duration_seconds.observe(elapsed)
    if error is not None:
        failures_total.labels(kind=str(error.kind), operation="probe").inc()

    _log.debug(
        "probe_completed",
        context=context_name,
        status=str(status),
        kind=str(error.kind) if error else None,
        duration_ms=duration_ms,
    )
    return ConnectivityResult(context_name=context_name, status=status, error=error, duration_ms=duration_ms)


def _consume(task: asyncio.Future[object]) -> None:
    # Retrieve the outcome of an abandoned ping so asyncio does not log it.
    if not task.cancelled():
        task.exception()
