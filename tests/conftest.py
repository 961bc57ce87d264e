"""Shared fakes and factories for kubepulse tests.

``FakeSource`` stands in for a cluster: each behaviour (latency, hang,
failure) is configured per instance so tests can mix healthy and broken
contexts without touching a real API server.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from kubepulse.models.connectivity import ClusterContext, OperatorMode
from kubepulse.models.events import EventFilterState, EventRecord, EventSeverity
from kubepulse.sources.base import ClusterSource
from kubepulse.sources.registry import ClusterHandle, ContextRegistry

_NOW = datetime.now(UTC)


# ---------------------------------------------------------------------------
# Fake cluster source
# ---------------------------------------------------------------------------


class FakeSource(ClusterSource):
    """Configurable in-memory ClusterSource."""

    def __init__(
        self,
        name: str,
        *,
        ping_delay: float = 0.0,
        ping_error: BaseException | None = None,
        hang: bool = False,
        namespaces: list[str] | None = None,
        namespaces_error: BaseException | None = None,
        events: list[Mapping[str, Any]] | None = None,
        events_error: BaseException | None = None,
        events_delay: float = 0.0,
        server_side: frozenset[str] = frozenset(),
    ) -> None:
        self._name = name
        self.ping_delay = ping_delay
        self.ping_error = ping_error
        self.hang = hang
        self.namespaces = namespaces or []
        self.namespaces_error = namespaces_error
        self.events = events or []
        self.events_error = events_error
        self.events_delay = events_delay
        self.server_side_filters = server_side

        self.ping_calls = 0
        self.ping_cancelled = False
        self.query_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.last_filters: EventFilterState | None = None
        self.closed = False

    @property
    def context_name(self) -> str:
        return self._name

    async def ping(self) -> None:
        self.ping_calls += 1
        try:
            if self.hang:
                await asyncio.Event().wait()
            if self.ping_delay:
                await asyncio.sleep(self.ping_delay)
        except asyncio.CancelledError:
            self.ping_cancelled = True
            raise
        if self.ping_error is not None:
            raise self.ping_error

    async def list_namespaces(self) -> list[str]:
        if self.namespaces_error is not None:
            raise self.namespaces_error
        return list(self.namespaces)

    async def query_events(self, filters: EventFilterState) -> list[Mapping[str, Any]]:
        self.query_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.last_filters = filters
        try:
            if self.events_delay:
                await asyncio.sleep(self.events_delay)
            if self.events_error is not None:
                raise self.events_error
            return list(self.events)
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


def fake_factory(sources: dict[str, FakeSource], operated: set[str] | None = None):
    """Source factory building handles from pre-made fakes."""
    operated = operated or set()

    async def factory(context: ClusterContext) -> ClusterHandle:
        if context.name not in sources:
            raise LookupError(f"context {context.name} not found in kubeconfig")
        mode = OperatorMode.OPERATED if context.name in operated else OperatorMode.BASIC
        return ClusterHandle(context=context, source=sources[context.name], mode=mode)

    return factory


async def build_registry(sources: dict[str, FakeSource], operated: set[str] | None = None) -> ContextRegistry:
    registry = ContextRegistry(fake_factory(sources, operated))
    await registry.sync([ClusterContext(name=name) for name in sources])
    return registry


# ---------------------------------------------------------------------------
# Event factories
# ---------------------------------------------------------------------------


def make_event_dict(
    reason: str = "BackOff",
    message: str = "Back-off restarting failed container",
    kind: str = "Pod",
    name: str = "web-7b4f8c6d-x2kj",
    namespace: str = "default",
    event_type: str = "Warning",
    timestamp: datetime | None = None,
    count: int = 1,
) -> dict[str, Any]:
    """Build an event in the JSON shape the operator CLI emits."""
    ts = (timestamp or _NOW - timedelta(minutes=5)).isoformat().replace("+00:00", "Z")
    return {
        "type": event_type,
        "reason": reason,
        "message": message,
        "count": count,
        "lastTimestamp": ts,
        "firstTimestamp": ts,
        "involvedObject": {"kind": kind, "name": name, "namespace": namespace},
        "metadata": {"namespace": namespace},
    }


def make_record(
    reason: str = "BackOff",
    message: str = "Back-off restarting failed container",
    kind: str = "Pod",
    name: str = "web-7b4f8c6d-x2kj",
    namespace: str = "default",
    severity: EventSeverity = EventSeverity.WARNING,
    timestamp: datetime | None = None,
) -> EventRecord:
    """Create an EventRecord with sensible defaults for testing."""
    return EventRecord(
        timestamp=timestamp or _NOW - timedelta(minutes=5),
        severity=severity,
        reason=reason,
        involved_kind=kind,
        involved_name=name,
        message=message,
        namespace=namespace,
    )


@pytest.fixture
def now() -> datetime:
    return _NOW
