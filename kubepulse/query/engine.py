"""Resource query engine: namespaces, event working sets and filter state.

All per-context state is partitioned by context name.  Every context carries
an epoch token; a fetch captures the token when it starts and its result is
dropped if the token moved before the result could be applied.
"""

from __future__ import annotations

import itertools
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from kubepulse.classify import classify
from kubepulse.connectivity.monitor import ConnectivityMonitor
from kubepulse.models.connectivity import require_context_name
from kubepulse.models.errors import ClassifiedError, UnsupportedOperation
from kubepulse.models.events import (
    EventFilterState,
    EventQueryResult,
    EventRecord,
    EventSeverity,
    NamespaceSet,
    QueryStatus,
)
from kubepulse.observability.metrics import event_queries_total, failures_total
from kubepulse.query.filters import apply_filters, cap_most_recent
from kubepulse.sources.registry import ContextRegistry

_log = structlog.get_logger(component="query.engine")

EVENT_LIMIT = 500

_FILTER_FIELDS = frozenset({"namespace", "severities", "since", "resource_kind", "search_text"})

# Process-wide so a forgotten and re-added context never reuses an old token.
_epoch_counter = itertools.count(1)


class ResourceQueryEngine:
    """Queries cluster-scoped data and owns the per-context caches.

    Args:
        registry:         Per-context handles.
        monitor:          Connectivity gate for event queries.
        event_limit:      Working-set cap per context.
        connectivity_ttl: Seconds after which a cached connectivity result
                          is re-probed before an event query.  None keeps
                          results until the monitor is asked again.
    """

    def __init__(
        self,
        registry: ContextRegistry,
        monitor: ConnectivityMonitor,
        event_limit: int = EVENT_LIMIT,
        connectivity_ttl: float | None = None,
    ) -> None:
        if event_limit <= 0:
            raise ValueError(f"event_limit must be positive, got {event_limit}")
        self._registry = registry
        self._monitor = monitor
        self._limit = event_limit
        self._connectivity_ttl = connectivity_ttl
        self._namespaces: dict[str, NamespaceSet] = {}
        self._events: dict[str, tuple[EventRecord, ...]] = {}
        self._filters: dict[str, EventFilterState] = {}
        self._epochs: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def fetch_namespaces(self, context_name: str) -> NamespaceSet | ClassifiedError:
        """List namespaces with a single remote call.

        On failure the previously retained set is left untouched and the
        classified error is returned.
        """
        require_context_name(context_name)
        handle = self._registry.get(context_name)
        if handle is None:
            return self._missing_handle(context_name, "list_namespaces")
        try:
            raw = await handle.source.list_namespaces()
        except Exception as exc:  # noqa: BLE001
            error = classify(exc, context_name)
            failures_total.labels(kind=str(error.kind), operation="list_namespaces").inc()
            _log.warning("namespaces_failed", context=context_name, kind=str(error.kind))
            return error
        result = NamespaceSet.build(context_name, raw)
        self._namespaces[context_name] = result
        _log.debug("namespaces_fetched", context=context_name, count=len(result))
        return result

    def namespaces(self, context_name: str) -> NamespaceSet | None:
        return self._namespaces.get(context_name)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def fetch_events(self, context_name: str, filters: EventFilterState | None = None) -> EventQueryResult:
        """Query events for an operated, connected cluster.

        *filters* defaults to the context's stored filter state.  The operator
        mode is re-read first when the last reading has gone stale.  The
        returned result always carries the working set as it stands after the
        call.
        """
        require_context_name(context_name)
        epoch = self.epoch(context_name)
        filters = filters.copy() if filters is not None else self.get_filter(context_name)

        connectivity = self._monitor.status(context_name)
        if connectivity is None or self._expired(connectivity.checked_at):
            connectivity = await self._monitor.check(context_name)
        if not connectivity.connected:
            return self._finish(context_name, epoch, QueryStatus.DISCONNECTED, error=connectivity.error)

        handle = await self._registry.refresh_mode(context_name)
        if handle is None:
            error = self._missing_handle(context_name, "query_events")
            return self._finish(context_name, epoch, QueryStatus.DISCONNECTED, error=error)
        if not handle.operated:
            return self._finish(context_name, epoch, QueryStatus.UNSUPPORTED)

        try:
            raw = await handle.source.query_events(filters)
        except UnsupportedOperation:
            return self._finish(context_name, epoch, QueryStatus.UNSUPPORTED)
        except Exception as exc:  # noqa: BLE001
            error = classify(exc, context_name)
            failures_total.labels(kind=str(error.kind), operation="query_events").inc()
            return self._finish(context_name, epoch, QueryStatus.FAILED, error=error)

        records = [EventRecord.from_dict(item) for item in raw]
        matched = apply_filters(records, filters, skip=handle.source.pushed_down(filters))
        capped, truncated = cap_most_recent(matched, self._limit)
        return self._finish(context_name, epoch, QueryStatus.OK, events=tuple(capped), truncated=truncated)

    def events(self, context_name: str) -> tuple[EventRecord, ...]:
        """Current working set, oldest first."""
        return self._events.get(context_name, ())

    def _finish(
        self,
        context_name: str,
        epoch: int,
        status: QueryStatus,
        *,
        error: ClassifiedError | None = None,
        events: tuple[EventRecord, ...] | None = None,
        truncated: bool = False,
    ) -> EventQueryResult:
        if self.epoch(context_name) != epoch:
            status, truncated = QueryStatus.DISCARDED, False
        elif status == QueryStatus.OK and events is not None:
            self._events[context_name] = events

        event_queries_total.labels(status=str(status)).inc()
        log = _log.warning if status == QueryStatus.FAILED else _log.debug
        log(
            "events_fetched",
            context=context_name,
            status=str(status),
            kind=str(error.kind) if error else None,
            count=len(events) if events is not None else None,
            truncated=truncated,
        )
        return EventQueryResult(
            context_name=context_name,
            status=status,
            events=self.events(context_name),
            error=error,
            truncated=truncated,
        )

    # ------------------------------------------------------------------
    # Filter state and epochs
    # ------------------------------------------------------------------

    def get_filter(self, context_name: str) -> EventFilterState:
        """Copy of the context's filter state (defaults if never set)."""
        return self._filters.get(context_name, EventFilterState()).copy()

    def set_filter(self, context_name: str, **changes: Any) -> EventFilterState:
        """Merge *changes* into the stored filter and invalidate in-flight fetches."""
        require_context_name(context_name)
        unknown = set(changes) - _FILTER_FIELDS
        if unknown:
            raise ValueError(f"unknown filter fields: {sorted(unknown)}")
        if "severities" in changes:
            changes["severities"] = frozenset(EventSeverity(s) for s in changes["severities"] or ())
        if changes.get("since") is not None and not isinstance(changes["since"], timedelta):
            raise ValueError(f"since must be a timedelta or None, got {changes['since']!r}")
        for key in ("namespace", "resource_kind", "search_text"):
            if key in changes and not changes[key]:
                changes[key] = None

        updated = self.get_filter(context_name).copy(**changes)
        self._filters[context_name] = updated
        self.bump_epoch(context_name)
        _log.debug("filter_updated", context=context_name, active=updated.is_active())
        return updated.copy()

    def clear_filters(self, context_name: str) -> EventFilterState:
        """Reset the context's filter to defaults."""
        require_context_name(context_name)
        self._filters.pop(context_name, None)
        self.bump_epoch(context_name)
        return EventFilterState()

    def epoch(self, context_name: str) -> int:
        return self._epochs.get(context_name, 0)

    def bump_epoch(self, context_name: str) -> int:
        """Invalidate any fetch for *context_name* that is still in flight."""
        self._epochs[context_name] = next(_epoch_counter)
        return self._epochs[context_name]

    def forget(self, context_name: str) -> None:
        """Drop all state for a removed context."""
        self.bump_epoch(context_name)
        self._namespaces.pop(context_name, None)
        self._events.pop(context_name, None)
        self._filters.pop(context_name, None)

    def _expired(self, checked_at: datetime) -> bool:
        if self._connectivity_ttl is None:
            return False
        return datetime.now(tz=UTC) - checked_at > timedelta(seconds=self._connectivity_ttl)

    def _missing_handle(self, context_name: str, operation: str) -> ClassifiedError:
        error = self._registry.setup_error(context_name) or classify(
            LookupError(f"context '{context_name}' has no connection handle"),
            context_name,
        )
        failures_total.labels(kind=str(error.kind), operation=operation).inc()
        return error
