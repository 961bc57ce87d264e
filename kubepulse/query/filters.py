"""Local event filter pipeline.

Filters run in a fixed order so results are reproducible no matter which
subset the cluster source already applied remotely.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from kubepulse.models.events import EventFilterState, EventRecord

FILTER_ORDER: tuple[str, ...] = ("namespace", "severity", "since", "resource_kind", "search_text")

_Predicate = Callable[[EventRecord], bool]


def apply_filters(
    events: Iterable[EventRecord],
    filters: EventFilterState,
    *,
    skip: Iterable[str] = (),
    now: datetime | None = None,
) -> list[EventRecord]:
    """Return the events of *events* matching *filters*, order preserved.

    Stages named in *skip* are assumed to be already applied by the source.
    """
    skipped = frozenset(skip)
    now = now or datetime.now(tz=UTC)
    result = list(events)
    for stage in FILTER_ORDER:
        if stage in skipped:
            continue
        predicate = _predicate(stage, filters, now)
        if predicate is not None:
            result = [e for e in result if predicate(e)]
    return result


def _predicate(stage: str, filters: EventFilterState, now: datetime) -> _Predicate | None:
    if stage == "namespace" and filters.namespace:
        namespace = filters.namespace
        return lambda e: e.namespace == namespace
    if stage == "severity" and filters.severities:
        severities = filters.severities
        return lambda e: e.severity in severities
    if stage == "since" and filters.since is not None:
        cutoff = now - filters.since
        return lambda e: e.timestamp >= cutoff
    if stage == "resource_kind" and filters.resource_kind:
        kind = filters.resource_kind.lower()
        return lambda e: e.involved_kind.lower() == kind
    if stage == "search_text" and filters.search_text:
        needle = filters.search_text.lower()
        return lambda e: needle in e.message.lower() or needle in e.reason.lower()
    return None


def cap_most_recent(events: Iterable[EventRecord], limit: int) -> tuple[list[EventRecord], bool]:
    """Keep the *limit* most recent events, oldest first.

    Returns the capped list and whether anything was dropped.  Ties keep their
    arrival order; overflow always drops by age, never by severity.
    """
    ordered = sorted(events, key=lambda e: e.timestamp)
    if len(ordered) <= limit:
        return ordered, False
    return ordered[len(ordered) - limit :], True
