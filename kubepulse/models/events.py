"""Namespace and event data structures."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from kubepulse.models.errors import ClassifiedError

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class EventSeverity(StrEnum):
    """Kubernetes event type."""

    NORMAL = "Normal"
    WARNING = "Warning"
    ERROR = "Error"


class QueryStatus(StrEnum):
    """Outcome tag of an event query."""

    OK = "ok"
    FAILED = "failed"
    UNSUPPORTED = "unsupported"
    DISCONNECTED = "disconnected"
    DISCARDED = "discarded"


def parse_timestamp(value: object) -> datetime | None:
    """Parse an RFC 3339 timestamp (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class NamespaceSet:
    """Alphabetical, deduplicated namespace names for one cluster."""

    context_name: str
    names: tuple[str, ...]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @classmethod
    def build(cls, context_name: str, names: object) -> NamespaceSet:
        """Sort and deduplicate raw names; blanks and non-strings are dropped."""
        cleaned = {n for n in names if isinstance(n, str) and n} if names else set()
        return cls(context_name=context_name, names=tuple(sorted(cleaned)))

    def __len__(self) -> int:
        return len(self.names)

    def __contains__(self, name: object) -> bool:
        return name in self.names


@dataclass(frozen=True)
class EventRecord:
    """Canonical event representation.  Immutable once received."""

    timestamp: datetime
    severity: EventSeverity
    reason: str
    involved_kind: str
    involved_name: str
    message: str
    namespace: str
    count: int = 1
    first_seen: datetime | None = None

    @property
    def involved_resource(self) -> str:
        return f"{self.involved_kind}/{self.involved_name}"

    @classmethod
    def from_dict(cls, raw: Mapping[str, object]) -> EventRecord:
        """Build a record from an operator or core/v1 Event JSON object.

        Missing fields degrade to empty strings; an unparseable timestamp sorts
        as the oldest possible record.
        """
        involved = raw.get("involvedObject") or {}
        if not isinstance(involved, Mapping):
            involved = {}
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            metadata = {}

        last_seen = (
            parse_timestamp(raw.get("lastTimestamp"))
            or parse_timestamp(raw.get("eventTime"))
            or parse_timestamp(raw.get("firstTimestamp"))
            or parse_timestamp(metadata.get("creationTimestamp"))
            or _EPOCH
        )
        try:
            severity = EventSeverity(str(raw.get("type", EventSeverity.NORMAL)))
        except ValueError:
            severity = EventSeverity.NORMAL
        try:
            count = int(raw.get("count") or 1)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            count = 1

        return cls(
            timestamp=last_seen,
            severity=severity,
            reason=str(raw.get("reason") or ""),
            involved_kind=str(involved.get("kind") or ""),
            involved_name=str(involved.get("name") or ""),
            message=str(raw.get("message") or ""),
            namespace=str(involved.get("namespace") or metadata.get("namespace") or raw.get("namespace") or ""),
            count=count,
            first_seen=parse_timestamp(raw.get("firstTimestamp")),
        )


# Defaults mirror the event viewer: every namespace, type and kind over the last day.
DEFAULT_SINCE = timedelta(hours=24)

_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str) -> timedelta | None:
    """Parse ``30s``/``15m``/``6h``/``7d``; ``all`` means no time bound."""
    text = value.strip().lower()
    if text == "all":
        return None
    unit = _DURATION_UNITS.get(text[-1:])
    if unit is None or not text[:-1].isdigit() or int(text[:-1]) <= 0:
        raise ValueError(f"invalid duration {value!r}; expected e.g. 30m, 6h, 7d or 'all'")
    return timedelta(seconds=int(text[:-1]) * unit)


@dataclass
class EventFilterState:
    """Per-cluster event filter.  Mutable; reset only by an explicit clear."""

    namespace: str | None = None
    severities: frozenset[EventSeverity] = field(default_factory=frozenset)
    since: timedelta | None = DEFAULT_SINCE
    resource_kind: str | None = None
    search_text: str | None = None

    def is_active(self) -> bool:
        """True when the filter narrows anything beyond the defaults."""
        return self != EventFilterState()

    def copy(self, **changes: object) -> EventFilterState:
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True)
class EventQueryResult:
    """Result of ``fetch_events``.

    ``events`` always holds the context's working set after the call, so a
    failed or discarded query still carries the last known data next to the
    error.
    """

    context_name: str
    status: QueryStatus
    events: tuple[EventRecord, ...] = ()
    error: ClassifiedError | None = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.status == QueryStatus.OK
