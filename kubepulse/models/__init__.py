"""Core data structures for kubepulse."""

from kubepulse.models.config import KubePulseConfig
from kubepulse.models.connectivity import (
    ClusterContext,
    ConnectivityResult,
    ConnectivityStatus,
    OperatorMode,
    require_context_name,
)
from kubepulse.models.errors import (
    ClassifiedError,
    CommandError,
    FailureKind,
    UnsupportedOperation,
)
from kubepulse.models.events import (
    EventFilterState,
    EventQueryResult,
    EventRecord,
    EventSeverity,
    NamespaceSet,
    QueryStatus,
    parse_duration,
)
from kubepulse.models.preferences import PanelPreferences

__all__ = [
    "ClassifiedError",
    "ClusterContext",
    "CommandError",
    "ConnectivityResult",
    "ConnectivityStatus",
    "EventFilterState",
    "EventQueryResult",
    "EventRecord",
    "EventSeverity",
    "FailureKind",
    "KubePulseConfig",
    "NamespaceSet",
    "OperatorMode",
    "PanelPreferences",
    "QueryStatus",
    "UnsupportedOperation",
    "parse_duration",
    "require_context_name",
]
