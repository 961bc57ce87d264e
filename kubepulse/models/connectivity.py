"""Cluster context and connectivity data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from kubepulse.models.errors import ClassifiedError


class ConnectivityStatus(StrEnum):
    """Reachability of a cluster as seen by the last probe."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class OperatorMode(StrEnum):
    """Presence and tier of the in-cluster companion operator."""

    BASIC = "basic"
    OPERATED = "operated"
    ENABLED = "enabled"
    DEGRADED = "degraded"


def require_context_name(name: object) -> str:
    """Reject empty or non-string context names."""
    if not isinstance(name, str) or not name:
        raise ValueError(f"context name must be a non-empty string, got {name!r}")
    return name


@dataclass(frozen=True)
class ClusterContext:
    """One configured cluster connection, as loaded from kubeconfig."""

    name: str
    kubeconfig: str | None = None
    cluster: str = ""
    user: str = ""
    namespace: str = ""


@dataclass(frozen=True)
class ConnectivityResult:
    """Outcome of a single probe.  Never mutated; superseded by the next probe."""

    context_name: str
    status: ConnectivityStatus
    error: ClassifiedError | None = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    duration_ms: float = 0.0

    @property
    def connected(self) -> bool:
        return self.status == ConnectivityStatus.CONNECTED
