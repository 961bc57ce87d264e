"""Cluster data-source capability.

Every cluster is reached through one ``ClusterSource``.  Which implementation
a context gets is decided once, by the registry, from the cluster's operated
status; query logic never branches on the kind of source.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from kubepulse.models.errors import UnsupportedOperation
from kubepulse.models.events import EventFilterState


class ClusterSource(ABC):
    """Abstract base class for per-context cluster access.

    Implementations raise the underlying transport/CLI exception on failure;
    classification happens in the caller.
    """

    # Names from kubepulse.query.filters.FILTER_ORDER this source applies remotely.
    server_side_filters: frozenset[str] = frozenset()

    @property
    @abstractmethod
    def context_name(self) -> str:
        """Name of the kubeconfig context this source talks to."""

    @abstractmethod
    async def ping(self) -> None:
        """Issue the cheapest side-effect-free call the cluster offers."""

    @abstractmethod
    async def list_namespaces(self) -> list[str]:
        """Return raw namespace names (unsorted, possibly duplicated)."""

    async def query_events(self, filters: EventFilterState) -> list[Mapping[str, Any]]:
        """Return JSON-shaped event objects, newest or oldest first.

        Only operated clusters offer this capability.
        """
        raise UnsupportedOperation(f"event queries are not available for context '{self.context_name}'")

    def pushed_down(self, filters: EventFilterState) -> frozenset[str]:
        """Filters from *filters* that ``query_events`` applies remotely."""
        return self.server_side_filters

    async def close(self) -> None:
        """Release connections held by this source."""
