"""Cluster data queries.

Exposes:
  ResourceQueryEngine -- namespaces, event working sets, filter state, epochs
  apply_filters       -- fixed-order local filter pipeline
  cap_most_recent     -- working-set bound, oldest dropped first
"""

from kubepulse.query.engine import EVENT_LIMIT, ResourceQueryEngine
from kubepulse.query.filters import FILTER_ORDER, apply_filters, cap_most_recent

__all__ = ["EVENT_LIMIT", "FILTER_ORDER", "ResourceQueryEngine", "apply_filters", "cap_most_recent"]
