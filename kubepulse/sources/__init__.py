"""Cluster data sources.

Exposes:
  ClusterSource          -- abstract per-context capability
  ApiClusterSource       -- direct Kubernetes API access (kubernetes-asyncio)
  OperatorClusterSource  -- adds operator-backed event queries via kubectl exec
  ContextRegistry        -- owns one ClusterHandle per configured context
"""

from kubepulse.sources.api import ApiClusterSource
from kubepulse.sources.base import ClusterSource
from kubepulse.sources.operator import OperatorClusterSource
from kubepulse.sources.registry import (
    ClusterHandle,
    ContextRegistry,
    default_source_factory,
    load_contexts,
)

__all__ = [
    "ApiClusterSource",
    "ClusterHandle",
    "ClusterSource",
    "ContextRegistry",
    "OperatorClusterSource",
    "default_source_factory",
    "load_contexts",
]
