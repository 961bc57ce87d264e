"""Cluster connectivity checks.

Exposes:
  probe                -- one bounded ping against a single source
  ConnectivityMonitor  -- concurrent, isolated checks with latest-result cache
"""

from kubepulse.connectivity.monitor import ConnectivityMonitor
from kubepulse.connectivity.probe import probe

__all__ = ["ConnectivityMonitor", "probe"]
