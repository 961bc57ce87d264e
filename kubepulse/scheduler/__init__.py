"""Auto-refresh scheduling.

Exposes:
  RefreshScheduler -- per-context timer-driven refresh state machine
  SchedulerState   -- IDLE / SCHEDULED / RUNNING / PAUSED
"""

from kubepulse.scheduler.refresh import DEFAULT_INTERVAL, RefreshScheduler, SchedulerState

__all__ = ["DEFAULT_INTERVAL", "RefreshScheduler", "SchedulerState"]
