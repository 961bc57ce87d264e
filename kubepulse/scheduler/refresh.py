"""Per-context auto-refresh state machine.

    IDLE --enable--> SCHEDULED --timer--> RUNNING --fetch done--> SCHEDULED
    SCHEDULED/RUNNING --pause/hidden--> PAUSED --resume/visible--> SCHEDULED
    any --disable/remove--> IDLE

Timers are event-loop ``TimerHandle``s; there is no polling task and no lock.
A context never has two fetches in flight.  Disabling bumps the engine epoch,
so a fetch that is still running when its context is disabled completes
without touching the working set.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from kubepulse.models.connectivity import require_context_name
from kubepulse.models.events import EventQueryResult
from kubepulse.observability.metrics import refresh_fires_total

_log = structlog.get_logger(component="scheduler")

DEFAULT_INTERVAL = 30.0

ResultCallback = Callable[[EventQueryResult], Awaitable[None] | None]


class SchedulerState(StrEnum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class _Entry:
    interval: float
    state: SchedulerState = SchedulerState.IDLE
    anchor: float = 0.0  # loop time of the last fire, or of enable before the first
    timer: asyncio.TimerHandle | None = None
    task: asyncio.Task[None] | None = None
    user_paused: bool = False

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class RefreshScheduler:
    """Drives ``engine.fetch_events`` for each enabled context.

    Args:
        engine:    Object exposing ``fetch_events``, ``get_filter`` and
                   ``bump_epoch``/``forget`` (a ``ResourceQueryEngine``).
        on_result: Optional callback receiving every fetch result.
    """

    def __init__(self, engine: Any, on_result: ResultCallback | None = None) -> None:
        self._engine = engine
        self._on_result = on_result
        self._entries: dict[str, _Entry] = {}
        self._visible = True

    @property
    def visible(self) -> bool:
        return self._visible

    def state(self, context_name: str) -> SchedulerState:
        entry = self._entries.get(context_name)
        return entry.state if entry else SchedulerState.IDLE

    def interval(self, context_name: str) -> float | None:
        entry = self._entries.get(context_name)
        return entry.interval if entry else None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def enable(self, context_name: str, interval: float = DEFAULT_INTERVAL) -> None:
        """Start refreshing *context_name*: first fire at now + interval."""
        require_context_name(context_name)
        _require_interval(interval)
        entry = self._entries.setdefault(context_name, _Entry(interval=interval))
        if entry.state != SchedulerState.IDLE:
            self.set_interval(context_name, interval)
            return
        entry.interval = interval
        entry.anchor = self._now()
        entry.user_paused = False
        if not self._visible:
            entry.state = SchedulerState.PAUSED
        else:
            self._schedule(context_name, entry, entry.anchor + interval)
        _log.info("refresh_enabled", context=context_name, interval=interval, state=str(entry.state))

    def disable(self, context_name: str) -> None:
        """Stop refreshing; an in-flight fetch is left to finish and discarded."""
        entry = self._entries.get(context_name)
        if entry is None:
            return
        entry.cancel_timer()
        entry.user_paused = False
        if entry.state != SchedulerState.IDLE:
            entry.state = SchedulerState.IDLE
            _log.info("refresh_disabled", context=context_name)
        self._engine.bump_epoch(context_name)

    def remove(self, context_name: str) -> None:
        """Disable and drop all scheduler and engine state for *context_name*."""
        self.disable(context_name)
        self._entries.pop(context_name, None)
        self._engine.forget(context_name)

    def pause(self, context_name: str) -> None:
        entry = self._entries.get(context_name)
        if entry is None or entry.state == SchedulerState.IDLE:
            return
        entry.user_paused = True
        self._pause(context_name, entry)

    def resume(self, context_name: str) -> None:
        """Resume on the original cadence; never fires immediately."""
        entry = self._entries.get(context_name)
        if entry is None or entry.state == SchedulerState.IDLE:
            return
        entry.user_paused = False
        if self._visible:
            self._resume(context_name, entry)

    def set_visible(self, visible: bool) -> None:
        """Host visibility signal: hidden pauses every context, shown resumes them."""
        if visible == self._visible:
            return
        self._visible = visible
        _log.debug("visibility_changed", visible=visible)
        for name, entry in self._entries.items():
            if visible and not entry.user_paused:
                self._resume(name, entry)
            elif not visible:
                self._pause(name, entry)

    def set_interval(self, context_name: str, interval: float) -> None:
        """Change the cadence; a pending timer is re-armed from the last fire."""
        _require_interval(interval)
        entry = self._entries.get(context_name)
        if entry is None:
            return
        entry.interval = interval
        if entry.state == SchedulerState.SCHEDULED:
            self._schedule(context_name, entry, self._next_due(entry))

    async def stop(self) -> None:
        """Disable every context and cancel fetches still in flight."""
        tasks = [e.task for e in self._entries.values() if e.in_flight]
        for name in list(self._entries):
            self.disable(name)
        for task in tasks:
            task.cancel()  # type: ignore[union-attr]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _now() -> float:
        return asyncio.get_running_loop().time()

    def _schedule(self, name: str, entry: _Entry, when: float) -> None:
        entry.cancel_timer()
        entry.state = SchedulerState.SCHEDULED
        entry.timer = asyncio.get_running_loop().call_at(when, self._fire, name, entry)

    def _next_due(self, entry: _Entry) -> float:
        now = self._now()
        due = entry.anchor + entry.interval
        if due <= now:
            due += (int((now - due) // entry.interval) + 1) * entry.interval
        while due <= now:
            due += entry.interval
        return due

    def _pause(self, name: str, entry: _Entry) -> None:
        if entry.state not in (SchedulerState.SCHEDULED, SchedulerState.RUNNING):
            return
        entry.cancel_timer()
        entry.state = SchedulerState.PAUSED
        _log.debug("refresh_paused", context=name)

    def _resume(self, name: str, entry: _Entry) -> None:
        if entry.state != SchedulerState.PAUSED:
            return
        if entry.in_flight:
            # Completion of the running fetch re-arms the timer.
            entry.state = SchedulerState.RUNNING
        else:
            self._schedule(name, entry, self._next_due(entry))
        _log.debug("refresh_resumed", context=name, state=str(entry.state))

    def _fire(self, name: str, entry: _Entry) -> None:
        entry.timer = None
        if entry.state != SchedulerState.SCHEDULED or self._entries.get(name) is not entry:
            return
        entry.state = SchedulerState.RUNNING
        entry.anchor = self._now()
        if entry.in_flight:
            # A fetch from before a disable/enable cycle is still running.
            return
        refresh_fires_total.inc()
        _log.debug("refresh_fired", context=name)
        entry.task = asyncio.get_running_loop().create_task(self._run(name, entry))

    async def _run(self, name: str, entry: _Entry) -> None:
        result: EventQueryResult | None = None
        try:
            result = await self._engine.fetch_events(name, self._engine.get_filter(name))
        except Exception as exc:  # noqa: BLE001
            _log.error("refresh_fetch_failed", context=name, error=str(exc))
        finally:
            entry.task = None

        if result is not None and self._on_result is not None:
            try:
                outcome = self._on_result(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:  # noqa: BLE001
                _log.error("refresh_callback_failed", context=name, error=str(exc))

        if entry.state == SchedulerState.RUNNING and self._entries.get(name) is entry:
            self._schedule(name, entry, self._now() + entry.interval)


def _require_interval(interval: float) -> None:
    if not isinstance(interval, int | float) or isinstance(interval, bool) or interval <= 0:
        raise ValueError(f"interval must be a positive number of seconds, got {interval!r}")
