"""Application bootstrap for kubepulse.

Wires all components in dependency order and manages their lifecycle.
Startup order: config → logging → registry → monitor → engine
              → preferences → scheduler → contexts

Shutdown runs in reverse order.  Each component's stop error is caught and
logged independently so one failing teardown does not block the rest.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Callable
from typing import TYPE_CHECKING

from kubepulse.config import load_config
from kubepulse.connectivity.monitor import ConnectivityMonitor
from kubepulse.models.config import KubePulseConfig
from kubepulse.models.connectivity import ClusterContext
from kubepulse.models.preferences import PanelPreferences
from kubepulse.observability.logging import get_logger, setup_logging
from kubepulse.observability.metrics import failure_summary
from kubepulse.preferences.backends import JsonFileKeyValueStore, KeyValueStore
from kubepulse.preferences.store import PreferencesStore
from kubepulse.query.engine import ResourceQueryEngine
from kubepulse.scheduler.refresh import RefreshScheduler, ResultCallback
from kubepulse.sources.registry import ContextRegistry, SourceFactory, default_source_factory, load_contexts

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 10
PREFERENCES_FILE = "preferences.json"

ContextLoader = Callable[[], list[ClusterContext]]


class KubePulseApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``start`` and ``stop`` are idempotent.  Collaborators that talk to the
    outside world (source factory, context loader, preference backend) can be
    injected; otherwise they are built from configuration.
    """

    def __init__(
        self,
        config: KubePulseConfig | None = None,
        *,
        source_factory: SourceFactory | None = None,
        context_loader: ContextLoader | None = None,
        store_backend: KeyValueStore | None = None,
        on_result: ResultCallback | None = None,
        configure_logging: bool = True,
    ) -> None:
        self.config = config
        self._source_factory = source_factory
        self._context_loader = context_loader
        self._store_backend = store_backend
        self._on_result = on_result
        self._configure_logging = configure_logging
        self._auto_refresh = True

        self.registry: ContextRegistry | None = None
        self.monitor: ConnectivityMonitor | None = None
        self.engine: ResourceQueryEngine | None = None
        self.preferences: PreferencesStore | None = None
        self.scheduler: RefreshScheduler | None = None

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self, *, auto_refresh: bool = True) -> None:
        """Start all components and register the configured contexts.

        With *auto_refresh* each operated context whose preferences allow it
        is enabled in the refresh scheduler as soon as it is registered.
        """
        if self._running:
            return
        self._auto_refresh = auto_refresh

        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()
        config = self.config

        # --- 2. Logging -------------------------------------------------
        if self._configure_logging:
            setup_logging(config.log.level)
        self._log = get_logger("app")
        self._log.info("kubepulse_starting", version=_kubepulse_version())

        # --- 3. Context registry ----------------------------------------
        self.registry = ContextRegistry(
            self._source_factory or default_source_factory(config),
            mode_ttl=config.operator.status_ttl_seconds,
        )
        self.registry.add_listener(self._on_contexts_changed)

        # --- 4. Connectivity monitor ------------------------------------
        self.monitor = ConnectivityMonitor(self.registry, timeout=config.probe.timeout_seconds)

        # --- 5. Query engine --------------------------------------------
        self.engine = ResourceQueryEngine(
            self.registry,
            self.monitor,
            event_limit=config.refresh.event_limit,
            connectivity_ttl=config.refresh.interval_seconds,
        )

        # --- 6. Preferences ---------------------------------------------
        backend = self._store_backend or JsonFileKeyValueStore(os.path.join(config.storage.data_dir, PREFERENCES_FILE))
        self.preferences = PreferencesStore(backend)

        # --- 7. Refresh scheduler ---------------------------------------
        self.scheduler = RefreshScheduler(self.engine, on_result=self._on_result)

        self._running = True

        # --- 8. Contexts ------------------------------------------------
        await self.reload_contexts()

        self._log.info("kubepulse_started", contexts=len(self.registry.names()))

    async def reload_contexts(self) -> None:
        """Re-read kubeconfig and reconcile the registry with it."""
        assert self.registry is not None and self.config is not None
        if self._context_loader is not None:
            contexts = self._context_loader()
        else:
            contexts = load_contexts(self.config.kubeconfig.path)
        await self.registry.sync(contexts)

    async def _on_contexts_changed(self, added: list[ClusterContext], removed: list[str]) -> None:
        assert self.scheduler is not None and self.monitor is not None
        for name in removed:
            self.scheduler.remove(name)
            self.monitor.forget(name)
        if not self._auto_refresh:
            return
        for context in added:
            self._apply_refresh_preferences(context.name)

    def _apply_refresh_preferences(self, context_name: str) -> None:
        assert self.registry is not None and self.preferences is not None and self.scheduler is not None
        handle = self.registry.get(context_name)
        if handle is None or not handle.operated:
            return
        prefs = self.preferences.get(context_name)
        if prefs.refresh_enabled:
            self.scheduler.enable(context_name, prefs.refresh_interval)
        else:
            self.scheduler.disable(context_name)

    async def save_preferences(self, context_name: str, prefs: PanelPreferences) -> bool:
        """Persist *prefs* and apply the refresh settings to the scheduler."""
        assert self.preferences is not None
        saved = await self.preferences.save(context_name, prefs)
        if saved and self._running and self._auto_refresh:
            self._apply_refresh_preferences(context_name)
        return saved

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubepulse_shutting_down")
        self._running = False

        await self._stop_component("scheduler", self.scheduler)
        if self.registry is not None:
            await self._stop_component("registry", _Closer(self.registry))
        self._log = None
        log.info("kubepulse_stopped", failures=failure_summary())

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timed_out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:  # noqa: BLE001
            log.error("component_stop_failed", component=name, error=str(exc))


class _Closer:
    """Adapts the registry's ``close_all`` to the component ``stop`` protocol."""

    def __init__(self, registry: ContextRegistry) -> None:
        self._registry = registry

    async def stop(self) -> None:
        await self._registry.close_all()


def _kubepulse_version() -> str:
    from kubepulse import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def run_forever(app: KubePulseApp) -> None:
    """Start *app*, refresh until SIGINT/SIGTERM, then stop it."""
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    finally:
        await app.stop()
