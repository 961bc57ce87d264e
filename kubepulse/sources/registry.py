"""Context registry: one connection handle per configured cluster.

The registry is the only owner of ``ClusterSource`` instances.  Other
components look handles up by context name and never keep them past a
``sync`` that removed the context.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio.config.config_exception import ConfigException  # type: ignore[import-untyped]

from kubepulse.classify import classify
from kubepulse.models.config import KubePulseConfig
from kubepulse.models.connectivity import ClusterContext, OperatorMode
from kubepulse.models.errors import ClassifiedError
from kubepulse.observability.metrics import failures_total
from kubepulse.sources.api import ApiClusterSource
from kubepulse.sources.base import ClusterSource
from kubepulse.sources.operator import OperatorClusterSource

_log = structlog.get_logger(component="sources.registry")

MODE_TTL = 300.0

# Re-reads the operator status; returns the new mode and the source serving it.
ModeDetector = Callable[[], Awaitable[tuple[OperatorMode, ClusterSource]]]


@dataclass
class ClusterHandle:
    """Live connection state for one context.

    ``detect`` re-reads the operator mode; it is None when the mode is fixed
    by configuration.
    """

    context: ClusterContext
    source: ClusterSource
    mode: OperatorMode = OperatorMode.BASIC
    detect: ModeDetector | None = None
    mode_checked_at: float = field(default_factory=time.monotonic)

    @property
    def name(self) -> str:
        return self.context.name

    @property
    def operated(self) -> bool:
        return self.mode != OperatorMode.BASIC


SourceFactory = Callable[[ClusterContext], Awaitable[ClusterHandle]]
ChangeListener = Callable[[list[ClusterContext], list[str]], Awaitable[None]]


def load_contexts(kubeconfig_path: str = "") -> list[ClusterContext]:
    """Enumerate contexts from kubeconfig.  Missing kubeconfig yields none."""
    try:
        raw_contexts, _active = k8s_config.list_kube_config_contexts(config_file=kubeconfig_path or None)
    except (ConfigException, OSError) as exc:
        _log.warning("kubeconfig_unavailable", path=kubeconfig_path or "default", error=str(exc))
        return []
    contexts: list[ClusterContext] = []
    for raw in raw_contexts or []:
        details = raw.get("context") or {}
        contexts.append(
            ClusterContext(
                name=raw["name"],
                kubeconfig=kubeconfig_path or None,
                cluster=details.get("cluster", ""),
                user=details.get("user", ""),
                namespace=details.get("namespace", ""),
            )
        )
    return contexts


def default_source_factory(config: KubePulseConfig) -> SourceFactory:
    """Build handles backed by kubernetes-asyncio and the operator CLI.

    The operated flag is forced by ``operated_contexts``; otherwise it is read
    from the operator status ConfigMap.  A failed first detection counts as
    BASIC; the handle's ``detect`` re-reads the status later.
    """
    forced = set(config.kubeconfig.operated_contexts)

    async def factory(context: ClusterContext) -> ClusterHandle:
        api = await ApiClusterSource.connect(context, request_timeout=config.probe.timeout_seconds)
        operator = OperatorClusterSource(api, config.operator, kubeconfig=context.kubeconfig)

        async def detect() -> tuple[OperatorMode, ClusterSource]:
            mode = await asyncio.wait_for(
                api.operator_mode(config.operator.namespace, config.operator.status_configmap),
                timeout=config.probe.timeout_seconds,
            )
            return mode, (operator if mode != OperatorMode.BASIC else api)

        if context.name in forced:
            handle = ClusterHandle(context=context, source=operator, mode=OperatorMode.OPERATED)
        else:
            try:
                mode, source = await detect()
            except Exception as exc:  # noqa: BLE001
                _mode_detection_failed(exc, context.name)
                mode, source = OperatorMode.BASIC, api
            handle = ClusterHandle(context=context, source=source, mode=mode, detect=detect)
        _log.info("cluster_handle_created", context=context.name, mode=str(handle.mode))
        return handle

    return factory


def _mode_detection_failed(exc: Exception, context_name: str) -> None:
    err = classify(exc, context_name)
    failures_total.labels(kind=str(err.kind), operation="operator_mode").inc()
    _log.warning("operator_mode_unknown", context=context_name, kind=str(err.kind))


class ContextRegistry:
    """Owns one ``ClusterHandle`` per registered context.

    Args:
        source_factory: Async callable building a handle for a context.
        mode_ttl: Seconds an operator mode reading stays fresh before
            ``refresh_mode`` re-reads it.
    """

    def __init__(self, source_factory: SourceFactory, mode_ttl: float = MODE_TTL) -> None:
        self._factory = source_factory
        self._mode_ttl = mode_ttl
        self._contexts: dict[str, ClusterContext] = {}
        self._handles: dict[str, ClusterHandle] = {}
        self._setup_errors: dict[str, ClassifiedError] = {}
        self._retries: dict[str, asyncio.Task[None]] = {}
        self._listeners: list[ChangeListener] = []

    def add_listener(self, listener: ChangeListener) -> None:
        """Register an async callback invoked with ``(added, removed_names)``."""
        self._listeners.append(listener)

    def names(self) -> list[str]:
        return list(self._contexts)

    def contexts(self) -> list[ClusterContext]:
        return list(self._contexts.values())

    def get(self, name: str) -> ClusterHandle | None:
        return self._handles.get(name)

    def setup_error(self, name: str) -> ClassifiedError | None:
        """Classified failure from building the context's handle, if any."""
        return self._setup_errors.get(name)

    async def sync(self, contexts: list[ClusterContext]) -> tuple[list[ClusterContext], list[str]]:
        """Reconcile registered contexts with *contexts*.

        A context whose definition changed is treated as removed then re-added.
        Unchanged contexts whose handle failed with a retryable error are
        opened again and reported as added when that succeeds.  Listeners run
        before removed handles are closed.
        """
        incoming = {c.name: c for c in contexts}
        removed = [n for n, c in self._contexts.items() if incoming.get(n) != c]
        added = [c for n, c in incoming.items() if self._contexts.get(n) != c]
        retry = [
            c
            for n, c in incoming.items()
            if self._contexts.get(n) == c and n not in self._handles and self._retryable(n)
        ]

        for name in removed:
            self._contexts.pop(name, None)
            await self._cancel_retry(name)
        for ctx in added:
            self._contexts[ctx.name] = ctx

        stale = [(name, self._handles.pop(name, None)) for name in removed]
        for name in removed:
            self._setup_errors.pop(name, None)

        await asyncio.gather(*(self._open(ctx) for ctx in [*added, *retry]))
        recovered = [c for c in retry if c.name in self._handles]
        added = [*added, *recovered]

        if added or removed:
            _log.info("contexts_synced", added=[c.name for c in added], removed=removed)
            await self._notify(added, removed)

        for name, handle in stale:
            if handle is not None:
                await self._close_handle(name, handle)
        return added, removed

    def retry_setup(self, name: str) -> bool:
        """Reopen *name* in the background after a retryable setup failure.

        Returns True when a retry was scheduled.  Listeners see the context as
        added once its handle exists.
        """
        context = self._contexts.get(name)
        if context is None or name in self._handles or name in self._retries or not self._retryable(name):
            return False
        task = asyncio.get_running_loop().create_task(self._retry(context))
        self._retries[name] = task
        task.add_done_callback(lambda t: self._retries.pop(name) if self._retries.get(name) is t else None)
        return True

    async def refresh_mode(self, name: str) -> ClusterHandle | None:
        """Return *name*'s handle, re-reading its operator mode once stale.

        A failed reading keeps the previous mode and source.
        """
        handle = self._handles.get(name)
        if handle is None or handle.detect is None:
            return handle
        if time.monotonic() - handle.mode_checked_at < self._mode_ttl:
            return handle
        handle.mode_checked_at = time.monotonic()
        try:
            mode, source = await handle.detect()
        except Exception as exc:  # noqa: BLE001
            _mode_detection_failed(exc, name)
            return handle
        if self._handles.get(name) is not handle:
            return self._handles.get(name)
        if mode != handle.mode:
            _log.info("operator_mode_changed", context=name, previous=str(handle.mode), mode=str(mode))
            handle.mode = mode
            handle.source = source
        return handle

    async def close(self, name: str) -> None:
        """Unregister *name* and close its handle."""
        self._contexts.pop(name, None)
        self._setup_errors.pop(name, None)
        await self._cancel_retry(name)
        handle = self._handles.pop(name, None)
        if handle is not None:
            await self._close_handle(name, handle)

    async def close_all(self) -> None:
        for name in list(self._contexts):
            await self.close(name)

    def _retryable(self, name: str) -> bool:
        err = self._setup_errors.get(name)
        return err is not None and err.retryable

    async def _retry(self, context: ClusterContext) -> None:
        if await self._open(context):
            _log.info("cluster_handle_recovered", context=context.name)
            await self._notify([context], [])

    async def _cancel_retry(self, name: str) -> None:
        task = self._retries.pop(name, None)
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _open(self, context: ClusterContext) -> bool:
        try:
            handle = await self._factory(context)
        except Exception as exc:  # noqa: BLE001
            err = classify(exc, context.name)
            failures_total.labels(kind=str(err.kind), operation="connect").inc()
            if self._contexts.get(context.name) == context:
                self._setup_errors[context.name] = err
            _log.warning("cluster_handle_failed", context=context.name, kind=str(err.kind), error=err.message)
            return False
        if self._contexts.get(context.name) != context or context.name in self._handles:
            # Superseded while connecting.
            await self._close_handle(context.name, handle)
            return False
        self._handles[context.name] = handle
        self._setup_errors.pop(context.name, None)
        return True

    async def _notify(self, added: list[ClusterContext], removed: list[str]) -> None:
        results = await asyncio.gather(
            *(listener(added, removed) for listener in self._listeners),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                _log.error("context_listener_failed", error=str(result))

    @staticmethod
    async def _close_handle(name: str, handle: ClusterHandle) -> None:
        try:
            await handle.source.close()
        except Exception as exc:  # noqa: BLE001
            _log.warning("cluster_handle_close_failed", context=name, error=str(exc))
        else:
            _log.debug("cluster_handle_closed", context=name)
