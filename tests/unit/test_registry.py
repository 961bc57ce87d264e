"""Unit tests for the context registry."""

from __future__ import annotations

import asyncio
import errno
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from kubernetes_asyncio.client.exceptions import ApiException

import kubepulse.sources.operator as operator_module
import kubepulse.sources.registry as registry_module
from kubepulse.models.config import KubeconfigConfig, KubePulseConfig
from kubepulse.models.connectivity import ClusterContext, OperatorMode
from kubepulse.models.errors import FailureKind
from kubepulse.models.events import EventFilterState
from kubepulse.sources.operator import OperatorClusterSource
from kubepulse.sources.registry import ClusterHandle, ContextRegistry, default_source_factory, load_contexts

from tests.conftest import FakeSource, fake_factory

_KUBECONFIG = """
apiVersion: v1
kind: Config
current-context: dev
clusters:
- name: dev-cluster
  cluster: {server: "https://127.0.0.1:6443"}
- name: prod-cluster
  cluster: {server: "https://10.0.0.1:6443"}
users:
- name: alice
  user: {token: abc}
contexts:
- name: dev
  context: {cluster: dev-cluster, user: alice, namespace: apps}
- name: prod
  context: {cluster: prod-cluster, user: alice}
"""


class TestLoadContexts:
    def test_reads_contexts_from_kubeconfig(self, tmp_path: Path) -> None:
        path = tmp_path / "config"
        path.write_text(_KUBECONFIG)
        contexts = load_contexts(str(path))
        assert [c.name for c in contexts] == ["dev", "prod"]
        assert contexts[0].cluster == "dev-cluster"
        assert contexts[0].namespace == "apps"
        assert contexts[0].kubeconfig == str(path)

    def test_missing_kubeconfig_yields_nothing(self, tmp_path: Path) -> None:
        assert load_contexts(str(tmp_path / "absent")) == []


class TestSync:
    async def test_added_contexts_get_handles(self) -> None:
        sources = {"a": FakeSource("a"), "b": FakeSource("b")}
        registry = ContextRegistry(fake_factory(sources, operated={"b"}))
        added, removed = await registry.sync([ClusterContext("a"), ClusterContext("b")])

        assert [c.name for c in added] == ["a", "b"]
        assert removed == []
        assert registry.get("a").source is sources["a"]  # type: ignore[union-attr]
        assert not registry.get("a").operated  # type: ignore[union-attr]
        assert registry.get("b").operated  # type: ignore[union-attr]

    async def test_removed_contexts_are_closed_after_listeners(self) -> None:
        sources = {"a": FakeSource("a"), "b": FakeSource("b")}
        registry = ContextRegistry(fake_factory(sources))
        await registry.sync([ClusterContext("a"), ClusterContext("b")])

        seen: list[tuple[list[str], list[str], bool]] = []

        async def listener(added: list[ClusterContext], removed: list[str]) -> None:
            seen.append(([c.name for c in added], removed, sources["b"].closed))

        registry.add_listener(listener)
        await registry.sync([ClusterContext("a")])

        assert seen == [([], ["b"], False)]
        assert sources["b"].closed
        assert registry.get("b") is None
        assert registry.names() == ["a"]

    async def test_changed_context_is_replaced(self) -> None:
        sources = {"a": FakeSource("a")}
        registry = ContextRegistry(fake_factory(sources))
        await registry.sync([ClusterContext("a", namespace="x")])
        added, removed = await registry.sync([ClusterContext("a", namespace="y")])
        assert removed == ["a"]
        assert [c.namespace for c in added] == ["y"]
        assert registry.get("a") is not None

    async def test_unchanged_sync_is_a_no_op(self) -> None:
        registry = ContextRegistry(fake_factory({"a": FakeSource("a")}))
        await registry.sync([ClusterContext("a")])
        assert await registry.sync([ClusterContext("a")]) == ([], [])

    async def test_factory_failure_is_classified(self) -> None:
        registry = ContextRegistry(fake_factory({}))
        await registry.sync([ClusterContext("ghost")])
        assert registry.get("ghost") is None
        assert registry.names() == ["ghost"]
        error = registry.setup_error("ghost")
        assert error is not None
        assert error.kind == FailureKind.NOT_FOUND

    async def test_failing_listener_does_not_break_sync(self) -> None:
        registry = ContextRegistry(fake_factory({"a": FakeSource("a")}))

        async def broken(added: list[ClusterContext], removed: list[str]) -> None:
            raise RuntimeError("listener bug")

        registry.add_listener(broken)
        added, _ = await registry.sync([ClusterContext("a")])
        assert [c.name for c in added] == ["a"]


class TestClose:
    async def test_close_all(self) -> None:
        sources = {"a": FakeSource("a"), "b": FakeSource("b")}
        registry = ContextRegistry(fake_factory(sources))
        await registry.sync([ClusterContext("a"), ClusterContext("b")])
        await registry.close_all()
        assert all(s.closed for s in sources.values())
        assert registry.names() == []


# ---------------------------------------------------------------------------
# Setup retry
# ---------------------------------------------------------------------------


class _FlakyFactory:
    """Raises each queued error once, then hands out *source*."""

    def __init__(self, source: FakeSource, *errors: Exception) -> None:
        self.source = source
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, context: ClusterContext) -> ClusterHandle:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return ClusterHandle(context=context, source=self.source)


class TestSetupRetry:
    async def test_transient_failure_reopened_on_next_sync(self) -> None:
        factory = _FlakyFactory(FakeSource("a"), ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"))
        registry = ContextRegistry(factory)
        seen: list[list[str]] = []

        async def listener(added: list[ClusterContext], removed: list[str]) -> None:
            seen.append([c.name for c in added])

        registry.add_listener(listener)
        await registry.sync([ClusterContext("a")])
        error = registry.setup_error("a")
        assert registry.get("a") is None
        assert error is not None and error.kind == FailureKind.NETWORK_UNREACHABLE

        added, removed = await registry.sync([ClusterContext("a")])

        assert [c.name for c in added] == ["a"]
        assert removed == []
        assert registry.get("a") is not None
        assert registry.setup_error("a") is None
        assert seen == [["a"], ["a"]]
        assert factory.calls == 2

    async def test_permanent_failure_not_reopened(self) -> None:
        factory = _FlakyFactory(FakeSource("a"), LookupError("context a not found in kubeconfig"))
        registry = ContextRegistry(factory)
        await registry.sync([ClusterContext("a")])
        assert await registry.sync([ClusterContext("a")]) == ([], [])
        assert not registry.retry_setup("a")
        assert factory.calls == 1
        assert registry.get("a") is None

    async def test_retry_setup_runs_in_background(self) -> None:
        factory = _FlakyFactory(FakeSource("a"), TimeoutError())
        registry = ContextRegistry(factory)
        notified = asyncio.Event()

        async def listener(added: list[ClusterContext], removed: list[str]) -> None:
            if registry.get("a") is not None:
                notified.set()

        await registry.sync([ClusterContext("a")])
        registry.add_listener(listener)

        assert registry.retry_setup("a")
        assert not registry.retry_setup("a")
        await asyncio.wait_for(notified.wait(), timeout=1.0)
        assert registry.get("a") is not None
        assert factory.calls == 2

    async def test_close_cancels_pending_retry(self) -> None:
        started = asyncio.Event()
        factory = _FlakyFactory(FakeSource("a"), TimeoutError())

        async def slow_factory(context: ClusterContext) -> ClusterHandle:
            if factory.calls:
                started.set()
                await asyncio.sleep(10)
            return await factory(context)

        registry = ContextRegistry(slow_factory)
        await registry.sync([ClusterContext("a")])
        assert registry.retry_setup("a")
        await started.wait()
        await registry.close_all()
        assert registry.get("a") is None
        assert registry.names() == []


# ---------------------------------------------------------------------------
# Operator mode refresh
# ---------------------------------------------------------------------------


class _Detector:
    def __init__(self, *outcomes: tuple[OperatorMode, FakeSource] | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> tuple[OperatorMode, FakeSource]:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _detecting_factory(source: FakeSource, detector: _Detector):
    async def factory(context: ClusterContext) -> ClusterHandle:
        return ClusterHandle(context=context, source=source, detect=detector)

    return factory


class TestRefreshMode:
    async def test_operator_installed_later_is_picked_up(self) -> None:
        operated = FakeSource("a", server_side=frozenset({"namespace"}))
        detector = _Detector((OperatorMode.OPERATED, operated))
        registry = ContextRegistry(_detecting_factory(FakeSource("a"), detector), mode_ttl=0)
        await registry.sync([ClusterContext("a")])
        assert not registry.get("a").operated  # type: ignore[union-attr]

        handle = await registry.refresh_mode("a")

        assert handle is not None and handle.mode == OperatorMode.OPERATED
        assert handle.source is operated
        assert registry.get("a") is handle

    async def test_operator_removed_later_falls_back_to_basic(self) -> None:
        basic = FakeSource("a")
        detector = _Detector((OperatorMode.BASIC, basic))

        async def factory(context: ClusterContext) -> ClusterHandle:
            return ClusterHandle(context=context, source=FakeSource("a"), mode=OperatorMode.OPERATED, detect=detector)

        registry = ContextRegistry(factory, mode_ttl=0)
        await registry.sync([ClusterContext("a")])
        handle = await registry.refresh_mode("a")
        assert handle is not None and not handle.operated
        assert handle.source is basic

    async def test_fresh_reading_is_not_repeated(self) -> None:
        detector = _Detector((OperatorMode.OPERATED, FakeSource("a")))
        registry = ContextRegistry(_detecting_factory(FakeSource("a"), detector), mode_ttl=300)
        await registry.sync([ClusterContext("a")])
        handle = await registry.refresh_mode("a")
        assert handle is not None and handle.mode == OperatorMode.BASIC
        assert detector.calls == 0

    async def test_failed_reading_keeps_previous_mode(self) -> None:
        source = FakeSource("a")
        detector = _Detector(ApiException(status=403, reason="Forbidden"))
        registry = ContextRegistry(_detecting_factory(source, detector), mode_ttl=0)
        await registry.sync([ClusterContext("a")])
        handle = await registry.refresh_mode("a")
        assert handle is not None and handle.mode == OperatorMode.BASIC
        assert handle.source is source
        assert detector.calls == 1

    async def test_fixed_mode_is_never_reread(self) -> None:
        registry = ContextRegistry(fake_factory({"a": FakeSource("a")}, operated={"a"}), mode_ttl=0)
        await registry.sync([ClusterContext("a")])
        handle = await registry.refresh_mode("a")
        assert handle is not None and handle.mode == OperatorMode.OPERATED

    async def test_unknown_context(self) -> None:
        registry = ContextRegistry(fake_factory({}), mode_ttl=0)
        assert await registry.refresh_mode("ghost") is None


# ---------------------------------------------------------------------------
# Default factory
# ---------------------------------------------------------------------------


class _StubApi:
    """Minimal ApiClusterSource stand-in for the default factory."""

    def __init__(self, context: ClusterContext, *modes: OperatorMode | Exception) -> None:
        self.context_name = context.name
        self.modes = list(modes)

    async def operator_mode(self, namespace: str, configmap: str) -> OperatorMode:
        outcome = self.modes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def find_pod(self, namespace: str, label_selector: str) -> str | None:
        return "kube9-operator-5d9f7"

    async def close(self) -> None:
        return None


def _patch_connect(monkeypatch: pytest.MonkeyPatch, *modes: OperatorMode | Exception) -> None:
    async def connect(context: ClusterContext, request_timeout: float = 5.0) -> _StubApi:
        return _StubApi(context, *modes)

    monkeypatch.setattr(registry_module.ApiClusterSource, "connect", connect)


class TestDefaultSourceFactory:
    async def test_operator_queries_use_the_contexts_kubeconfig(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_connect(monkeypatch)
        run = AsyncMock(return_value='{"events": []}')
        monkeypatch.setattr(operator_module, "run_command", run)
        config = KubePulseConfig(kubeconfig=KubeconfigConfig(path="/srv/kube/fleet.yaml", operated_contexts=["ops"]))
        factory = default_source_factory(config)

        handle = await factory(ClusterContext("ops", kubeconfig="/srv/kube/fleet.yaml"))
        await handle.source.query_events(EventFilterState())

        argv = run.await_args.args[0]
        assert argv[1:5] == ["--kubeconfig", "/srv/kube/fleet.yaml", "--context", "ops"]
        assert handle.detect is None

    async def test_failed_first_detection_is_basic_then_rereads(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _patch_connect(monkeypatch, ApiException(status=500, reason="Internal"), OperatorMode.OPERATED)
        registry = ContextRegistry(default_source_factory(KubePulseConfig()), mode_ttl=0)
        await registry.sync([ClusterContext("dev")])
        handle = registry.get("dev")
        assert handle is not None and handle.mode == OperatorMode.BASIC
        assert isinstance(handle.source, _StubApi)

        handle = await registry.refresh_mode("dev")

        assert handle is not None and handle.mode == OperatorMode.OPERATED
        assert isinstance(handle.source, OperatorClusterSource)
