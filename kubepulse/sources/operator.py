"""Operator-backed source: events come from the in-cluster operator's CLI.

The operator keeps an event history that the API alone does not offer.  It is
queried by exec'ing its CLI inside the operator pod through ``kubectl``:

    kubectl [--kubeconfig PATH] --context CTX exec -n kube9-system POD -c kube9-operator -- \\
        kube9-operator query events --namespace=... --limit=500 --format=json

Ping and namespace listing are delegated to a wrapped ``ApiClusterSource``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import structlog

from kubepulse.models.config import OperatorConfig
from kubepulse.models.errors import CommandError
from kubepulse.models.events import EventFilterState
from kubepulse.observability.logging import truncate
from kubepulse.sources.api import ApiClusterSource
from kubepulse.sources.base import ClusterSource

_log = structlog.get_logger(component="sources.operator")

OPERATOR_CLI = "kube9-operator"
QUERY_LIMIT = 500


class OperatorClusterSource(ClusterSource):
    """ClusterSource for clusters running the companion operator."""

    server_side_filters = frozenset({"namespace", "severity", "since", "resource_kind"})

    def __init__(
        self,
        api: ApiClusterSource,
        operator: OperatorConfig | None = None,
        kubeconfig: str | None = None,
    ) -> None:
        self._api = api
        self._operator = operator or OperatorConfig()
        self._kubeconfig = kubeconfig
        self._pod: str | None = None

    @property
    def context_name(self) -> str:
        return self._api.context_name

    async def ping(self) -> None:
        await self._api.ping()

    async def list_namespaces(self) -> list[str]:
        return await self._api.list_namespaces()

    async def query_events(self, filters: EventFilterState) -> list[Mapping[str, Any]]:
        pod = await self._operator_pod()
        argv = [
            self._operator.kubectl_binary,
            *(["--kubeconfig", self._kubeconfig] if self._kubeconfig else []),
            "--context",
            self.context_name,
            "exec",
            "-n",
            self._operator.namespace,
            pod,
            "-c",
            self._operator.container,
            "--",
            *build_query_args(filters),
        ]
        try:
            stdout = await run_command(argv)
        except CommandError:
            # The pod may have been rescheduled; rediscover on the next query.
            self._pod = None
            raise
        return parse_events(stdout)

    def pushed_down(self, filters: EventFilterState) -> frozenset[str]:
        if len(filters.severities) > 1:
            return self.server_side_filters - {"severity"}
        return self.server_side_filters

    async def _operator_pod(self) -> str:
        if self._pod is None:
            pod = await self._api.find_pod(self._operator.namespace, self._operator.label_selector)
            if pod is None:
                raise LookupError(
                    f"{OPERATOR_CLI} pod not found in namespace {self._operator.namespace} "
                    f"(selector {self._operator.label_selector})"
                )
            self._pod = pod
            _log.debug("operator_pod_discovered", context=self.context_name, pod=pod)
        return self._pod

    async def close(self) -> None:
        await self._api.close()


def build_query_args(filters: EventFilterState, limit: int = QUERY_LIMIT) -> list[str]:
    """Translate *filters* into operator CLI arguments.

    Severity is only pushed down when exactly one type is selected; the CLI
    accepts a single ``--type``.  Search text is never pushed down.
    """
    args = [OPERATOR_CLI, "query", "events"]
    if filters.namespace:
        args.append(f"--namespace={filters.namespace}")
    if len(filters.severities) == 1:
        (severity,) = filters.severities
        args.append(f"--type={severity}")
    if filters.since is not None:
        args.append(f"--since={format_duration(filters.since)}")
    if filters.resource_kind:
        args.append(f"--resource-type={filters.resource_kind}")
    args.append(f"--limit={limit}")
    args.append("--format=json")
    return args


def format_duration(value: timedelta) -> str:
    """Render *value* in the largest whole unit: ``24h``, ``90m``, ``45s``."""
    seconds = max(int(value.total_seconds()), 1)
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def parse_events(stdout: str) -> list[Mapping[str, Any]]:
    """Extract the ``events`` array from the CLI's JSON document."""
    try:
        data = json.loads(stdout or "{}")
    except ValueError as exc:
        raise ValueError(f"failed to parse event response: {exc}") from exc
    events = data.get("events") if isinstance(data, Mapping) else None
    if not events:
        return []
    return [e for e in events if isinstance(e, Mapping)]


async def run_command(argv: list[str]) -> str:
    """Run *argv* and return stdout; a non-zero exit raises ``CommandError``.

    A missing binary surfaces as ``FileNotFoundError`` from the spawn.  If the
    awaiting task is cancelled the child process is killed.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out_b, err_b = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
        raise
    out = out_b.decode("utf-8", errors="ignore") if out_b else ""
    err = err_b.decode("utf-8", errors="ignore") if err_b else ""
    if proc.returncode:
        _log.warning("command_failed", argv=argv[:4], returncode=proc.returncode, stderr=truncate(err))
        raise CommandError(argv, proc.returncode, out, err)
    return out
