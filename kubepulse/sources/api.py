"""Direct Kubernetes API source backed by kubernetes-asyncio.

Each context gets its own ``ApiClient`` built from a private ``Configuration``
so that contexts never share credentials or connection pools, and closing one
context's source leaves the others untouched.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from kubepulse.models.connectivity import ClusterContext, OperatorMode
from kubepulse.models.events import parse_timestamp
from kubepulse.sources.base import ClusterSource

_log = structlog.get_logger(component="sources.api")

# Operator status older than this is treated as degraded.
_STATUS_STALE_AFTER = timedelta(minutes=5)


class ApiClusterSource(ClusterSource):
    """Talks to one cluster through the Kubernetes REST API.

    Args:
        api_client:      A ``kubernetes_asyncio.client.ApiClient`` dedicated to
                         this context.
        context_name:    kubeconfig context name.
        request_timeout: Per-request socket timeout in seconds, or None.
    """

    def __init__(self, api_client: Any, context_name: str, request_timeout: float | None = None) -> None:
        self._api = api_client
        self._context_name = context_name
        self._request_timeout = request_timeout

    @classmethod
    async def connect(cls, context: ClusterContext, request_timeout: float | None = None) -> ApiClusterSource:
        """Build a source with a private client configuration for *context*."""
        configuration = k8s_client.Configuration()
        await k8s_config.load_kube_config(
            config_file=context.kubeconfig,
            context=context.name,
            client_configuration=configuration,
            persist_config=False,
        )
        _log.debug("api_client_configured", context=context.name, host=configuration.host)
        return cls(k8s_client.ApiClient(configuration=configuration), context.name, request_timeout)

    @property
    def context_name(self) -> str:
        return self._context_name

    @property
    def api_client(self) -> Any:
        return self._api

    def _kwargs(self) -> dict[str, Any]:
        return {"_request_timeout": self._request_timeout} if self._request_timeout else {}

    async def ping(self) -> None:
        await k8s_client.VersionApi(self._api).get_code(**self._kwargs())

    async def list_namespaces(self) -> list[str]:
        response = await k8s_client.CoreV1Api(self._api).list_namespace(**self._kwargs())
        return [item.metadata.name for item in response.items or [] if item.metadata and item.metadata.name]

    async def find_pod(self, namespace: str, label_selector: str) -> str | None:
        """Return the name of the first running pod matching *label_selector*."""
        response = await k8s_client.CoreV1Api(self._api).list_namespaced_pod(
            namespace,
            label_selector=label_selector,
            **self._kwargs(),
        )
        pods = [p for p in response.items or [] if p.metadata and p.metadata.name]
        running = [p for p in pods if p.status and p.status.phase == "Running"]
        chosen = (running or pods)[:1]
        return chosen[0].metadata.name if chosen else None

    async def operator_mode(self, namespace: str, configmap: str) -> OperatorMode:
        """Read the operator status ConfigMap and derive the operator mode.

        A missing ConfigMap means no operator (BASIC); any other API failure
        propagates to the caller.
        """
        try:
            cm = await k8s_client.CoreV1Api(self._api).read_namespaced_config_map(
                configmap,
                namespace,
                **self._kwargs(),
            )
        except ApiException as exc:
            if exc.status == 404:
                return OperatorMode.BASIC
            raise
        raw = (cm.data or {}).get("status") if cm is not None else None
        if not raw:
            return OperatorMode.BASIC
        try:
            status = json.loads(raw)
        except ValueError:
            _log.warning("operator_status_unparseable", context=self._context_name, raw=raw[:200])
            return OperatorMode.BASIC
        return operator_mode_from_status(status)

    async def close(self) -> None:
        await self._api.close()


def operator_mode_from_status(status: object, now: datetime | None = None) -> OperatorMode:
    """Map the operator's self-reported status document to an OperatorMode.

    Anything short of a fresh, healthy document whose mode matches its tier
    is DEGRADED.  Only a value that is not a document at all means BASIC.
    """
    if not isinstance(status, Mapping):
        return OperatorMode.BASIC
    now = now or datetime.now(tz=UTC)

    last_update = parse_timestamp(status.get("lastUpdate"))
    if last_update is None or now - last_update > _STATUS_STALE_AFTER:
        return OperatorMode.DEGRADED

    health = status.get("health")
    if health in ("degraded", "unhealthy"):
        return OperatorMode.DEGRADED
    healthy = health == "healthy"

    mode = status.get("mode")
    tier = status.get("tier")
    if mode == "enabled" and healthy and tier == "pro" and status.get("registered") is True:
        return OperatorMode.ENABLED
    if mode == "operated" and healthy and tier == "free":
        return OperatorMode.OPERATED
    return OperatorMode.DEGRADED
