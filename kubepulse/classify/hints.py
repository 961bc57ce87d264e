"""Short, category-specific remediation hints a host may show next to a failure."""

from __future__ import annotations

from kubepulse.models.errors import FailureKind

_HINTS: dict[FailureKind, str] = {
    FailureKind.TIMEOUT: "The cluster did not answer in time. It may be overloaded or behind a slow link.",
    FailureKind.UNAUTHORIZED: "Check your credentials and RBAC bindings (`kubectl auth can-i`).",
    FailureKind.NOT_FOUND: "The resource may have been deleted. Refresh to sync the current state.",
    FailureKind.FINALIZER_BLOCKED: "Deletion is waiting on finalizers. Inspect metadata.finalizers or force delete.",
    FailureKind.RESOURCE_CONFLICT: "The object changed since it was read. Reload it and retry the change.",
    FailureKind.NETWORK_UNREACHABLE: "Cannot reach the API server. Verify the endpoint in kubeconfig and your network.",
    FailureKind.COMMAND_NOT_FOUND: "kubectl is not installed or not on PATH.",
    FailureKind.UNKNOWN: "Unexpected failure. See the logs for the original error.",
}


def remediation_hint(kind: FailureKind) -> str:
    return _HINTS[kind]
