"""Failure taxonomy shared by every kubepulse component."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class FailureKind(StrEnum):
    """Closed set of failure categories that may cross the kubepulse boundary."""

    TIMEOUT = "timeout"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    FINALIZER_BLOCKED = "finalizer_blocked"
    RESOURCE_CONFLICT = "resource_conflict"
    NETWORK_UNREACHABLE = "network_unreachable"
    COMMAND_NOT_FOUND = "command_not_found"
    UNKNOWN = "unknown"


# Transient kinds; these are retried only on the next scheduled refresh.
RETRYABLE_KINDS = frozenset({FailureKind.TIMEOUT, FailureKind.NETWORK_UNREACHABLE})


@dataclass(frozen=True)
class ClassifiedError:
    """A raw transport/API/CLI failure normalised to exactly one FailureKind.

    ``raw`` keeps the original exception (or payload) for diagnostics and is
    excluded from equality so two classifications of the same failure compare
    equal regardless of object identity.
    """

    kind: FailureKind
    message: str
    context_name: str
    raw: object = field(default=None, compare=False, repr=False)
    status_code: int | None = None
    detail: str = ""

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        return f"{self.kind} [{self.context_name}]: {self.message}"


class CommandError(Exception):
    """A CLI subprocess exited non-zero.

    Carries the exit code and both output streams so the classifier can inspect
    stderr the same way it inspects an API error body.
    """

    def __init__(self, argv: list[str], returncode: int, stdout: str = "", stderr: str = "") -> None:
        self.argv = argv
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = (stderr or stdout).strip() or f"exit status {returncode}"
        super().__init__(f"{argv[0] if argv else 'command'} failed: {detail}")


class UnsupportedOperation(Exception):
    """The cluster source does not offer the requested capability."""
