"""Failure classification.

``classify`` maps any raw failure (kubernetes-asyncio ``ApiException``,
aiohttp transport errors, ``CommandError`` from a CLI subprocess, timeouts,
plain exceptions or even non-exception payloads) to exactly one
:class:`FailureKind`.  It is total and deterministic: it never raises, and the
same input always yields the same kind.

Rules are evaluated in priority order; the first match wins:

1. elapsed >= timeout, or the failure itself is a timeout   -> TIMEOUT
2. HTTP 401/403 or permission-denial text                    -> UNAUTHORIZED
3. HTTP 404 or not-found text                                -> NOT_FOUND
4. live object still carries finalizers (text as fallback)   -> FINALIZER_BLOCKED
5. HTTP 409 or conflict text                                 -> RESOURCE_CONFLICT
6. connection refused / DNS / no route                       -> NETWORK_UNREACHABLE
7. CLI binary missing                                        -> COMMAND_NOT_FOUND
8. anything else                                             -> UNKNOWN
"""

from __future__ import annotations

import errno
import json
import socket
from collections.abc import Iterator, Mapping

import aiohttp
import structlog

from kubepulse.models.errors import ClassifiedError, CommandError, FailureKind
from kubepulse.observability.logging import truncate

_log = structlog.get_logger(component="classify")

_MAX_CHAIN = 5
_DETAIL_LIMIT = 500

_TIMEOUT_TEXT = ("timeout", "deadline exceeded")
_UNAUTHORIZED_TEXT = (
    "forbidden",
    "unauthorized",
    "permission denied",
    "access denied",
    "not authorized",
    "authentication",
    "user cannot",
)
_NOT_FOUND_TEXT = ("notfound", "not found", "does not exist")
_MISSING_BINARY_TEXT = ("command not found", "executable file not found")
_FINALIZER_TEXT = ("finalizer",)
_CONFLICT_TEXT = ("conflict", "already exists", "object has been modified")
_NETWORK_TEXT = (
    "connection refused",
    "could not resolve",
    "no such host",
    "connection timed out",
    "unreachable",
    "dial tcp",
    "unable to connect",
    "no route to host",
    "name or service not known",
    "connection reset",
    "network error",
)
_NETWORK_ERRNOS = frozenset(
    {
        errno.ECONNREFUSED,
        errno.ECONNRESET,
        errno.ECONNABORTED,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
        errno.ENETDOWN,
        errno.EHOSTDOWN,
    }
)


def classify(
    raw: object,
    context_name: str,
    *,
    elapsed: float | None = None,
    timeout: float | None = None,
    live_object: object = None,
) -> ClassifiedError:
    """Classify *raw* into a :class:`ClassifiedError` for *context_name*.

    Args:
        raw:          The original failure.  Kept on the result for diagnostics.
        context_name: Cluster context the failure belongs to.
        elapsed:      Seconds the failed call ran, when known.
        timeout:      Deadline the call ran under, when known.
        live_object:  The object as re-read after a delete (dict or client
                      model).  Its ``metadata.finalizers`` is authoritative
                      for FINALIZER_BLOCKED; error text is only a fallback.
    """
    try:
        kind, status, text = _decide(raw, elapsed, timeout, live_object)
    except Exception as exc:  # noqa: BLE001
        # Total by contract: a malformed raw error is still a classifiable failure.
        kind, status, text = FailureKind.UNKNOWN, None, _safe_str(raw) or type(exc).__name__

    result = ClassifiedError(
        kind=kind,
        message=text or _fallback_message(kind),
        context_name=context_name,
        raw=raw,
        status_code=status,
        detail=truncate(f"{type(raw).__name__}: {text}", _DETAIL_LIMIT),
    )
    _log.info(
        "failure_classified",
        kind=str(kind),
        context=context_name,
        status_code=status,
        raw=truncate(text),
    )
    return result


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


def _decide(
    raw: object,
    elapsed: float | None,
    timeout: float | None,
    live_object: object,
) -> tuple[FailureKind, int | None, str]:
    chain = list(_chain(raw))
    status = next((s for s in map(_status_code, chain) if s is not None), None)
    text = _message(raw)
    lower = " ".join(_message(link) for link in chain).lower()

    if elapsed is not None and timeout is not None and elapsed >= timeout:
        return FailureKind.TIMEOUT, status, text or f"no response within {timeout:g}s"
    if status in (408, 504) or any(_is_timeout(link) for link in chain) or _has(lower, _TIMEOUT_TEXT):
        return FailureKind.TIMEOUT, status, text

    if status in (401, 403) or _has(lower, _UNAUTHORIZED_TEXT):
        return FailureKind.UNAUTHORIZED, status, text

    missing_binary = any(_is_missing_binary(link) for link in chain) or _has(lower, _MISSING_BINARY_TEXT)
    if status == 404 or (not missing_binary and _has(lower, _NOT_FOUND_TEXT)):
        return FailureKind.NOT_FOUND, status, text

    if _finalizers(live_object) or _has(lower, _FINALIZER_TEXT):
        return FailureKind.FINALIZER_BLOCKED, status, text

    if status == 409 or _has(lower, _CONFLICT_TEXT):
        return FailureKind.RESOURCE_CONFLICT, status, text

    if any(_is_network(link) for link in chain) or _has(lower, _NETWORK_TEXT):
        return FailureKind.NETWORK_UNREACHABLE, status, text

    if missing_binary:
        return FailureKind.COMMAND_NOT_FOUND, status, text

    return FailureKind.UNKNOWN, status, text


def _has(haystack: str, needles: tuple[str, ...]) -> bool:
    return any(needle in haystack for needle in needles)


def _chain(raw: object) -> Iterator[object]:
    """Yield *raw* followed by its explicit/implicit exception causes."""
    seen: set[int] = set()
    current: object = raw
    while current is not None and id(current) not in seen and len(seen) < _MAX_CHAIN:
        seen.add(id(current))
        yield current
        if not isinstance(current, BaseException):
            return
        current = current.__cause__ or current.__context__


def _status_code(raw: object) -> int | None:
    if isinstance(raw, Mapping):
        candidate = raw.get("code", raw.get("status"))
    else:
        candidate = getattr(raw, "status", None)
        if candidate is None:
            candidate = getattr(raw, "status_code", None)
    if isinstance(candidate, int) and not isinstance(candidate, bool) and 100 <= candidate <= 599:
        return candidate
    return None


def _message(raw: object) -> str:
    """Best human-readable text for *raw*: API body message, CLI stderr, str()."""
    if raw is None:
        return ""
    if isinstance(raw, CommandError):
        return (raw.stderr or raw.stdout).strip() or str(raw)
    if isinstance(raw, Mapping):
        return _safe_str(raw.get("message") or raw.get("reason") or raw)
    body = getattr(raw, "body", None)
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str) and body:
        try:
            decoded = json.loads(body)
        except ValueError:
            return body.strip()
        if isinstance(decoded, Mapping) and decoded.get("message"):
            return str(decoded["message"])
        return body.strip()
    text = _safe_str(raw)
    if not text and isinstance(raw, BaseException):
        reason = getattr(raw, "reason", None)
        return _safe_str(reason) or type(raw).__name__
    return text


def _safe_str(raw: object) -> str:
    try:
        return str(raw).strip()
    except Exception:  # noqa: BLE001
        return ""


def _is_timeout(raw: object) -> bool:
    if isinstance(raw, TimeoutError):
        return True
    return isinstance(raw, OSError) and raw.errno == errno.ETIMEDOUT


def _is_network(raw: object) -> bool:
    if isinstance(raw, ConnectionError | socket.gaierror | aiohttp.ClientConnectionError):
        return True
    return isinstance(raw, OSError) and raw.errno in _NETWORK_ERRNOS


def _is_missing_binary(raw: object) -> bool:
    if isinstance(raw, FileNotFoundError):
        return True
    if isinstance(raw, CommandError):
        return raw.returncode == 127
    return isinstance(raw, OSError) and raw.errno == errno.ENOENT


def _finalizers(live_object: object) -> list[str]:
    if live_object is None:
        return []
    if isinstance(live_object, Mapping):
        metadata = live_object.get("metadata") or {}
        finalizers = metadata.get("finalizers") if isinstance(metadata, Mapping) else None
    else:
        metadata = getattr(live_object, "metadata", None)
        finalizers = getattr(metadata, "finalizers", None)
    return [f for f in finalizers or [] if f]


def _fallback_message(kind: FailureKind) -> str:
    return f"operation failed ({kind})"
