"""Configuration loading from environment variables."""

from __future__ import annotations

import os

from kubepulse.models.config import (
    KubeconfigConfig,
    KubePulseConfig,
    LogConfig,
    OperatorConfig,
    ProbeConfig,
    RefreshConfig,
    StorageConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEPULSE_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None, max_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_list(key: str) -> list[str]:
    return [item.strip() for item in _env(key, "").split(",") if item.strip()]


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _default_data_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".kubepulse")


def load_config() -> KubePulseConfig:
    """Load configuration from KUBEPULSE_* environment variables."""
    return KubePulseConfig(
        kubeconfig=KubeconfigConfig(
            path=_env("KUBECONFIG_PATH", ""),
            operated_contexts=_env_list("OPERATED_CONTEXTS"),
        ),
        probe=ProbeConfig(
            timeout_seconds=_env_float("PROBE_TIMEOUT", 5.0, min_val=1.0, max_val=60.0),
        ),
        refresh=RefreshConfig(
            interval_seconds=_env_float("REFRESH_INTERVAL", 30.0, min_val=5.0, max_val=3600.0),
            event_limit=_env_int("EVENT_LIMIT", 500, min_val=1, max_val=500),
        ),
        operator=OperatorConfig(
            namespace=_env("OPERATOR_NAMESPACE", "kube9-system"),
            label_selector=_env("OPERATOR_LABEL", "app=kube9-operator"),
            container=_env("OPERATOR_CONTAINER", "kube9-operator"),
            kubectl_binary=_env("KUBECTL_BINARY", "kubectl"),
            status_ttl_seconds=_env_float("OPERATOR_STATUS_TTL", 300.0, min_val=0.0, max_val=3600.0),
        ),
        storage=StorageConfig(
            data_dir=_env("DATA_DIR", "") or _default_data_dir(),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
