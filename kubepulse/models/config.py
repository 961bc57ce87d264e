"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class KubeconfigConfig:
    """Where cluster contexts are loaded from."""

    path: str = ""  # empty means the kubernetes client default (~/.kube/config or $KUBECONFIG)
    operated_contexts: list[str] = field(default_factory=list)


@dataclass
class ProbeConfig:
    """Connectivity probe configuration."""

    timeout_seconds: float = 5.0


@dataclass
class RefreshConfig:
    """Auto-refresh configuration."""

    interval_seconds: float = 30.0
    event_limit: int = 500


@dataclass
class OperatorConfig:
    """In-cluster companion operator location and CLI bridge."""

    namespace: str = "kube9-system"
    label_selector: str = "app=kube9-operator"
    container: str = "kube9-operator"
    status_configmap: str = "kube9-operator-status"
    kubectl_binary: str = "kubectl"
    status_ttl_seconds: float = 300.0


@dataclass
class StorageConfig:
    """Durable preference storage."""

    data_dir: str = ""


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubePulseConfig:
    """Top-level kubepulse configuration."""

    kubeconfig: KubeconfigConfig = field(default_factory=KubeconfigConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    operator: OperatorConfig = field(default_factory=OperatorConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)
