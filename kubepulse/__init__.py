"""kubepulse: multi-cluster connectivity and health monitoring for Kubernetes."""

__version__ = "0.1.0"
