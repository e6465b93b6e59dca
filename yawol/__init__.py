"""Reconciliation logic for yawol load balancers behind Kubernetes services."""

__version__ = "0.1.0"

__all__ = ["api", "client", "config", "control", "infrastructure", "nodes", "service"]