"""Helpers for Kubernetes integration tests: contexts, status errors, watching, waiting, manifests, hosts and Docker node discovery."""

__version__ = "0.1.0"

__all__ = ["apierrors", "context", "watcher", "k0sutil", "hosts", "docker", "manifests"]