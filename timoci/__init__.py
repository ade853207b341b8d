"""Distribute content as OCI artifacts and keep Kubernetes instance inventories."""

__version__ = "0.1.0"