"""Parse, patch and compare multi-document Kubernetes YAML manifests."""

__version__ = "0.1.0"
__all__ = ["tpath", "objects", "patch"]