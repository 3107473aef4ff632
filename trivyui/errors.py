"""Error taxonomy for the report-access subsystem.

Configuration and discovery errors are resolved inside their components
(skip-and-continue, fallback strategy, lazy retry).  Only errors that make a
specific caller request unanswerable reach the REST layer, where each class
maps to one HTTP status.
"""

from __future__ import annotations


class TrivyUIError(Exception):
    """Base class for all trivy-ui errors."""


class KubeconfigError(TrivyUIError):
    """A kubeconfig source could not be read or parsed."""

    def __init__(self, source: str, cause: Exception | str) -> None:
        super().__init__(f"Invalid kubeconfig '{source}': {cause}")
        self.source = source


class NoClustersError(TrivyUIError):
    """No cluster client could be constructed from any source."""


class DiscoveryError(TrivyUIError):
    """Every CRD discovery strategy failed for a connection."""


class ResourceNotFoundError(TrivyUIError):
    """The Kubernetes API answered 404 for a resource or resource type."""


class ReportNotFoundError(ResourceNotFoundError):
    """A single report looked up by exact name does not exist."""

    def __init__(self, kind: str, cluster: str, namespace: str, name: str) -> None:
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} '{location}' not found in cluster '{cluster}'")
        self.kind = kind
        self.cluster = cluster
        self.namespace = namespace
        self.name = name


class ClusterNotFoundError(TrivyUIError):
    """The requested cluster name is not registered."""

    def __init__(self, cluster: str) -> None:
        super().__init__(f"Cluster '{cluster}' is not registered")
        self.cluster = cluster


class BadRequestError(TrivyUIError):
    """The request shape is invalid (unknown kind, namespace/scope mismatch)."""


class UpstreamUnavailableError(TrivyUIError):
    """The Kubernetes API could not be reached or refused the request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CacheSnapshotError(TrivyUIError):
    """A cache snapshot file exists but cannot be decoded."""
