"""Per-cluster API clients and their startup registry."""

from trivyui.cluster.client import ClusterClient, new_client, resolve_cluster_name
from trivyui.cluster.registry import ClusterClientRegistry

__all__ = ["ClusterClient", "ClusterClientRegistry", "new_client", "resolve_cluster_name"]
