"""Cluster name -> client registry and startup bootstrap."""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, ItemsView
from pathlib import Path

from trivyui.cluster.client import ClusterClient, default_kubeconfig_path, new_client
from trivyui.errors import KubeconfigError, NoClustersError
from trivyui.models.config import ClusterSourceConfig
from trivyui.observability.logging import get_logger
from trivyui.observability.metrics import cluster_clients

_log = get_logger("cluster_registry")

ClientFactory = Callable[..., Awaitable[ClusterClient]]


class ClusterClientRegistry:
    """Holds one :class:`ClusterClient` per cluster identity.

    Populated at startup and read-only afterwards.  Registering a name that
    already exists replaces the earlier client.
    """

    def __init__(self) -> None:
        self._clients: dict[str, ClusterClient] = {}

    def get(self, name: str) -> ClusterClient | None:
        return self._clients.get(name)

    def set(self, name: str, cluster_client: ClusterClient) -> ClusterClient | None:
        """Register *cluster_client* under *name*; return the client it replaced."""
        previous = self._clients.get(name)
        self._clients[name] = cluster_client
        return previous

    def names(self) -> list[str]:
        return sorted(self._clients)

    def items(self) -> ItemsView[str, ClusterClient]:
        return self._clients.items()

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, name: object) -> bool:
        return name in self._clients

    async def close(self) -> None:
        for name, cluster_client in list(self._clients.items()):
            try:
                await cluster_client.close()
            except Exception as exc:
                _log.warning("cluster_client_close_failed", cluster=name, error=str(exc))
        self._clients.clear()
        cluster_clients.set(0)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def _register(self, cluster_client: ClusterClient, source: str) -> None:
        previous = self.set(cluster_client.name, cluster_client)
        if previous is not None:
            _log.warning(
                "cluster_identity_overwritten",
                cluster=cluster_client.name,
                source=source,
                previous_host=previous.host,
            )
        _log.info("cluster_registered", cluster=cluster_client.name, source=source, host=cluster_client.host)

    @classmethod
    async def bootstrap(
        cls,
        sources: ClusterSourceConfig,
        factory: ClientFactory = new_client,
    ) -> ClusterClientRegistry:
        """Build clients from every configured source.

        Sources in order: each regular, non-hidden file in the kubeconfig
        directory; in-cluster credentials; the default kubeconfig.  A source
        that fails is logged and skipped.

        Raises:
            NoClustersError: no source produced a client.
        """
        registry = cls()

        for path in _kubeconfig_files(sources.kubeconfig_dir):
            try:
                cluster_client = await factory(str(path))
            except KubeconfigError as exc:
                _log.warning("kubeconfig_skipped", source=str(path), error=str(exc))
                continue
            registry._register(cluster_client, str(path))

        if sources.in_cluster:
            try:
                cluster_client = await factory(None, in_cluster=True)
            except KubeconfigError as exc:
                _log.warning("incluster_config_skipped", error=str(exc))
            else:
                registry._register(cluster_client, "incluster")

        default_path = default_kubeconfig_path(sources.default_kubeconfig)
        if os.path.isfile(default_path):
            try:
                cluster_client = await factory(default_path)
            except KubeconfigError as exc:
                _log.warning("kubeconfig_skipped", source=default_path, error=str(exc))
            else:
                registry._register(cluster_client, default_path)

        if not registry:
            raise NoClustersError(
                f"No cluster clients could be created (kubeconfig dir '{sources.kubeconfig_dir}', "
                f"in-cluster={sources.in_cluster}, default kubeconfig '{default_path}')"
            )

        cluster_clients.set(len(registry))
        _log.info("cluster_registry_ready", clusters=registry.names())
        return registry


def _kubeconfig_files(directory: str) -> list[Path]:
    root = Path(directory)
    if not root.is_dir():
        _log.debug("kubeconfig_dir_missing", path=directory)
        return []
    try:
        entries = sorted(root.iterdir())
    except OSError as exc:
        _log.warning("kubeconfig_dir_unreadable", path=directory, error=str(exc))
        return []
    return [entry for entry in entries if not entry.name.startswith(".") and entry.is_file()]
