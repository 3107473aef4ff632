"""Per-cluster Kubernetes API clients.

A :class:`ClusterClient` bundles one kubernetes-asyncio ``ApiClient`` with the
typed (CoreV1, ApiextensionsV1) and dynamic (CustomObjects) interfaces built
on it.  Construction never talks to the API server; all network errors show
up on first use and are translated into :mod:`trivyui.errors` types.
"""

from __future__ import annotations

import os
import re
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

import aiohttp
import yaml
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.exceptions import ApiException
from kubernetes_asyncio.config.config_exception import ConfigException

from trivyui.errors import KubeconfigError, ResourceNotFoundError, UpstreamUnavailableError
from trivyui.models.reports import ReportKind
from trivyui.observability.logging import get_logger

_log = get_logger("cluster_client")

IN_CLUSTER_NAME = "incluster"
DEFAULT_NAME = "default"

_EKS_ARN = re.compile(r"^arn:[^:]+:eks:[^:]*:[^:]*:cluster/(?P<name>.+)$")
_SEGMENT_SPLIT = re.compile(r"[/:]")


def resolve_cluster_name(kubeconfig: Mapping[str, Any] | None, in_cluster: bool) -> str:
    """Derive a stable, human-readable identity for a cluster.

    Rules, first match wins:

    1. in-cluster credentials with no kubeconfig -> ``"incluster"``
    2. an EKS context ARN -> the trailing cluster name
    3. a context containing ``/`` or ``:`` -> its last segment
    4. the raw context name, or the first declared cluster when no
       context is set
    5. ``"default"``
    """
    if kubeconfig is None:
        return IN_CLUSTER_NAME if in_cluster else DEFAULT_NAME

    context = kubeconfig.get("current-context")
    if isinstance(context, str) and context:
        match = _EKS_ARN.match(context)
        if match:
            return match.group("name")
        if "/" in context or ":" in context:
            last = _SEGMENT_SPLIT.split(context)[-1]
            if last:
                return last
        return context

    clusters = kubeconfig.get("clusters")
    if isinstance(clusters, list) and clusters:
        first = clusters[0]
        if isinstance(first, Mapping):
            name = first.get("name")
            if isinstance(name, str) and name:
                return name

    return DEFAULT_NAME


def _upstream(cluster: str, action: str, exc: Exception) -> Exception:
    """Map a kubernetes-asyncio or transport failure onto the error taxonomy."""
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return ResourceNotFoundError(f"{action} on cluster '{cluster}': not found")
        return UpstreamUnavailableError(
            f"{action} on cluster '{cluster}' failed: {exc.status} {exc.reason}",
            status=exc.status,
        )
    return UpstreamUnavailableError(f"{action} on cluster '{cluster}' failed: {exc}")


class ClusterClient:
    """API access for one cluster."""

    def __init__(self, name: str, api_client: client.ApiClient, host: str = "") -> None:
        self.name = name
        self.api_client = api_client
        self.host = host
        self.core = client.CoreV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)
        self.extensions = client.ApiextensionsV1Api(api_client)
        self.apis = client.ApisApi(api_client)

    def __repr__(self) -> str:
        return f"ClusterClient(name={self.name!r}, host={self.host!r})"

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def server_preferred_resources(self, groups: Sequence[str]) -> list[dict[str, Any]]:
        """Resource lists for the preferred version of each named API group."""
        wanted = set(groups)
        try:
            group_list = await self.apis.get_api_versions()
            result: list[dict[str, Any]] = []
            for group in group_list.groups or []:
                if group.name not in wanted or group.preferred_version is None:
                    continue
                resources = await self.custom.get_api_resources(group.name, group.preferred_version.version)
                result.append(self.api_client.sanitize_for_serialization(resources))
            return result
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, "API resource discovery", exc) from exc

    async def list_crds(self) -> list[dict[str, Any]]:
        try:
            crds = await self.extensions.list_custom_resource_definition()
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, "CRD list", exc) from exc
        return [self.api_client.sanitize_for_serialization(crd) for crd in crds.items or []]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_namespaces(self) -> list[str]:
        try:
            namespaces = await self.core.list_namespace()
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, "namespace list", exc) from exc
        return sorted(ns.metadata.name for ns in namespaces.items or [] if ns.metadata and ns.metadata.name)

    async def list_custom_objects(
        self,
        kind: ReportKind,
        namespace: str | None,
        limit: int,
        continue_token: str = "",
    ) -> tuple[list[dict[str, Any]], str]:
        """One page of report objects and the continue token for the next."""
        kwargs: dict[str, Any] = {"limit": limit}
        if continue_token:
            kwargs["_continue"] = continue_token
        try:
            if kind.namespaced and namespace:
                body = await self.custom.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.name, **kwargs
                )
            else:
                body = await self.custom.list_cluster_custom_object(kind.group, kind.version, kind.name, **kwargs)
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, f"list {kind.name}", exc) from exc
        items = list(body.get("items") or [])
        next_token = str((body.get("metadata") or {}).get("continue") or "")
        return items, next_token

    async def get_custom_object(self, kind: ReportKind, namespace: str | None, name: str) -> dict[str, Any]:
        try:
            if kind.namespaced:
                return await self.custom.get_namespaced_custom_object(
                    kind.group, kind.version, namespace or "", kind.name, name
                )
            return await self.custom.get_cluster_custom_object(kind.group, kind.version, kind.name, name)
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, f"get {kind.name}/{name}", exc) from exc

    async def latest_resource_version(self, kind: ReportKind) -> str:
        """Collection resourceVersion to start a watch from without replaying existing objects."""
        try:
            body = await self.custom.list_cluster_custom_object(kind.group, kind.version, kind.name, limit=1)
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, f"list {kind.name}", exc) from exc
        return str((body.get("metadata") or {}).get("resourceVersion") or "")

    async def watch_custom_objects(
        self,
        kind: ReportKind,
        resource_version: str = "",
        timeout_seconds: int = 300,
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """Yield ``(event_type, object)`` pairs across all namespaces.

        The stream ends when the server closes it after *timeout_seconds*;
        callers reconnect with the last resource version they saw.
        """
        kwargs: dict[str, Any] = {"timeout_seconds": timeout_seconds}
        if resource_version:
            kwargs["resource_version"] = resource_version
        try:
            async with watch.Watch() as stream:
                async for event in stream.stream(
                    self.custom.list_cluster_custom_object,
                    kind.group,
                    kind.version,
                    kind.name,
                    **kwargs,
                ):
                    obj = event.get("object")
                    yield str(event.get("type", "")), obj if isinstance(obj, dict) else {}
        except (ApiException, aiohttp.ClientError, OSError) as exc:
            raise _upstream(self.name, f"watch {kind.name}", exc) from exc

    async def close(self) -> None:
        await self.api_client.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def _read_kubeconfig(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as fh:
            parsed = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        raise KubeconfigError(path, exc) from exc
    if not isinstance(parsed, dict):
        raise KubeconfigError(path, "not a kubeconfig mapping")
    return parsed


async def new_client(kubeconfig_path: str | None, *, in_cluster: bool | None = None) -> ClusterClient:
    """Build a :class:`ClusterClient` from a kubeconfig file or the pod's service account.

    Passing ``None`` as *kubeconfig_path* selects in-cluster credentials.
    No request is sent to the API server.

    Raises:
        KubeconfigError: the source is unreadable or incomplete.
    """
    configuration = client.Configuration()
    if kubeconfig_path is None:
        source = IN_CLUSTER_NAME
        try:
            # load_incluster_config() is synchronous in kubernetes-asyncio
            config.load_incluster_config(client_configuration=configuration)
        except ConfigException as exc:
            raise KubeconfigError(source, exc) from exc
        name = resolve_cluster_name(None, True if in_cluster is None else in_cluster)
    else:
        source = kubeconfig_path
        parsed = _read_kubeconfig(kubeconfig_path)
        try:
            await config.load_kube_config(
                config_file=kubeconfig_path,
                client_configuration=configuration,
                persist_config=False,
            )
        except (ConfigException, OSError, ValueError, KeyError, TypeError) as exc:
            raise KubeconfigError(source, exc) from exc
        name = resolve_cluster_name(parsed, bool(in_cluster))

    api_client = client.ApiClient(configuration=configuration)
    _log.debug("cluster_client_created", cluster=name, source=source, host=configuration.host)
    return ClusterClient(name=name, api_client=api_client, host=configuration.host or "")


def default_kubeconfig_path(configured: str = "") -> str:
    """``$KUBECONFIG`` (first entry) or ``~/.kube/config``."""
    if configured:
        return configured.split(os.pathsep)[0]
    return os.path.expanduser("~/.kube/config")
