"""Shared fixtures for trivy-ui integration tests.

Provides an in-memory ``FakeCluster`` that speaks the same async interface as
:class:`trivyui.cluster.client.ClusterClient`, plus pre-wired registries,
cache and reader, so integration tests can exercise full read and
invalidation pipelines without touching real Kubernetes clusters.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from trivyui.cache.report_cache import ReportCache
from trivyui.cluster.registry import ClusterClientRegistry
from trivyui.errors import ResourceNotFoundError, UpstreamUnavailableError
from trivyui.models.config import CacheConfig, ReaderConfig
from trivyui.models.reports import ReportKind
from trivyui.reader.report_reader import ReportReader
from trivyui.registry.crd_registry import CRDRegistry
from trivyui.reports.catalog import CLUSTER_COMPLIANCE, CONFIG_AUDIT, TRIVY_GROUP, VULNERABILITY

# ---------------------------------------------------------------------------
# Report object factory helpers
# ---------------------------------------------------------------------------


def make_report_obj(
    name: str,
    namespace: str = "default",
    kind: str = "VulnerabilityReport",
    critical: int = 0,
    high: int = 0,
    medium: int = 0,
    low: int = 0,
    container: str = "app",
    resource_version: str = "1",
) -> dict[str, Any]:
    """Create a raw Trivy report object with sensible defaults for testing."""
    metadata: dict[str, Any] = {
        "name": name,
        "uid": f"uid-{namespace}-{name}",
        "resourceVersion": resource_version,
        "creationTimestamp": "2024-05-01T10:00:00Z",
        "labels": {"trivy-operator.container.name": container},
    }
    if namespace:
        metadata["namespace"] = namespace
    return {
        "apiVersion": f"{TRIVY_GROUP}/v1alpha1",
        "kind": kind,
        "metadata": metadata,
        "report": {
            "updateTimestamp": "2024-05-01T10:05:00Z",
            "artifact": {"repository": "library/nginx", "tag": "1.25"},
            "scanner": {"name": "Trivy", "version": "0.50.0"},
            "summary": {
                "criticalCount": critical,
                "highCount": high,
                "mediumCount": medium,
                "lowCount": low,
            },
            "vulnerabilities": [{"vulnerabilityID": f"CVE-2024-{i:04d}"} for i in range(critical + high)],
        },
    }


def make_crd(kind: ReportKind, versions: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    return {
        "metadata": {"name": f"{kind.name}.{kind.group}"},
        "spec": {
            "group": kind.group,
            "scope": "Namespaced" if kind.namespaced else "Cluster",
            "names": {"plural": kind.name, "kind": kind.kind},
            "versions": versions or [{"name": kind.version, "served": True, "storage": True}],
        },
    }


# ---------------------------------------------------------------------------
# Fake cluster backend
# ---------------------------------------------------------------------------


class FakeCluster:
    """In-memory stand-in for ClusterClient.

    ``objects`` maps report plural name to raw objects.  ``installed`` lists
    the kinds this cluster serves; listing any other kind answers 404.
    """

    def __init__(
        self,
        name: str,
        objects: dict[str, list[dict[str, Any]]] | None = None,
        namespaces: list[str] | None = None,
        installed: list[ReportKind] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.host = f"https://{name}.example:6443"
        self.objects = objects or {}
        self.namespaces = namespaces if namespaces is not None else ["default"]
        self.installed = installed if installed is not None else [VULNERABILITY, CONFIG_AUDIT, CLUSTER_COMPLIANCE]
        self.delay = delay
        self.fail_with: Exception | None = None
        self.discovery_fails = False
        self.discovery_delay = 0.0
        self.calls: dict[str, int] = {}
        self.closed = False
        self.events: dict[str, asyncio.Queue[tuple[str, dict[str, Any]]]] = {}
        self.watch_started = asyncio.Event()

    def _count(self, op: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1

    async def _io(self, op: str) -> None:
        self._count(op)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def _served(self, kind: ReportKind) -> bool:
        return any(k.name == kind.name for k in self.installed)

    async def server_preferred_resources(self, groups: list[str]) -> list[dict[str, Any]]:
        self._count("server_preferred_resources")
        if self.discovery_delay:
            await asyncio.sleep(self.discovery_delay)
        if self.discovery_fails:
            raise UpstreamUnavailableError("discovery unavailable", status=503)
        return [
            {
                "groupVersion": f"{TRIVY_GROUP}/v1alpha1",
                "resources": [
                    {"name": k.name, "kind": k.kind, "namespaced": k.namespaced} for k in self.installed
                ]
                + [{"name": f"{k.name}/status", "kind": k.kind, "namespaced": k.namespaced} for k in self.installed],
            }
        ]

    async def list_crds(self) -> list[dict[str, Any]]:
        self._count("list_crds")
        if self.discovery_fails:
            raise UpstreamUnavailableError("crd list unavailable", status=503)
        return [make_crd(k) for k in self.installed]

    async def list_namespaces(self) -> list[str]:
        await self._io("list_namespaces")
        return sorted(self.namespaces)

    async def list_custom_objects(
        self,
        kind: ReportKind,
        namespace: str | None,
        limit: int,
        continue_token: str = "",
    ) -> tuple[list[dict[str, Any]], str]:
        await self._io("list_custom_objects")
        if not self._served(kind):
            raise ResourceNotFoundError(f"{kind.name} not served")
        items = [
            obj
            for obj in self.objects.get(kind.name, [])
            if not namespace or obj["metadata"].get("namespace") == namespace
        ]
        start = int(continue_token) if continue_token else 0
        page = items[start : start + limit]
        next_token = str(start + limit) if start + limit < len(items) else ""
        return page, next_token

    async def get_custom_object(self, kind: ReportKind, namespace: str | None, name: str) -> dict[str, Any]:
        await self._io("get_custom_object")
        if not self._served(kind):
            raise ResourceNotFoundError(f"{kind.name} not served")
        for obj in self.objects.get(kind.name, []):
            meta = obj["metadata"]
            if meta["name"] == name and meta.get("namespace", "") == (namespace or ""):
                return obj
        raise ResourceNotFoundError(f"{kind.name} {name} not found")

    async def latest_resource_version(self, kind: ReportKind) -> str:
        self._count("latest_resource_version")
        return "100"

    async def watch_custom_objects(
        self,
        kind: ReportKind,
        resource_version: str = "",
        timeout_seconds: int = 300,
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        self._count("watch_custom_objects")
        self.watch_started.set()
        queue = self._queue(kind.name)
        while True:
            yield await queue.get()

    def _queue(self, kind_name: str) -> asyncio.Queue[tuple[str, dict[str, Any]]]:
        return self.events.setdefault(kind_name, asyncio.Queue())

    async def emit(self, kind: ReportKind, event_type: str, obj: dict[str, Any]) -> None:
        """Deliver one watch event to the stream for *kind*."""
        await self._queue(kind.name).put((event_type, obj))

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def prod_cluster() -> FakeCluster:
    return FakeCluster(
        "prod",
        namespaces=["default", "payments"],
        objects={
            "vulnerabilityreports": [
                make_report_obj("replicaset-nginx-abc-nginx", "default", critical=2, container="nginx"),
                make_report_obj("replicaset-api-def-api", "default", high=3, container="api"),
                make_report_obj("replicaset-billing-123-worker", "payments", medium=1, container="worker"),
            ],
            "configauditreports": [
                make_report_obj("replicaset-nginx-abc", "default", kind="ConfigAuditReport", low=4),
            ],
            "clustercompliancereports": [
                make_report_obj("cis", "", kind="ClusterComplianceReport", high=1),
            ],
        },
    )


@pytest.fixture
def staging_cluster() -> FakeCluster:
    return FakeCluster(
        "staging",
        namespaces=["default"],
        installed=[VULNERABILITY],
        objects={
            "vulnerabilityreports": [make_report_obj("replicaset-web-1-web", "default", low=1, container="web")],
        },
    )


@pytest.fixture
def clusters(prod_cluster: FakeCluster, staging_cluster: FakeCluster) -> ClusterClientRegistry:
    registry = ClusterClientRegistry()
    registry.set(prod_cluster.name, prod_cluster)  # type: ignore[arg-type]
    registry.set(staging_cluster.name, staging_cluster)  # type: ignore[arg-type]
    return registry


@pytest.fixture
def cache() -> ReportCache:
    return ReportCache(default_ttl=300)


@pytest.fixture
def crd_registry() -> CRDRegistry:
    return CRDRegistry(refresh_ttl=300)


@pytest.fixture
def reader(clusters: ClusterClientRegistry, crd_registry: CRDRegistry, cache: ReportCache) -> ReportReader:
    return ReportReader(
        clusters=clusters,
        registry=crd_registry,
        cache=cache,
        reader_config=ReaderConfig(request_timeout_seconds=2.0, page_limit=100),
        cache_config=CacheConfig(namespace_ttl_seconds=600),
    )
