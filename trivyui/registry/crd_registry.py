"""CRD registry: which Trivy report kinds a cluster actually serves.

Two discovery strategies are tried in order:

1. ``APIResourceDiscovery`` reads the server's preferred resources for the
   Trivy API group (cheap, needs only discovery RBAC).
2. ``CRDListDiscovery`` lists CustomResourceDefinitions and derives kinds from
   their specs (works when aggregated discovery is broken or filtered).

The registry holds one immutable :class:`CRDSnapshot`.  Readers never take a
lock; a successful discovery swaps the reference.  Discovery is serialised
per connection, so concurrent stale readers of one cluster trigger one API
round-trip and a slow cluster never holds up discovery through another.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol

from trivyui.errors import DiscoveryError
from trivyui.models.reports import ReportKind
from trivyui.observability.logging import get_logger
from trivyui.observability.metrics import crd_discovery_total, report_kinds_discovered
from trivyui.reports.catalog import DEFAULT_API_VERSION, TRIVY_GROUP
from trivyui.reports.documents import nested_get, nested_str

_log = get_logger("crd_registry")

DEFAULT_REFRESH_TTL = 300.0
# Retry interval for a discovery that succeeded but found no report kinds.
EMPTY_RETRY_INTERVAL = 30.0


class DiscoveryConnection(Protocol):
    """The slice of a cluster client that discovery needs."""

    @property
    def name(self) -> str: ...

    async def server_preferred_resources(self, groups: Sequence[str]) -> list[dict[str, Any]]: ...

    async def list_crds(self) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class CRDSnapshot:
    """Immutable result of one successful discovery."""

    reports: tuple[ReportKind, ...] = ()
    by_name: Mapping[str, ReportKind] = field(default_factory=lambda: MappingProxyType({}))
    last_refresh: float | None = None

    @classmethod
    def build(cls, reports: Sequence[ReportKind], refreshed_at: float) -> CRDSnapshot:
        by_name: dict[str, ReportKind] = {}
        unique: list[ReportKind] = []
        for kind in reports:
            # A plural name served in more than one version keeps the first.
            if kind.name in by_name:
                continue
            by_name[kind.name] = kind
            unique.append(kind)
        return cls(
            reports=tuple(unique),
            by_name=MappingProxyType(by_name),
            last_refresh=refreshed_at,
        )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class APIResourceDiscovery:
    """Derive report kinds from the server's preferred API resources."""

    name = "api_resources"

    async def discover(self, connection: DiscoveryConnection) -> list[ReportKind]:
        resource_lists = await connection.server_preferred_resources([TRIVY_GROUP])
        prefix = f"{TRIVY_GROUP}/"
        kinds: list[ReportKind] = []
        for resource_list in resource_lists:
            group_version = str(resource_list.get("groupVersion", ""))
            if not group_version.startswith(prefix) or group_version.count("/") != 1:
                continue
            for resource in resource_list.get("resources") or []:
                name = str(resource.get("name", ""))
                # Skip subresources such as "vulnerabilityreports/status".
                if not name or "/" in name:
                    continue
                kind = str(resource.get("kind", ""))
                kinds.append(
                    ReportKind(
                        name=name,
                        short_name=kind.lower(),
                        api_version=group_version,
                        namespaced=bool(resource.get("namespaced", False)),
                        kind=kind,
                    )
                )
        return kinds


class CRDListDiscovery:
    """Derive report kinds from CustomResourceDefinition objects."""

    name = "crd_list"

    async def discover(self, connection: DiscoveryConnection) -> list[ReportKind]:
        crds = await connection.list_crds()
        kinds: list[ReportKind] = []
        for crd in crds:
            if nested_str(crd, "spec", "group") != TRIVY_GROUP:
                continue
            plural = nested_str(crd, "spec", "names", "plural")
            if not plural:
                continue
            kind = nested_str(crd, "spec", "names", "kind")
            kinds.append(
                ReportKind(
                    name=plural,
                    short_name=kind.lower(),
                    api_version=f"{TRIVY_GROUP}/{_pick_version(crd)}",
                    namespaced=nested_str(crd, "spec", "scope") == "Namespaced",
                    kind=kind,
                )
            )
        return kinds


def _pick_version(crd: Mapping[str, Any]) -> str:
    """First served+storage version, else the first declared, else the default."""
    versions = nested_get(crd, "spec", "versions", default=[]) or []
    for version in versions:
        if version.get("served") and version.get("storage") and version.get("name"):
            return str(version["name"])
    for version in versions:
        if version.get("name"):
            return str(version["name"])
    return DEFAULT_API_VERSION


class DiscoveryStrategy(Protocol):
    name: str

    async def discover(self, connection: DiscoveryConnection) -> list[ReportKind]: ...


DEFAULT_STRATEGIES: tuple[DiscoveryStrategy, ...] = (APIResourceDiscovery(), CRDListDiscovery())


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class CRDRegistry:
    """TTL-refreshed snapshot of discovered report kinds."""

    def __init__(
        self,
        refresh_ttl: float = DEFAULT_REFRESH_TTL,
        strategies: Sequence[DiscoveryStrategy] = DEFAULT_STRATEGIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._refresh_ttl = refresh_ttl
        self._strategies = tuple(strategies)
        self._clock = clock
        self._snapshot = CRDSnapshot()
        # One discovery in flight per connection name.
        self._inflight: dict[str, asyncio.Future[CRDSnapshot]] = {}

    @property
    def snapshot(self) -> CRDSnapshot:
        return self._snapshot

    @property
    def last_refresh(self) -> float | None:
        return self._snapshot.last_refresh

    @property
    def is_empty(self) -> bool:
        return not self._snapshot.reports

    def get_all_reports(self) -> list[ReportKind]:
        return list(self._snapshot.reports)

    def get_report_by_name(self, name: str) -> ReportKind | None:
        return self._snapshot.by_name.get(name)

    def needs_refresh(self) -> bool:
        """Stale after the TTL; an empty snapshot is retried sooner."""
        snapshot = self._snapshot
        if snapshot.last_refresh is None:
            return True
        ttl = self._refresh_ttl if snapshot.reports else min(self._refresh_ttl, EMPTY_RETRY_INTERVAL)
        return self._clock() - snapshot.last_refresh > ttl

    async def discover_crds(self, connection: DiscoveryConnection) -> CRDSnapshot:
        """Run the strategies in order and install the first successful result.

        Raises:
            DiscoveryError: every strategy failed; the previous snapshot is kept.
        """
        failures: list[str] = []
        for strategy in self._strategies:
            try:
                kinds = await strategy.discover(connection)
            except Exception as exc:
                crd_discovery_total.labels(strategy=strategy.name, outcome="error").inc()
                _log.warning(
                    "crd_discovery_strategy_failed",
                    cluster=connection.name,
                    strategy=strategy.name,
                    error=str(exc),
                )
                failures.append(f"{strategy.name}: {exc}")
                continue

            crd_discovery_total.labels(strategy=strategy.name, outcome="success").inc()
            snapshot = CRDSnapshot.build(kinds, self._clock())
            self._snapshot = snapshot
            report_kinds_discovered.set(len(snapshot.reports))
            _log.info(
                "crd_discovery_complete",
                cluster=connection.name,
                strategy=strategy.name,
                kinds=len(snapshot.reports),
            )
            return snapshot

        raise DiscoveryError(f"CRD discovery failed for cluster '{connection.name}': " + "; ".join(failures))

    async def refresh_if_needed(self, connection: DiscoveryConnection) -> bool:
        """Rediscover through *connection* when the snapshot is stale.

        Returns True when this call started a discovery.  Callers for the
        same connection that arrive while it runs wait for it and return
        False; callers for other connections never wait on it.
        """
        if not self.needs_refresh():
            return False
        pending = self._inflight.get(connection.name)
        if pending is not None:
            await asyncio.shield(pending)
            return False

        future = asyncio.ensure_future(self.discover_crds(connection))
        self._inflight[connection.name] = future
        future.add_done_callback(functools.partial(self._discovery_done, connection.name))
        await asyncio.shield(future)
        return True

    def _discovery_done(self, name: str, future: asyncio.Future[CRDSnapshot]) -> None:
        if self._inflight.get(name) is future:
            del self._inflight[name]
        if not future.cancelled():
            future.exception()  # retrieved even when every waiter was cancelled
