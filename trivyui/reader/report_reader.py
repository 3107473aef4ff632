"""Read path: clusters, namespaces and Trivy reports, through the cache.

Every public method resolves its cluster and report kind first, then serves
from :class:`~trivyui.cache.report_cache.ReportCache` when it can.  On a miss
one upstream call is made per cache key no matter how many callers are
waiting for it; all of them get the same result or the same error.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from trivyui.cache import keys
from trivyui.cache.report_cache import DEFAULT, NEVER_EXPIRE, TTL, ReportCache, jittered
from trivyui.cluster.registry import ClusterClientRegistry
from trivyui.errors import (
    BadRequestError,
    ClusterNotFoundError,
    ReportNotFoundError,
    ResourceNotFoundError,
    TrivyUIError,
    UpstreamUnavailableError,
)
from trivyui.models.config import CacheConfig, ReaderConfig
from trivyui.models.reports import ClusterInfo, Report, ReportKind, ReportPage
from trivyui.observability.logging import get_logger
from trivyui.observability.metrics import cache_hits_total, cache_misses_total, upstream_errors_total
from trivyui.registry.crd_registry import CRDRegistry
from trivyui.reports.catalog import KNOWN_REPORT_KINDS, known_kind
from trivyui.reports.documents import matches_search, to_report

_log = get_logger("report_reader")

_T = TypeVar("_T")

_MAX_PAGE_LIMIT = 1000
_WARMUP_CONCURRENCY = 8
_VALIDATION_CONCURRENCY = 3


class ReportReader:
    """Serves report data for every registered cluster."""

    def __init__(
        self,
        clusters: ClusterClientRegistry,
        registry: CRDRegistry,
        cache: ReportCache,
        reader_config: ReaderConfig | None = None,
        cache_config: CacheConfig | None = None,
    ) -> None:
        self._clusters = clusters
        self._registry = registry
        self._cache = cache
        self._config = reader_config or ReaderConfig()
        self._cache_config = cache_config or CacheConfig()
        self._inflight: dict[tuple[str, int], asyncio.Future[Any]] = {}
        # Last namespace list fetched per cluster, served when the API is down.
        self._last_namespaces: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Kinds and clusters
    # ------------------------------------------------------------------

    def get_all_report_kinds(self) -> list[ReportKind]:
        """Discovered kinds, or the static catalog before the first discovery."""
        discovered = self._registry.get_all_reports()
        return discovered if discovered else list(KNOWN_REPORT_KINDS)

    def list_clusters(self) -> list[ClusterInfo]:
        cached = self._cache.get(keys.clusters_key())
        if cached is not None:
            cache_hits_total.labels(scope="clusters").inc()
            return [ClusterInfo(**item) for item in json.loads(cached)]
        cache_misses_total.labels(scope="clusters").inc()
        return self.refresh_cluster_metadata()

    def refresh_cluster_metadata(self) -> list[ClusterInfo]:
        """Rebuild the cached cluster list from the client registry."""
        infos = [ClusterInfo(name=name, api_server=c.host) for name, c in sorted(self._clusters.items())]
        payload = json.dumps([info.to_dict() for info in infos]).encode()
        self._cache.set(keys.clusters_key(), payload, ttl=NEVER_EXPIRE)
        return infos

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    async def list_namespaces(self, cluster: str) -> list[str]:
        """Namespace names, falling back to the last known list on API failure."""
        cluster_client = self._client(cluster)
        key = keys.namespaces_key(cluster)
        cached = self._cache.get(key)
        if cached is not None:
            cache_hits_total.labels(scope="namespaces").inc()
            return list(json.loads(cached))
        cache_misses_total.labels(scope="namespaces").inc()

        async def fetch() -> list[str]:
            names = await self._upstream(cluster, cluster_client.list_namespaces())
            self._cache.set(key, json.dumps(names).encode(), ttl=self._cache_config.namespace_ttl_seconds)
            self._last_namespaces[cluster] = names
            return names

        try:
            return list(await self._shared(key, fetch))
        except (UpstreamUnavailableError, ResourceNotFoundError) as exc:
            fallback = self._last_namespaces.get(cluster)
            if fallback is None:
                raise
            _log.warning(
                "namespace_list_fallback",
                cluster=cluster,
                namespaces=len(fallback),
                error=str(exc),
            )
            return list(fallback)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def list_report_page(
        self,
        kind_name: str,
        cluster: str,
        namespace: str | None = None,
        *,
        limit: int | None = None,
        continue_token: str = "",
        search: str = "",
    ) -> ReportPage:
        """One page of report summaries.

        Raises:
            ClusterNotFoundError: *cluster* is not registered.
            BadRequestError: unknown kind, or a namespaced kind without a namespace.
            UpstreamUnavailableError: the API failed with anything but 404.
        """
        cluster_client = self._client(cluster)
        await self._refresh_kinds(cluster_client)
        kind, installed = self._resolve_kind(kind_name)

        if kind.namespaced and not namespace:
            raise BadRequestError(f"Report kind '{kind.name}' is namespaced; a namespace is required")
        if not kind.namespaced and namespace:
            return ReportPage()
        if not installed:
            _log.debug("report_kind_not_installed", cluster=cluster, kind=kind.name)
            return ReportPage()

        page_limit = max(1, min(limit or self._config.page_limit, _MAX_PAGE_LIMIT))
        ns = namespace or ""
        key = keys.reports_key(cluster, kind.name, ns, page_limit, continue_token, search)
        cached = self._cache.get(key)
        if cached is not None:
            cache_hits_total.labels(scope="reports").inc()
            return _decode_page(cached)
        cache_misses_total.labels(scope="reports").inc()
        scope = keys.reports_prefix(cluster, kind.name, ns)
        generation = self._cache.generation(scope)

        async def fetch() -> ReportPage:
            try:
                objects, next_token = await self._upstream(
                    cluster,
                    cluster_client.list_custom_objects(kind, namespace or None, page_limit, continue_token),
                )
            except ResourceNotFoundError:
                _log.info("report_kind_missing_in_cluster", cluster=cluster, kind=kind.name)
                objects, next_token = [], ""
            items = [
                to_report(kind, cluster, obj, summary_only=True) for obj in objects if matches_search(obj, search)
            ]
            page = ReportPage(items=items, continue_token=next_token)
            self._store(key, _encode_page(page), DEFAULT, scope, generation)
            return page

        return await self._shared(key, fetch, generation)

    async def list_reports(
        self,
        kind_name: str,
        cluster: str,
        namespace: str | None = None,
        *,
        search: str = "",
    ) -> list[Report]:
        """All report summaries for a kind, following continue tokens."""
        reports: list[Report] = []
        token = ""
        seen: set[str] = set()
        while True:
            page = await self.list_report_page(kind_name, cluster, namespace, continue_token=token, search=search)
            reports.extend(page.items)
            token = page.continue_token
            if not token or token in seen:
                return reports
            seen.add(token)

    async def get_report_details(self, kind_name: str, cluster: str, namespace: str | None, name: str) -> Report:
        """One full report object.

        Raises:
            ClusterNotFoundError: *cluster* is not registered.
            BadRequestError: unknown kind, or namespace does not match the kind's scope.
            ReportNotFoundError: the kind is not installed or the report does not exist.
            UpstreamUnavailableError: the API failed with anything but 404.
        """
        cluster_client = self._client(cluster)
        await self._refresh_kinds(cluster_client)
        kind, installed = self._resolve_kind(kind_name)

        if kind.namespaced and not namespace:
            raise BadRequestError(f"Report kind '{kind.name}' is namespaced; a namespace is required")
        if not kind.namespaced and namespace:
            raise BadRequestError(f"Report kind '{kind.name}' is cluster-scoped; namespace must be empty")
        ns = namespace or ""
        if not installed:
            raise ReportNotFoundError(kind.name, cluster, ns, name)

        key = keys.report_details_key(cluster, kind.name, ns, name)
        cached = self._cache.get(key)
        if cached is not None:
            cache_hits_total.labels(scope="details").inc()
            return Report.from_dict(json.loads(cached))
        cache_misses_total.labels(scope="details").inc()
        scope = keys.reports_prefix(cluster, kind.name, ns)
        generation = self._cache.generation(scope)

        async def fetch() -> Report:
            try:
                obj = await self._upstream(cluster, cluster_client.get_custom_object(kind, namespace, name))
            except ResourceNotFoundError as exc:
                raise ReportNotFoundError(kind.name, cluster, ns, name) from exc
            report = to_report(kind, cluster, obj, summary_only=False)
            self._store(
                key,
                json.dumps(report.to_dict()).encode(),
                jittered(self._cache.default_ttl),
                scope,
                generation,
            )
            return report

        return await self._shared(key, fetch, generation)

    # ------------------------------------------------------------------
    # Warmup
    # ------------------------------------------------------------------

    async def warmup(self, kind_name: str | None = None) -> int:
        """Prefetch one report kind for every cluster and namespace.

        Failures are logged and do not stop the rest of the warmup.  Returns
        the number of listings that completed.
        """
        kind_name = kind_name or self._config.warmup_kind
        semaphore = asyncio.Semaphore(_WARMUP_CONCURRENCY)

        async def warm(cluster: str, namespace: str | None) -> None:
            async with semaphore:
                await self.list_reports(kind_name, cluster, namespace)

        async def plan(cluster: str, cluster_client: Any) -> list[tuple[str, str | None]]:
            await self._refresh_kinds(cluster_client)
            kind = self._registry.get_report_by_name(kind_name) or known_kind(kind_name)
            if kind is None:
                _log.warning("warmup_unknown_kind", cluster=cluster, kind=kind_name)
                return []
            if not kind.namespaced:
                return [(cluster, None)]
            try:
                namespaces = await self.list_namespaces(cluster)
            except TrivyUIError as exc:
                _log.warning("warmup_namespaces_failed", cluster=cluster, error=str(exc))
                return []
            return [(cluster, ns) for ns in namespaces]

        plans = await asyncio.gather(*(plan(c, cc) for c, cc in list(self._clusters.items())))
        jobs = [job for cluster_jobs in plans for job in cluster_jobs]

        results = await asyncio.gather(*(warm(c, ns) for c, ns in jobs), return_exceptions=True)
        completed = 0
        for (cluster, namespace), result in zip(jobs, results, strict=True):
            if isinstance(result, BaseException):
                _log.warning(
                    "warmup_listing_failed",
                    cluster=cluster,
                    namespace=namespace,
                    kind=kind_name,
                    error=str(result),
                )
            else:
                completed += 1
        _log.info("warmup_complete", kind=kind_name, listings=completed, failed=len(jobs) - completed)
        return completed

    async def validate_cache(self) -> int:
        """Drop cached entries a restored snapshot should no longer serve.

        Entries of clusters that are no longer registered are removed.  Each
        cached report detail is checked against its cluster; a report that
        is gone takes its detail entry and the list pages of its namespace
        with it.  Upstream failures keep the entry.  Returns how many keys
        were removed.
        """
        removed = 0
        details: list[tuple[str, str, str, str, str]] = []
        for key in self._cache.keys():
            cluster = keys.cluster_of(key)
            if cluster is None:
                continue
            if cluster not in self._clusters:
                removed += int(self._cache.delete(key))
                continue
            parsed = keys.parse_report_details_key(key)
            if parsed is not None:
                details.append((key, *parsed))

        semaphore = asyncio.Semaphore(_VALIDATION_CONCURRENCY)

        async def check(key: str, cluster: str, kind_name: str, namespace: str, name: str) -> int:
            kind = self._registry.get_report_by_name(kind_name) or known_kind(kind_name)
            if kind is None:
                return int(self._cache.delete(key))
            cluster_client = self._client(cluster)
            async with semaphore:
                try:
                    await self._upstream(cluster, cluster_client.get_custom_object(kind, namespace or None, name))
                except ResourceNotFoundError:
                    dropped = int(self._cache.delete(key))
                    return dropped + self._cache.invalidate_prefix(keys.reports_prefix(cluster, kind_name, namespace))
                except UpstreamUnavailableError as exc:
                    _log.debug("cache_validation_skipped", cluster=cluster, kind=kind_name, name=name, error=str(exc))
            return 0

        results = await asyncio.gather(*(check(*item) for item in details))
        removed += sum(results)
        _log.info("cache_validation_complete", checked=len(details), removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _client(self, cluster: str) -> Any:
        cluster_client = self._clusters.get(cluster)
        if cluster_client is None:
            raise ClusterNotFoundError(cluster)
        return cluster_client

    def _resolve_kind(self, kind_name: str) -> tuple[ReportKind, bool]:
        """Return the kind and whether the registry has it installed."""
        discovered = self._registry.get_report_by_name(kind_name)
        if discovered is not None:
            return discovered, True
        catalogued = known_kind(kind_name)
        if catalogued is not None:
            return catalogued, False
        raise BadRequestError(f"Unknown report kind '{kind_name}'")

    async def _refresh_kinds(self, cluster_client: Any) -> None:
        try:
            async with asyncio.timeout(self._config.request_timeout_seconds):
                await self._registry.refresh_if_needed(cluster_client)
        except (TrivyUIError, TimeoutError) as exc:
            _log.warning("crd_refresh_failed", cluster=cluster_client.name, error=str(exc) or type(exc).__name__)

    async def _upstream(self, cluster: str, call: Awaitable[_T]) -> _T:
        """Await an API call under the request timeout."""
        try:
            async with asyncio.timeout(self._config.request_timeout_seconds):
                return await call
        except TimeoutError as exc:
            upstream_errors_total.labels(cluster=cluster).inc()
            raise UpstreamUnavailableError(
                f"Cluster '{cluster}' did not answer within {self._config.request_timeout_seconds}s"
            ) from exc
        except UpstreamUnavailableError:
            upstream_errors_total.labels(cluster=cluster).inc()
            raise

    def _store(self, key: str, value: bytes, ttl: TTL, scope: str, generation: int) -> None:
        """Cache *value* unless *scope* was invalidated while it was being fetched."""
        if self._cache.generation(scope) != generation:
            _log.debug("cache_store_skipped", key=key, reason="invalidated during fetch")
            return
        self._cache.set(key, value, ttl=ttl)

    async def _shared(self, key: str, fetch: Callable[[], Awaitable[_T]], generation: int = 0) -> _T:
        """Run *fetch* once for concurrent callers of the same *key*.

        Callers that arrive after an invalidation carry a newer *generation*
        and start their own fetch instead of joining a stale one.
        """
        slot = (key, generation)
        future = self._inflight.get(slot)
        if future is None:
            future = asyncio.ensure_future(fetch())
            self._inflight[slot] = future

            def _done(fut: asyncio.Future[Any], slot: tuple[str, int] = slot) -> None:
                if self._inflight.get(slot) is fut:
                    del self._inflight[slot]
                if not fut.cancelled():
                    fut.exception()  # mark retrieved when every waiter went away

            future.add_done_callback(_done)
        # A cancelled waiter must not cancel the fetch other waiters share.
        return await asyncio.shield(future)


def _encode_page(page: ReportPage) -> bytes:
    return json.dumps(
        {"items": [item.to_dict() for item in page.items], "continue": page.continue_token}
    ).encode()


def _decode_page(raw: bytes) -> ReportPage:
    document = json.loads(raw)
    return ReportPage(
        items=[Report.from_dict(item) for item in document.get("items", [])],
        continue_token=str(document.get("continue", "")),
    )
