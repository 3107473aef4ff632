"""Watch report objects and invalidate cache entries as they change.

One :class:`ReportWatcher` runs per cluster, with one task per report kind.
Events never write report data into the cache; they only drop the entries
the change makes stale so the next read goes to the API.
"""

from __future__ import annotations

import asyncio
from typing import Any

from trivyui.cache import keys
from trivyui.cache.report_cache import ReportCache
from trivyui.errors import ResourceNotFoundError, UpstreamUnavailableError
from trivyui.models.reports import ReportKind
from trivyui.observability.logging import get_logger
from trivyui.observability.metrics import watch_events_total, watch_reconnects_total
from trivyui.registry.crd_registry import CRDRegistry
from trivyui.reports.documents import nested_str

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 60.0
_EMPTY_STREAM_DELAY = 1.0
_GONE = 410

_EVENT_TYPES = frozenset({"ADDED", "MODIFIED", "DELETED"})


class ReportWatcher:
    """Per-cluster watch loop feeding cache invalidation."""

    def __init__(
        self,
        cluster_client: Any,
        registry: CRDRegistry,
        cache: ReportCache,
        timeout_seconds: int = 300,
    ) -> None:
        self._client = cluster_client
        self._cluster = cluster_client.name
        self._registry = registry
        self._cache = cache
        self._timeout_seconds = timeout_seconds
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._log = get_logger("report_watcher", cluster=self._cluster)

    @property
    def cluster(self) -> str:
        return self._cluster

    @property
    def watched_kinds(self) -> list[str]:
        return sorted(self._tasks)

    def start(self) -> None:
        """Start one watch task per discovered kind not already watched."""
        for kind in self._registry.get_all_reports():
            if kind.name in self._tasks:
                continue
            self._tasks[kind.name] = asyncio.create_task(
                self._run(kind),
                name=f"watch-{self._cluster}-{kind.name}",
            )
        self._log.info("report_watcher_started", kinds=self.watched_kinds)

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._log.info("report_watcher_stopped")

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, kind: ReportKind, event_type: str, obj: dict[str, Any]) -> int:
        """Drop cache entries made stale by one watch event; return how many."""
        namespace = nested_str(obj, "metadata", "namespace")
        name = nested_str(obj, "metadata", "name")
        watch_events_total.labels(cluster=self._cluster, kind=kind.name, type=event_type).inc()

        dropped = self._cache.invalidate_prefix(keys.reports_prefix(self._cluster, kind.name, namespace))
        if namespace:
            dropped += self._cache.invalidate_prefix(keys.reports_prefix(self._cluster, kind.name, ""))
        if event_type in ("MODIFIED", "DELETED") and name:
            if self._cache.delete(keys.report_details_key(self._cluster, kind.name, namespace, name)):
                dropped += 1

        self._log.debug(
            "report_event",
            kind=kind.name,
            event_type=event_type,
            namespace=namespace,
            name=name,
            invalidated=dropped,
        )
        return dropped

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def _run(self, kind: ReportKind) -> None:
        resource_version = ""
        backoff = _INITIAL_BACKOFF
        while True:
            try:
                if not resource_version:
                    resource_version = await self._client.latest_resource_version(kind)
                received = 0
                async for event_type, obj in self._client.watch_custom_objects(
                    kind, resource_version, self._timeout_seconds
                ):
                    received += 1
                    if event_type == "ERROR":
                        raise UpstreamUnavailableError(
                            f"watch error: {obj.get('message', '')}",
                            status=obj.get("code"),
                        )
                    if event_type not in _EVENT_TYPES:
                        continue
                    self.handle_event(kind, event_type, obj)
                    resource_version = nested_str(obj, "metadata", "resourceVersion") or resource_version
                    backoff = _INITIAL_BACKOFF
                # Server closed the stream after its timeout; resume from the last version.
                if not received:
                    await asyncio.sleep(_EMPTY_STREAM_DELAY)
                continue
            except asyncio.CancelledError:
                raise
            except ResourceNotFoundError:
                self._log.info("report_kind_not_served", kind=kind.name)
                backoff = _MAX_BACKOFF
            except UpstreamUnavailableError as exc:
                if exc.status == _GONE:
                    resource_version = ""
                self._log.warning("report_watch_failed", kind=kind.name, status=exc.status, error=str(exc))
            except Exception as exc:
                self._log.warning("report_watch_failed", kind=kind.name, error=str(exc))

            watch_reconnects_total.labels(cluster=self._cluster, kind=kind.name).inc()
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, _MAX_BACKOFF)
