"""Application bootstrap for trivy-ui.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → cluster clients → CRD discovery → report cache
              → snapshot persister → reader → cluster metadata → watchers
              → warmup (cold) or validation (warm) → REST

Shutdown stops components in reverse order and always attempts a final cache
snapshot before the cluster clients are closed.  Each step's errors are
caught and logged independently so one failing teardown does not block the
rest.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from trivyui.cache import keys
from trivyui.cache.report_cache import ReportCache
from trivyui.cluster.client import new_client
from trivyui.cluster.registry import ClientFactory, ClusterClientRegistry
from trivyui.collector.report_watcher import ReportWatcher
from trivyui.config import load_config
from trivyui.errors import CacheSnapshotError, DiscoveryError, NoClustersError
from trivyui.models.config import TrivyUIConfig
from trivyui.observability.logging import get_logger, setup_logging
from trivyui.reader.report_reader import ReportReader
from trivyui.registry.crd_registry import CRDRegistry

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class TrivyUIApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started, failed
    half-way through ``start()``, or was already stopped.
    """

    def __init__(
        self,
        config: TrivyUIConfig | None = None,
        client_factory: ClientFactory = new_client,
        serve: bool = True,
    ) -> None:
        self.config = config
        self._client_factory = client_factory
        self._serve = serve

        self.clusters: ClusterClientRegistry | None = None
        self.registry: CRDRegistry | None = None
        self.cache: ReportCache | None = None
        self.reader: ReportReader | None = None
        self.watchers: list[ReportWatcher] = []
        self._rest_server: object | None = None
        self._cold_cache = True

        # Background tasks that must be cancelled on shutdown
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._shutdown_task: asyncio.Task[None] | None = None
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) turns this into a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("trivy-ui starting", version=_trivyui_version())

        # --- 3. Cluster clients -----------------------------------------
        await self._start_clusters()

        # --- 4. CRD discovery -------------------------------------------
        await self._start_registry()

        # --- 5. Report cache --------------------------------------------
        await self._start_cache()

        # --- 6. Snapshot persister --------------------------------------
        self._start_persister()

        # --- 7. Reader + cluster metadata -------------------------------
        self._start_reader()

        # --- 8. Watchers (optional) -------------------------------------
        self._start_watchers()

        # --- 9. Warmup or validation ------------------------------------
        self._start_warmup()

        # --- 10. REST API -----------------------------------------------
        if self._serve:
            await self._start_rest()

        self._running = True
        self._log.info("trivy-ui started", clusters=self.clusters.names() if self.clusters else [])

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_clusters(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting cluster clients")
        try:
            self.clusters = await ClusterClientRegistry.bootstrap(self.config.clusters, factory=self._client_factory)
        except NoClustersError as exc:
            raise _ComponentError("clusters", exc) from exc

    async def _start_registry(self) -> None:
        """Seed the CRD registry from the first cluster that answers.

        Non-fatal: the reader retries discovery lazily on each request.
        """
        assert self._log is not None
        assert self.config is not None
        assert self.clusters is not None
        registry = CRDRegistry(refresh_ttl=self.config.discovery.refresh_ttl_seconds)
        self.registry = registry
        timeout = self.config.reader.request_timeout_seconds
        for name, cluster_client in sorted(self.clusters.items()):
            try:
                async with asyncio.timeout(timeout):
                    await registry.discover_crds(cluster_client)
            except (DiscoveryError, TimeoutError) as exc:
                self._log.warning("crd discovery failed", cluster=name, error=str(exc) or "timeout")
                continue
            self._log.info("crd registry seeded", cluster=name, kinds=len(registry.get_all_reports()))
            return
        self._log.warning("crd registry empty; discovery will be retried on demand")

    async def _start_cache(self) -> None:
        """Create the cache and load the last snapshot; a bad snapshot means a cold start."""
        assert self._log is not None
        assert self.config is not None
        cache = ReportCache(default_ttl=self.config.cache.report_ttl_seconds)
        try:
            await asyncio.to_thread(cache.load_from_disk, self.config.cache.path)
        except (CacheSnapshotError, OSError) as exc:
            self._log.warning("cache snapshot unusable; starting cold", path=self.config.cache.path, error=str(exc))
        # The clusters key never expires, so only report entries make the cache warm.
        self._cold_cache = not any(keys.is_report_key(key) for key in cache.keys())
        self.cache = cache
        self._log.info("report cache started", entries=len(cache), cold=self._cold_cache)

    def _start_persister(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.cache is not None
        task = asyncio.create_task(
            self.cache.run_persister(self.config.cache.path, self.config.cache.snapshot_interval_seconds),
            name="cache-persister",
        )
        self._background_tasks.append(task)
        self._log.info(
            "cache persister started",
            path=self.config.cache.path,
            interval=self.config.cache.snapshot_interval_seconds,
        )

    def _start_reader(self) -> None:
        assert self.config is not None
        assert self.clusters is not None
        assert self.registry is not None
        assert self.cache is not None
        self.reader = ReportReader(
            clusters=self.clusters,
            registry=self.registry,
            cache=self.cache,
            reader_config=self.config.reader,
            cache_config=self.config.cache,
        )
        # The snapshot may list clusters that are no longer configured.
        self.reader.refresh_cluster_metadata()

    def _start_watchers(self) -> None:
        """Start one report watcher per cluster.  Non-fatal."""
        assert self._log is not None
        assert self.config is not None
        assert self.clusters is not None
        assert self.registry is not None
        assert self.cache is not None
        if not self.config.watch.enabled:
            self._log.info("report watchers disabled")
            return
        for _name, cluster_client in sorted(self.clusters.items()):
            watcher = ReportWatcher(
                cluster_client,
                self.registry,
                self.cache,
                timeout_seconds=self.config.watch.timeout_seconds,
            )
            try:
                watcher.start()
            except Exception as exc:
                self._log.warning("report watcher failed to start", cluster=watcher.cluster, error=str(exc))
                continue
            self.watchers.append(watcher)
        self._log.info("report watchers started", clusters=len(self.watchers))

    def _start_warmup(self) -> None:
        """Warm a cold cache, or validate a restored one, in the background."""
        assert self._log is not None
        assert self.reader is not None
        reader = self.reader
        log = self._log

        async def _warm() -> None:
            try:
                await reader.warmup()
            except Exception as exc:
                log.warning("cache warmup failed", error=str(exc))

        async def _validate() -> None:
            try:
                await reader.validate_cache()
            except Exception as exc:
                log.warning("cache validation failed", error=str(exc))

        if self._cold_cache:
            self._background_tasks.append(asyncio.create_task(_warm(), name="cache-warmup"))
        else:
            self._background_tasks.append(asyncio.create_task(_validate(), name="cache-validation"))

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from trivyui.api import create_app

            fastapi_app = create_app(reader=self.reader, cache=self.cache, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.api.host,
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", host=self.config.api.host, port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order.

        Every caller waits for the same shutdown, so a second call made while
        the first is still flushing the cache returns only once it is done.
        """
        if self._log is None:
            return
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.create_task(self._shutdown(), name="shutdown")
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self) -> None:
        assert self._log is not None
        self._running = False
        log = self._log
        log.info("trivy-ui shutting down")

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]

        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        for watcher in self.watchers:
            await self._stop_component(f"watcher:{watcher.cluster}", watcher)
        self.watchers.clear()

        await self._flush_cache()
        await self._close_clusters()

        log.info("trivy-ui stopped")

    async def _flush_cache(self) -> None:
        if self.cache is None or self.config is None:
            return
        try:
            await asyncio.wait_for(self.cache.save(self.config.cache.path), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            if self._log:
                self._log.warning("final cache save timed out", timeout=_SHUTDOWN_GRACE_SECONDS)

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _close_clusters(self) -> None:
        """Close every cluster client's connection pool."""
        if self.clusters is None:
            return
        log = self._log or get_logger("app")
        try:
            await asyncio.wait_for(self.clusters.close(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("cluster client close timed out", timeout=_SHUTDOWN_GRACE_SECONDS)


def _trivyui_version() -> str:
    from trivyui import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = TrivyUIApp()
    loop = asyncio.get_running_loop()

    signal_task: asyncio.Task[None] | None = None

    def _request_shutdown() -> None:
        nonlocal signal_task
        if signal_task is None:
            signal_task = asyncio.create_task(app.stop(), name="signal-shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        await app.stop()
