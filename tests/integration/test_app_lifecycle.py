"""Startup/shutdown tests for TrivyUIApp with fake cluster clients."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from trivyui.app import TrivyUIApp, _ComponentError
from trivyui.cache import keys
from trivyui.cache.report_cache import NEVER_EXPIRE, ReportCache
from trivyui.models.config import CacheConfig, ClusterSourceConfig, TrivyUIConfig, WatchConfig

from .conftest import FakeCluster, make_report_obj


class _Factory:
    """Builds a FakeCluster per kubeconfig file, named after the file stem."""

    def __init__(self) -> None:
        self.built: list[FakeCluster] = []

    async def __call__(self, path: str | None, *, in_cluster: bool | None = None) -> FakeCluster:
        name = "incluster" if path is None else Path(path).stem
        cluster = FakeCluster(
            name,
            objects={"vulnerabilityreports": [make_report_obj(f"{name}-r1", "default", high=1)]},
        )
        self.built.append(cluster)
        return cluster


def _config(tmp_path: Path, watch: bool = False) -> TrivyUIConfig:
    kube_dir = tmp_path / "kubeconfigs"
    kube_dir.mkdir(exist_ok=True)
    (kube_dir / "east.yaml").write_text("current-context: east\n")
    (kube_dir / "west.yaml").write_text("current-context: west\n")
    return TrivyUIConfig(
        clusters=ClusterSourceConfig(
            kubeconfig_dir=str(kube_dir),
            default_kubeconfig=str(tmp_path / "missing-kubeconfig"),
        ),
        cache=CacheConfig(path=str(tmp_path / "cache.json"), snapshot_interval_seconds=3600),
        watch=WatchConfig(enabled=watch),
    )


class TestLifecycle:
    async def test_start_wires_components_and_stop_flushes(self, tmp_path: Path) -> None:
        factory = _Factory()
        app = TrivyUIApp(config=_config(tmp_path, watch=True), client_factory=factory, serve=False)
        await app.start()
        try:
            assert app.running
            assert app.clusters is not None and app.clusters.names() == ["east", "west"]
            assert app.registry is not None and not app.registry.is_empty
            assert len(app.watchers) == 2
            assert app.reader is not None
            reports = await app.reader.list_reports("vulnerabilityreports", "east", "default")
            assert [r.name for r in reports] == ["east-r1"]
        finally:
            await app.stop()

        assert not app.running
        assert all(c.closed for c in factory.built)
        snapshot = json.loads((tmp_path / "cache.json").read_text())
        assert snapshot["version"] == 1
        assert snapshot["entries"]

    async def test_stop_is_idempotent(self, tmp_path: Path) -> None:
        app = TrivyUIApp(config=_config(tmp_path), client_factory=_Factory(), serve=False)
        await app.start()
        await app.stop()
        await app.stop()

    async def test_stop_before_start_is_safe(self) -> None:
        await TrivyUIApp(serve=False).stop()

    async def test_no_clusters_is_fatal(self, tmp_path: Path) -> None:
        config = TrivyUIConfig(
            clusters=ClusterSourceConfig(
                kubeconfig_dir=str(tmp_path / "empty"),
                default_kubeconfig=str(tmp_path / "missing"),
            ),
            cache=CacheConfig(path=str(tmp_path / "cache.json")),
        )
        app = TrivyUIApp(config=config, client_factory=_Factory(), serve=False)
        with pytest.raises(_ComponentError) as exc_info:
            await app.start()
        assert exc_info.value.component == "clusters"
        await app.stop()

    async def test_warm_snapshot_skips_warmup(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        first = TrivyUIApp(config=config, client_factory=_Factory(), serve=False)
        await first.start()
        assert first.reader is not None
        await first.reader.list_reports("vulnerabilityreports", "east", "default")
        await first.stop()

        second = TrivyUIApp(config=config, client_factory=_Factory(), serve=False)
        await second.start()
        try:
            assert second._cold_cache is False
            assert not any(t.get_name() == "cache-warmup" for t in second._background_tasks)
        finally:
            await second.stop()

    async def test_corrupt_snapshot_starts_cold(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        Path(config.cache.path).write_text("{not json")
        app = TrivyUIApp(config=config, client_factory=_Factory(), serve=False)
        await app.start()
        try:
            assert app._cold_cache is True
        finally:
            await app.stop()

    async def test_signal_shutdown_flushes_before_main_returns(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        factory = _Factory()
        app = TrivyUIApp(config=config, client_factory=factory, serve=False)
        await app.start()
        assert app.reader is not None
        await app.reader.list_reports("vulnerabilityreports", "east", "default")

        # The signal handler starts stop() as a task; main() then stops again
        # from its finally block and asyncio.run cancels whatever is left.
        signal_task = asyncio.create_task(app.stop())
        await asyncio.sleep(0)
        await app.stop()
        signal_task.cancel()
        await asyncio.gather(signal_task, return_exceptions=True)

        assert Path(config.cache.path).exists()
        assert all(c.closed for c in factory.built)

    async def test_snapshot_with_only_cluster_metadata_is_cold(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        cache = ReportCache()
        cache.set(keys.clusters_key(), b"[]", ttl=NEVER_EXPIRE)
        cache.set(keys.namespaces_key("east"), b'["default"]', ttl=600)
        cache.save_to_disk(config.cache.path)

        app = TrivyUIApp(config=config, client_factory=_Factory(), serve=False)
        await app.start()
        try:
            assert app._cold_cache is True
            assert any(t.get_name() == "cache-warmup" for t in app._background_tasks)
        finally:
            await app.stop()

    async def test_warm_snapshot_is_validated(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        cache = ReportCache()
        gone = keys.report_details_key("east", "vulnerabilityreports", "default", "deleted-report")
        kept = keys.report_details_key("east", "vulnerabilityreports", "default", "east-r1")
        retired = keys.reports_key("decommissioned", "vulnerabilityreports", "default", 100)
        for key in (gone, kept, retired):
            cache.set(key, b"{}", ttl=3600)
        cache.save_to_disk(config.cache.path)

        app = TrivyUIApp(config=config, client_factory=_Factory(), serve=False)
        await app.start()
        try:
            assert app._cold_cache is False
            validation = next(t for t in app._background_tasks if t.get_name() == "cache-validation")
            await validation
            assert app.cache is not None
            remaining = set(app.cache.keys())
            assert kept in remaining
            assert gone not in remaining
            assert retired not in remaining
        finally:
            await app.stop()
