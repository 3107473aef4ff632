"""Concurrency checks: a slow cluster must not hold up reads from another.

Thresholds are generous multiples of the injected delays so the tests stay
stable on loaded CI runners.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from trivyui.cache.report_cache import ReportCache
from trivyui.cluster.registry import ClusterClientRegistry
from trivyui.models.config import ReaderConfig
from trivyui.reader.report_reader import ReportReader
from trivyui.registry.crd_registry import CRDRegistry

from .conftest import FakeCluster, make_report_obj

pytestmark = pytest.mark.performance


def _reader(*clusters: FakeCluster, timeout: float = 5.0, kinds: CRDRegistry | None = None) -> ReportReader:
    registry = ClusterClientRegistry()
    for cluster in clusters:
        registry.set(cluster.name, cluster)  # type: ignore[arg-type]
    return ReportReader(
        clusters=registry,
        registry=kinds or CRDRegistry(),
        cache=ReportCache(),
        reader_config=ReaderConfig(request_timeout_seconds=timeout),
    )


def _cluster(name: str, delay: float = 0.0) -> FakeCluster:
    return FakeCluster(
        name,
        objects={"vulnerabilityreports": [make_report_obj(f"{name}-r{i}", "default", high=1) for i in range(5)]},
        delay=delay,
    )


class TestCrossClusterIsolation:
    async def test_fast_cluster_answers_while_slow_cluster_is_pending(self) -> None:
        slow = _cluster("slow", delay=1.0)
        fast = _cluster("fast")
        reader = _reader(slow, fast)

        slow_task = asyncio.create_task(reader.list_reports("vulnerabilityreports", "slow", "default"))
        await asyncio.sleep(0.05)

        started = time.perf_counter()
        fast_reports = await reader.list_reports("vulnerabilityreports", "fast", "default")
        elapsed = time.perf_counter() - started

        assert len(fast_reports) == 5
        assert elapsed < 0.5
        assert not slow_task.done()
        assert len(await slow_task) == 5

    async def test_cold_registry_with_slow_discovery_does_not_block_other_clusters(self) -> None:
        slow = _cluster("slow")
        slow.discovery_delay = 1.0
        fast = _cluster("fast")
        kinds = CRDRegistry()
        reader = _reader(slow, fast, kinds=kinds)
        assert kinds.is_empty

        slow_task = asyncio.create_task(reader.list_reports("vulnerabilityreports", "slow", "default"))
        await asyncio.sleep(0.05)

        started = time.perf_counter()
        fast_results = await asyncio.gather(
            *(reader.list_reports("vulnerabilityreports", "fast", "default") for _ in range(5))
        )
        elapsed = time.perf_counter() - started

        assert all(len(result) == 5 for result in fast_results)
        assert elapsed < 0.5
        assert not slow_task.done()
        assert fast.calls["server_preferred_resources"] == 1
        assert len(await slow_task) == 5
        assert slow.calls["server_preferred_resources"] == 1

    async def test_warmup_runs_clusters_concurrently(self) -> None:
        clusters = [_cluster(f"c{i}", delay=0.2) for i in range(5)]
        reader = _reader(*clusters)

        started = time.perf_counter()
        completed = await reader.warmup("vulnerabilityreports")
        elapsed = time.perf_counter() - started

        assert completed == 5
        # Serial execution would take at least 5 * (namespaces + list) * 0.2s.
        assert elapsed < 1.5

    async def test_cached_reads_do_not_touch_the_api(self) -> None:
        cluster = _cluster("prod", delay=0.1)
        reader = _reader(cluster)
        await reader.list_reports("vulnerabilityreports", "prod", "default")

        started = time.perf_counter()
        for _ in range(200):
            await reader.list_reports("vulnerabilityreports", "prod", "default")
        elapsed = time.perf_counter() - started

        assert cluster.calls["list_custom_objects"] == 1
        assert elapsed < 0.5
