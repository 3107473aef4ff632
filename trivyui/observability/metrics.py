"""Prometheus metrics for trivy-ui.

All collectors are module-level singletons registered on the default
registry; the REST layer mounts ``prometheus_client.make_asgi_app()`` at
``/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# ---------------------------------------------------------------------------
# Report cache
# ---------------------------------------------------------------------------

cache_hits_total = Counter(
    "trivyui_cache_hits_total",
    "Report cache lookups served from memory.",
    ["scope"],
)

cache_misses_total = Counter(
    "trivyui_cache_misses_total",
    "Report cache lookups that fell through to the Kubernetes API.",
    ["scope"],
)

cache_entries = Gauge(
    "trivyui_cache_entries",
    "Number of entries currently held by the report cache.",
)

cache_snapshots_total = Counter(
    "trivyui_cache_snapshots_total",
    "Cache snapshot writes to disk by outcome.",
    ["outcome"],
)

# ---------------------------------------------------------------------------
# Discovery and clusters
# ---------------------------------------------------------------------------

crd_discovery_total = Counter(
    "trivyui_crd_discovery_total",
    "CRD discovery attempts by strategy and outcome.",
    ["strategy", "outcome"],
)

report_kinds_discovered = Gauge(
    "trivyui_report_kinds_discovered",
    "Report kinds present in the current CRD registry snapshot.",
)

cluster_clients = Gauge(
    "trivyui_cluster_clients",
    "Cluster clients registered at startup.",
)

upstream_errors_total = Counter(
    "trivyui_upstream_errors_total",
    "Kubernetes API failures surfaced to callers, per cluster.",
    ["cluster"],
)

# ---------------------------------------------------------------------------
# Watchers
# ---------------------------------------------------------------------------

watch_events_total = Counter(
    "trivyui_watch_events_total",
    "Report watch events processed.",
    ["cluster", "kind", "type"],
)

watch_reconnects_total = Counter(
    "trivyui_watch_reconnects_total",
    "Report watch stream reconnects.",
    ["cluster", "kind"],
)
