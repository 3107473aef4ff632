"""Kubernetes watch streams that keep the report cache honest."""

from trivyui.collector.report_watcher import ReportWatcher

__all__ = ["ReportWatcher"]
