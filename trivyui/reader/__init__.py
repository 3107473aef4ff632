"""Cached read access to Trivy reports across clusters."""

from trivyui.reader.report_reader import ReportReader

__all__ = ["ReportReader"]
