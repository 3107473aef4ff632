"""Core data structures for trivy-ui."""

from trivyui.models.config import TrivyUIConfig
from trivyui.models.reports import (
    ClusterInfo,
    Report,
    ReportKind,
    ReportPage,
    ReportStatus,
)

__all__ = [
    "ClusterInfo",
    "Report",
    "ReportKind",
    "ReportPage",
    "ReportStatus",
    "TrivyUIConfig",
]
