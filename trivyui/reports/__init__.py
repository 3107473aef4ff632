"""Report kind catalog and schema-less report document helpers.

Submodules:
    catalog    -- Static table of Trivy operator report kinds.
    documents  -- Typed accessors over raw report objects, status and summary extraction.
"""

from trivyui.reports.catalog import KNOWN_REPORT_KINDS, TRIVY_GROUP, known_kind
from trivyui.reports.documents import derive_status, extract_summary, matches_search

__all__ = [
    "KNOWN_REPORT_KINDS",
    "TRIVY_GROUP",
    "derive_status",
    "extract_summary",
    "known_kind",
    "matches_search",
]
