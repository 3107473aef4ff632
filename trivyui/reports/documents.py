"""Accessors over schema-less Trivy report objects.

Report custom resources arrive as nested ``dict`` trees whose shape varies by
kind and operator version.  Everything here tolerates missing or mistyped
fields and returns a neutral default instead of raising.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from trivyui.models.reports import Report, ReportKind, ReportStatus

CONTAINER_NAME_LABEL = "trivy-operator.container.name"

_SUMMARY_METADATA_FIELDS = ("name", "namespace", "uid", "creationTimestamp", "labels", "annotations")
_SUMMARY_REPORT_FIELDS = ("summary", "artifact", "scanner", "registry", "updateTimestamp")

# Highest severity first; the first non-zero count decides the status.
_SEVERITY_ORDER = (
    ("criticalCount", ReportStatus.CRITICAL),
    ("highCount", ReportStatus.HIGH),
    ("mediumCount", ReportStatus.MEDIUM),
    ("lowCount", ReportStatus.LOW),
    ("noneCount", ReportStatus.NONE),
)


def nested_get(obj: Any, *path: str, default: Any = None) -> Any:
    """Walk *path* through nested mappings; *default* on any miss."""
    current = obj
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def nested_map(obj: Any, *path: str) -> dict[str, Any]:
    value = nested_get(obj, *path)
    return dict(value) if isinstance(value, Mapping) else {}


def nested_str(obj: Any, *path: str) -> str:
    value = nested_get(obj, *path)
    return value if isinstance(value, str) else ""


def _count(summary: Mapping[str, Any], key: str) -> int:
    value = summary.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return 0


def derive_status(obj: Mapping[str, Any]) -> ReportStatus:
    """Derive a severity bucket from ``report.summary`` counts."""
    summary = nested_get(obj, "report", "summary")
    if not isinstance(summary, Mapping):
        return ReportStatus.UNKNOWN
    for key, status in _SEVERITY_ORDER:
        if _count(summary, key) > 0:
            return status
    return ReportStatus.UNKNOWN


def extract_summary(obj: Mapping[str, Any]) -> dict[str, Any]:
    """Keep the fields the list view renders; drop the bulky findings."""
    metadata = nested_map(obj, "metadata")
    report = nested_map(obj, "report")
    summary: dict[str, Any] = {}

    meta_out = {k: metadata[k] for k in _SUMMARY_METADATA_FIELDS if k in metadata}
    if meta_out:
        summary["metadata"] = meta_out
    report_out = {k: report[k] for k in _SUMMARY_REPORT_FIELDS if k in report}
    if report_out:
        summary["report"] = report_out
    for key in ("apiVersion", "kind"):
        if key in obj:
            summary[key] = obj[key]
    return summary


def matches_search(obj: Mapping[str, Any], search: str) -> bool:
    """Case-insensitive substring match on the name or container label."""
    if not search:
        return True
    needle = search.lower()
    if needle in nested_str(obj, "metadata", "name").lower():
        return True
    container = nested_str(obj, "metadata", "labels", CONTAINER_NAME_LABEL)
    return needle in container.lower()


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp as emitted by the API server."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def to_report(
    kind: ReportKind,
    cluster: str,
    obj: Mapping[str, Any],
    *,
    summary_only: bool,
) -> Report:
    """Normalise a raw custom object into a :class:`Report`."""
    metadata = nested_map(obj, "metadata")
    updated = parse_timestamp(nested_get(obj, "report", "updateTimestamp"))
    return Report(
        type=kind.name,
        cluster=cluster,
        namespace=nested_str(metadata, "namespace"),
        name=nested_str(metadata, "name"),
        status=derive_status(obj),
        data=extract_summary(obj) if summary_only else dict(obj),
        created_at=parse_timestamp(metadata.get("creationTimestamp")),
        updated_at=updated or datetime.now(tz=UTC),
    )
