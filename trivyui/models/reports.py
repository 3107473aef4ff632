"""Report kind and normalised report data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ReportStatus(StrEnum):
    """Severity bucket derived from a report's summary counts."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    NONE = "None"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class ReportKind:
    """A Trivy report custom-resource type.

    Immutable once discovered.  ``name`` is the plural resource name and is
    unique within a registry snapshot.
    """

    name: str
    short_name: str
    api_version: str  # "<group>/<version>"
    namespaced: bool
    kind: str

    @property
    def group(self) -> str:
        return self.api_version.partition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.partition("/")[2]


@dataclass
class Report:
    """A report normalised from a live API object or decoded from the cache.

    Not a source of truth: the cluster is authoritative, the cache only
    accelerates reads.
    """

    type: str
    cluster: str
    namespace: str
    name: str
    status: ReportStatus = ReportStatus.UNKNOWN
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict."""
        return {
            "type": self.type,
            "cluster": self.cluster,
            "namespace": self.namespace,
            "name": self.name,
            "status": self.status.value,
            "data": self.data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Report:
        created = raw.get("created_at")
        updated = raw.get("updated_at")
        try:
            status = ReportStatus(raw.get("status", ReportStatus.UNKNOWN.value))
        except ValueError:
            status = ReportStatus.UNKNOWN
        return cls(
            type=str(raw.get("type", "")),
            cluster=str(raw.get("cluster", "")),
            namespace=str(raw.get("namespace", "")),
            name=str(raw.get("name", "")),
            status=status,
            data=dict(raw.get("data") or {}),
            created_at=datetime.fromisoformat(created) if created else None,
            updated_at=datetime.fromisoformat(updated) if updated else datetime.now(tz=UTC),
        )


@dataclass
class ReportPage:
    """One page of a paginated report listing."""

    items: list[Report] = field(default_factory=list)
    continue_token: str = ""


@dataclass(frozen=True)
class ClusterInfo:
    """Cluster metadata presented to the dashboard."""

    name: str
    api_server: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "api_server": self.api_server}
