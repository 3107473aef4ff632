"""Pydantic response models for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from trivyui.models.reports import ClusterInfo, Report, ReportKind


class ErrorResponse(BaseModel):
    """Error envelope returned for every non-2xx response."""

    error: str
    detail: str = ""


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    clusters: int
    report_kinds: int
    cache_entries: int


class ReportKindResponse(BaseModel):
    name: str
    short_name: str
    api_version: str
    namespaced: bool
    kind: str

    @classmethod
    def from_kind(cls, kind: ReportKind) -> ReportKindResponse:
        return cls(
            name=kind.name,
            short_name=kind.short_name,
            api_version=kind.api_version,
            namespaced=kind.namespaced,
            kind=kind.kind,
        )


class ClusterResponse(BaseModel):
    name: str
    api_server: str = ""

    @classmethod
    def from_info(cls, info: ClusterInfo) -> ClusterResponse:
        return cls(name=info.name, api_server=info.api_server)


class NamespaceListResponse(BaseModel):
    cluster: str
    namespaces: list[str]


class ReportResponse(BaseModel):
    type: str
    cluster: str
    namespace: str
    name: str
    status: str
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime

    @classmethod
    def from_report(cls, report: Report) -> ReportResponse:
        return cls(
            type=report.type,
            cluster=report.cluster,
            namespace=report.namespace,
            name=report.name,
            status=report.status.value,
            data=report.data,
            created_at=report.created_at,
            updated_at=report.updated_at,
        )


class ReportListResponse(BaseModel):
    items: list[ReportResponse]
    count: int
    continue_token: str = Field(default="", serialization_alias="continue")
