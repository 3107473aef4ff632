"""REST routes.

Handlers are thin: they pull the :class:`~trivyui.reader.ReportReader` from
``app.state``, call one reader method and shape the result.  Domain errors
propagate to the exception handlers registered in :mod:`trivyui.api.app`.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from trivyui.api.schemas import (
    ClusterResponse,
    HealthResponse,
    NamespaceListResponse,
    ReportKindResponse,
    ReportListResponse,
    ReportResponse,
)
from trivyui.reader.report_reader import ReportReader

router = APIRouter()


def _reader(request: Request) -> ReportReader:
    return request.app.state.reader


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    from trivyui import __version__

    reader = _reader(request)
    return HealthResponse(
        version=__version__,
        clusters=len(reader.list_clusters()),
        report_kinds=len(reader.get_all_report_kinds()),
        cache_entries=len(request.app.state.cache),
    )


@router.get("/report-kinds", response_model=list[ReportKindResponse])
async def report_kinds(request: Request) -> list[ReportKindResponse]:
    return [ReportKindResponse.from_kind(k) for k in _reader(request).get_all_report_kinds()]


@router.get("/clusters", response_model=list[ClusterResponse])
async def clusters(request: Request) -> list[ClusterResponse]:
    return [ClusterResponse.from_info(info) for info in _reader(request).list_clusters()]


@router.get("/clusters/{cluster}/namespaces", response_model=NamespaceListResponse)
async def namespaces(request: Request, cluster: str) -> NamespaceListResponse:
    names = await _reader(request).list_namespaces(cluster)
    return NamespaceListResponse(cluster=cluster, namespaces=names)


@router.get(
    "/clusters/{cluster}/reports/{kind}",
    response_model=ReportListResponse,
    response_model_by_alias=True,
)
async def list_reports(
    request: Request,
    cluster: str,
    kind: str,
    namespace: str = Query(default=""),
    search: str = Query(default="", max_length=256),
    limit: int | None = Query(default=None, ge=1, le=1000),
    continue_token: str = Query(default="", alias="continue"),
) -> ReportListResponse:
    page = await _reader(request).list_report_page(
        kind,
        cluster,
        namespace or None,
        limit=limit,
        continue_token=continue_token,
        search=search,
    )
    items = [ReportResponse.from_report(r) for r in page.items]
    return ReportListResponse(items=items, count=len(items), continue_token=page.continue_token)


@router.get("/clusters/{cluster}/reports/{kind}/{name}", response_model=ReportResponse)
async def report_details(
    request: Request,
    cluster: str,
    kind: str,
    name: str,
    namespace: str = Query(default=""),
) -> ReportResponse:
    report = await _reader(request).get_report_details(kind, cluster, namespace or None, name)
    return ReportResponse.from_report(report)
