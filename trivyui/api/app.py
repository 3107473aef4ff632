"""FastAPI application factory for trivy-ui.

Usage::

    from trivyui.api.app import create_app

    app = create_app(reader=reader, cache=cache, config=config)

Used by both the production bootstrap (``trivyui.app``) and tests.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from trivyui.api.routes import router
from trivyui.api.schemas import ErrorResponse
from trivyui.errors import (
    BadRequestError,
    ClusterNotFoundError,
    ReportNotFoundError,
    ResourceNotFoundError,
    TrivyUIError,
    UpstreamUnavailableError,
)
from trivyui.observability.logging import get_logger

_log = get_logger("api.app")

_API_PREFIX = "/api/v1"

# Most specific first; the first isinstance match decides the response.
_ERROR_STATUS: tuple[tuple[type[TrivyUIError], int, str], ...] = (
    (BadRequestError, 400, "BAD_REQUEST"),
    (ClusterNotFoundError, 404, "CLUSTER_NOT_FOUND"),
    (ReportNotFoundError, 404, "REPORT_NOT_FOUND"),
    (ResourceNotFoundError, 404, "NOT_FOUND"),
    (UpstreamUnavailableError, 502, "UPSTREAM_UNAVAILABLE"),
)


def _error_response(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def create_app(reader: Any, cache: Any, config: Any = None) -> FastAPI:
    """Create and configure the trivy-ui FastAPI application.

    Args:
        reader: ReportReader serving every route.
        cache:  ReportCache, read for health metadata.
        config: TrivyUIConfig, optional.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from trivyui import __version__

    app = FastAPI(
        title="trivy-ui",
        summary="Multi-cluster Trivy operator report API",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.reader = reader
    app.state.cache = cache
    app.state.config = config

    app.include_router(router, prefix=_API_PREFIX)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(TrivyUIError)
    async def domain_exception_handler(request: Request, exc: TrivyUIError) -> JSONResponse:
        for error_type, status_code, code in _ERROR_STATUS:
            if isinstance(exc, error_type):
                if status_code >= 500:
                    _log.warning("upstream_error", path=str(request.url.path), error=str(exc))
                return _error_response(status_code, code, str(exc))
        _log.error("unmapped_domain_error", path=str(request.url.path), error=str(exc))
        return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred.")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = ""
        if errors:
            locs = errors[0].get("loc", ())
            field = str(locs[-1]) if locs else ""
            detail = f"{field}: {errors[0].get('msg', '')}" if field else str(errors[0].get("msg", ""))
        return _error_response(400, "INVALID_REQUEST", detail)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred.")

    return app
