"""FastAPI application factory for the kubeingest read API.

Usage::

    from kubeingest.api.app import create_app

    app = create_app(scheduler=scheduler, authorize=my_policy_hook)

The factory is designed for use by both the production bootstrap
(``kubeingest.app``) and unit tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kubeingest.api.routes import router
from kubeingest.api.schemas import ErrorResponse
from kubeingest.models.resources import RawResource

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"

AuthorizeHook = Callable[[Request, RawResource], bool]


def create_app(
    scheduler: Any,
    authorize: AuthorizeHook | None = None,
    config: Any = None,
) -> FastAPI:
    """Create and configure the kubeingest FastAPI application.

    Args:
        scheduler:  IngestionScheduler whose last delivered cycles are served.
        authorize:  Optional permission hook called per graph node with the
                    incoming request. None allows everything.
        config:     KubeIngestConfig, kept for route handlers.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubeingest import __version__

    app = FastAPI(
        title="kubeingest",
        summary="Kubernetes custom resource catalog ingestion",
        version=__version__,
        description=(
            "Read-only view of the resource graphs produced by the last completed "
            "ingestion cycle of each cluster, plus ingestion status."
        ),
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.scheduler = scheduler
    app.state.authorize = authorize
    app.state.config = config

    app.include_router(router, prefix=_API_PREFIX)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = exc.errors()
        first_msg = str(errors[0].get("msg", "")) if errors else ""
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="INVALID_REQUEST", detail=first_msg).model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
