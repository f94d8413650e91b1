"""FastAPI application factory for kubediag.

Usage::

    from kubediag.api.app import create_app

    app = create_app(invoker=invoker, policy=policy, config=config)

The factory is used by both the production bootstrap (``kubediag.app``)
and unit tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from kubediag.api.routes import router
from kubediag.api.schemas import ErrorResponse
from kubediag.errors import KubeDiagError, RequestAborted, ValidationError, error_envelope
from kubediag.policy import Authorizer
from kubediag.tools.invoker import ToolInvoker

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(invoker: ToolInvoker, policy: Authorizer, config: Any = None) -> FastAPI:
    """Create and configure the kubediag FastAPI application.

    Args:
        invoker: ToolInvoker holding the registered tools.
        policy:  Authorizer mapping API keys to users.
        config:  KubeDiagConfig, kept for metadata.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubediag import __version__

    app = FastAPI(
        title="kubediag",
        summary="Kubernetes troubleshooting API",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
    )

    app.state.invoker = invoker
    app.state.policy = policy
    app.state.config = config
    app.state.renderer = invoker.context.renderer

    app.include_router(router, prefix=_API_PREFIX)
    app.mount("/metrics", make_asgi_app())

    # -----------------------------------------------------------------------
    # Exception handlers
    # -----------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        _request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Map request body validation errors to the error envelope."""
        errors = exc.errors()
        message = "invalid request body"
        if errors:
            locs = errors[0].get("loc", ())
            field = ".".join(str(part) for part in locs[1:]) if len(locs) > 1 else ""
            message = f"{field}: {errors[0].get('msg', '')}" if field else str(errors[0].get("msg", ""))
        return JSONResponse(
            status_code=400,
            content=ErrorResponse.model_validate(error_envelope(ValidationError(message))).model_dump(
                exclude_none=True
            ),
        )

    @app.exception_handler(KubeDiagError)
    async def kubediag_exception_handler(
        request: Request,
        exc: KubeDiagError,
    ) -> JSONResponse:
        details = exc.partial if isinstance(exc, RequestAborted) and exc.partial else None
        _log.info(
            "request_failed",
            path=str(request.url.path),
            code=exc.code,
            error=exc.message,
        )
        envelope = request.app.state.renderer.render_error(exc, details)
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorResponse.model_validate(envelope).model_dump(exclude_none=True),
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
        envelope = error_envelope(KubeDiagError("an unexpected error occurred"))
        return JSONResponse(status_code=500, content=envelope)

    return app
