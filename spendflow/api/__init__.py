"""
REST API Layer for SpendFlow.

Provides:
- FastAPI application with CORS, auth gate, and security headers
- REST endpoints for obligations, recurring expenses, budgets, cards,
  notifications, and billing webhooks under /api/v1
- Prometheus /metrics and root /health for infrastructure probes
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import date

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from spendflow.api.auth import AuthService
from spendflow.api.routes import router
from spendflow.api.schemas import error_response
from spendflow.billing.webhook import WebhookProcessor
from spendflow.config import Settings, get_settings
from spendflow.core.context import ProcessingContext
from spendflow.infra.monitoring import PrometheusMetrics, record_request
from spendflow.lib.errors import (
    AUTH_REQUIRED,
    HTTP_STATUS,
    INTERNAL_ERROR,
    NOT_FOUND,
    VALIDATION_ERROR,
    error_code_for,
)
from spendflow.lib.exceptions import SpendflowError
from spendflow.lib.logging import setup_logging
from spendflow.lib.security import create_security_middleware
from spendflow.services.document_store import DocumentStore
from spendflow.workflows.scheduler import DailySweep

logger = logging.getLogger(__name__)

_ALLOWED_HEADERS: list[str] = [
    "Authorization",
    "Content-Type",
    "Accept",
    "Accept-Language",
    "X-Request-ID",
]

# Paths that do NOT require a bearer token
_PUBLIC_PATHS: frozenset[str] = frozenset({
    "/health",
    "/metrics",
    "/api/v1/health",
    "/api/v1/billing/webhooks",
    "/docs",
    "/redoc",
    "/openapi.json",
})


async def _auth_gate_dispatch(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Deny unauthenticated requests by default; routes still verify the token."""
    if request.method == "OPTIONS":
        return await call_next(request)
    path = request.url.path.rstrip("/") or "/"
    if path not in _PUBLIC_PATHS:
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return JSONResponse(
                status_code=401,
                content=error_response(AUTH_REQUIRED),
                headers={"WWW-Authenticate": "Bearer"},
            )
    return await call_next(request)


async def _metrics_dispatch(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    start_time = time.time()
    response = await call_next(request)
    # label by route template, not raw path, to keep ids out of the label set
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    record_request(request.method, endpoint, response.status_code, time.time() - start_time)
    return response


def create_app(
    settings: Settings | None = None,
    store: DocumentStore | None = None,
    clock: Callable[[], date] = date.today,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings (read from the environment when omitted)
        store: Document store to use; one is built from settings.database_url when omitted
        clock: Source of "today" for processing and views

    Raises:
        ConfigurationError: API secret key missing or settings invalid
    """
    settings = settings or get_settings()
    settings.validate()
    owns_store = store is None
    store = store or DocumentStore.from_url(settings.database_url)
    ctx = ProcessingContext.create(store, settings, clock=clock)
    sweep = DailySweep(ctx, settings.scheduler_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(dev_mode=settings.dev_mode)
        await store.init_schema()
        if settings.scheduler_interval_seconds > 0:
            sweep.start()
        logger.info("spendflow_started environment=%s", settings.environment)
        try:
            yield
        finally:
            await sweep.stop()
            if owns_store:
                await store.dispose()
            logger.info("spendflow_stopped")

    app = FastAPI(
        title="SpendFlow",
        description="Recurring obligations and budgets",
        version="0.1.0",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )
    app.state.ctx = ctx
    app.state.auth = AuthService(settings.api_secret_key)
    app.state.webhooks = WebhookProcessor(
        store, ctx.notifications, settings.stripe_webhook_secret
    )
    app.state.sweep = sweep

    # -------------------------------------------------------------------------
    # Exception handlers: every error leaves in the response envelope
    # -------------------------------------------------------------------------
    @app.exception_handler(SpendflowError)
    async def domain_exception_handler(request: Request, exc: SpendflowError) -> JSONResponse:
        code = error_code_for(exc)
        if code == INTERNAL_ERROR:
            logger.exception("Unhandled domain error on %s %s", request.method, request.url.path)
            return JSONResponse(status_code=500, content=error_response(code))
        return JSONResponse(status_code=HTTP_STATUS[code], content=error_response(code, str(exc)))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code == 401:
            code = AUTH_REQUIRED
        elif exc.status_code == 404:
            code = NOT_FOUND
        else:
            code = INTERNAL_ERROR if exc.status_code >= 500 else VALIDATION_ERROR
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
        return JSONResponse(
            status_code=422,
            content=error_response(VALIDATION_ERROR, details={"fields": fields}),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_response(INTERNAL_ERROR))

    # -------------------------------------------------------------------------
    # Middleware (last added runs first)
    # -------------------------------------------------------------------------
    cors_origins = list(settings.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=_ALLOWED_HEADERS,
    )
    if cors_origins:
        logger.info("CORS enabled for origins: %s", cors_origins)
    else:
        logger.info("CORS: no origins configured (restrictive default)")

    app.add_middleware(BaseHTTPMiddleware, dispatch=_auth_gate_dispatch)
    create_security_middleware(app)
    app.add_middleware(BaseHTTPMiddleware, dispatch=_metrics_dispatch)

    app.include_router(router)

    @app.get("/health")
    async def root_health_check() -> dict[str, str]:
        """Root health check for infrastructure probes."""
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(
            content=PrometheusMetrics.generate_metrics(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app


__all__ = ["create_app", "router"]
