# backoffice/main.py
from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

import sentry_sdk
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.core.config import settings
from backoffice.core.exceptions import BaseAPIException
from backoffice.core.logging import configure_structlog, get_structlog_logger
from backoffice.db.session import dispose_engine, get_sessionmaker
from backoffice.middleware.logging import LoggingMiddleware
from backoffice.middleware.rate_limiter import RateLimiterRegistry
from backoffice.middleware.request_id import RequestIdMiddleware
from backoffice.routes import external_orders, health, orders, payouts, postbacks
from backoffice.services.postback_dispatcher import (
    AiohttpPostbackSender,
    PostbackDispatcher,
    PostbackSender,
)
from backoffice.services.postback_queue import PostbackQueue

# Configure logging before creating app
configure_structlog()
logger = get_structlog_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the per-process services on startup and drain them on shutdown."""
    logger.info("application.starting", environment=settings.environment)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            integrations=[
                AsyncioIntegration(),
                FastApiIntegration(),
                StarletteIntegration(),
            ],
            traces_sample_rate=1.0 if settings.is_development else 0.1,
            send_default_pii=False,
        )
        logger.info("sentry.initialized")

    rate_limiters = RateLimiterRegistry()
    rate_limiters.start()
    app.state.rate_limiters = rate_limiters

    sender = app.state.postback_sender
    session_factory = app.state.session_factory or get_sessionmaker()
    dispatcher = PostbackDispatcher(session_factory, sender)
    postback_queue = PostbackQueue(dispatcher)
    postback_queue.start()
    app.state.postback_queue = postback_queue

    logger.info("application.started")
    yield

    logger.info("application.shutting_down")
    await postback_queue.stop()
    await rate_limiters.stop()
    if isinstance(sender, AiohttpPostbackSender):
        await sender.close()
    await dispose_engine()
    logger.info("application.shutdown_complete")


def _response_headers(request: Request, extra: Optional[Dict[str, str]] = None) -> Optional[Dict[str, str]]:
    """Rate-limit headers recorded for this request, overlaid with ``extra``."""
    headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
    headers.update(extra or {})
    return headers or None


async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Render API exceptions as ``{success: false, error, message, ...}``.

    Details of server faults are only logged outside development.
    """
    server_fault = exc.status_code >= 500
    log = logger.error if server_fault else logger.warning
    log(
        "api.exception",
        status_code=exc.status_code,
        code=exc.code,
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        details=exc.details if server_fault else None,
    )

    if server_fault and not settings.is_development:
        body = {"success": False, "error": exc.code, "message": exc.message}
    else:
        body = exc.to_body()

    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers=_response_headers(request, exc.headers),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = [
        {
            "loc": list(error.get("loc", [])),
            "msg": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]

    logger.warning(
        "validation.error",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "errors": errors,
        },
        headers=_response_headers(request),
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions with context; answer with a sanitized body."""
    error_id = f"err_{uuid.uuid4().hex[:12]}"

    logger.error(
        "unhandled.exception",
        error_id=error_id,
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        exc_info=exc,
    )

    body = {
        "success": False,
        "error": "INTERNAL_ERROR",
        "message": "Internal Server Error",
        "errorId": error_id,
    }
    if settings.is_development:
        body["detail"] = f"{type(exc).__name__}: {exc}"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
        headers=_response_headers(request, {"X-Error-ID": error_id}),
    )


def create_app(
    postback_sender: Optional[PostbackSender] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    app = FastAPI(
        title="Affiliate Back-Office API",
        version="1.0.0",
        description="Order ingestion, payout resolution and status postbacks",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.postback_sender = postback_sender or AiohttpPostbackSender()
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins(),
        allow_credentials=True,
        allow_methods=settings.methods(),
        allow_headers=settings.allowed_headers.split(","),
        expose_headers=[
            "X-Request-ID",
            "X-Response-Time",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(BaseAPIException, api_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(external_orders.router, prefix=settings.api_prefix)
    app.include_router(orders.router, prefix=settings.api_prefix)
    app.include_router(payouts.router, prefix=settings.api_prefix)
    app.include_router(postbacks.router, prefix=settings.api_prefix)

    if not settings.is_testing:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": app.title,
            "version": app.version,
            "environment": settings.environment,
            "docs": "/docs" if settings.is_development else None,
            "health": f"{settings.api_prefix}/health",
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn; logging stays with structlog."""
    uvicorn.run(
        "backoffice.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


logger.info("application.configured", environment=settings.environment)
