"""
Main FastAPI application entry point.

This module sets up the FastAPI app with all middleware, routes, and lifecycle events.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hookrelay import __version__
from hookrelay.api import admin_router, healthz_router, metrics_router, webhook_router
from hookrelay.config import Settings, get_settings
from hookrelay.core.alerts import AlertDeduplicator, SlackAlerter
from hookrelay.core.auth import TenantRateLimiter
from hookrelay.core.cache import ExpiringCache
from hookrelay.core.converter import LegacyIdConverter
from hookrelay.core.exceptions import RelayException
from hookrelay.core.forwarder import WebhookForwarder
from hookrelay.core.metrics import MetricsCollector
from hookrelay.core.resolver import TenantResolver
from hookrelay.core.store import InMemoryTenantStore


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    # Silence the verbose watchfiles logger
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler() -> Any:
    """Create the lifespan handler that wires the relay components."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Builds shared components on startup and closes their sessions and
        background tasks on shutdown.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting hookrelay service", version=app.version)

        # Settings are read at startup so tests can reload them
        settings: Settings = get_settings()
        app.state.settings = settings

        metrics = MetricsCollector()
        app.state.metrics = metrics

        cache: ExpiringCache = ExpiringCache(
            ttl_seconds=settings.cache.ttl_seconds,
            sweep_interval_seconds=settings.cache.sweep_interval_seconds,
        )
        app.state.cache = cache
        await cache.start_sweeper()

        store = InMemoryTenantStore.from_settings(settings.tenants)
        app.state.tenant_store = store
        app.state.resolver = TenantResolver.build(
            cache=cache,
            store=store,
            env_prefix=settings.tenants.env_override_prefix,
            store_timeout_seconds=settings.tenants.store_timeout_seconds,
            metrics=metrics,
        )

        forwarder = WebhookForwarder(settings.forwarder, metrics=metrics)
        app.state.forwarder = forwarder
        await forwarder.start()

        converter = LegacyIdConverter(
            settings.conversion.base_url,
            timeout_seconds=settings.conversion.timeout_seconds,
            metrics=metrics,
        )
        app.state.converter = converter
        await converter.start()

        alerter = SlackAlerter(
            settings.alerts,
            deduplicator=AlertDeduplicator(settings.alerts.dedup_window_seconds),
        )
        app.state.alerter = alerter
        await alerter.start()

        app.state.rate_limiter = (
            TenantRateLimiter() if settings.security.enforce_tenant_rate_limit else None
        )

        try:
            logger.info("hookrelay service started successfully")
            yield
        finally:
            logger.info("Shutting down hookrelay service")

            await alerter.stop()
            await converter.stop()
            await forwarder.stop()
            await cache.stop_sweeper()

            logger.info("hookrelay service shutdown complete")

    return lifespan


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function ensures all configuration is applied
    whether running via FastAPI CLI or direct execution.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="hookrelay",
        description="Multi-tenant webhook relay",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(),
    )
    return app


# Create the app instance
app = create_app()


@app.middleware("http")
async def log_requests(request: Request, call_next: Any) -> Any:
    """Log every request with its status and latency."""
    logger = structlog.get_logger(__name__)
    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    logger.info(
        "Request handled",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2),
    )

    metrics = getattr(request.app.state, "metrics", None)
    if metrics:
        metrics.record_request(request.method, endpoint, response.status_code, duration)
    return response


@app.exception_handler(RelayException)
async def relay_exception_handler(request: Request, exc: RelayException) -> JSONResponse:
    """Handle relay exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Relay exception occurred",
        error=str(exc),
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    headers = {}

    # Add Retry-After header for rate limit errors
    if exc.status_code == 429 and "retry_after" in exc.details:
        headers["Retry-After"] = str(exc.details["retry_after"])

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
        headers=headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions and raise a best-effort alert."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    alerter = getattr(request.app.state, "alerter", None)
    if alerter is not None:
        alerter.notify(f":rotating_light: Panic on {request.method} {request.url.path}: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


# Include routers
app.include_router(webhook_router, tags=["webhook"])
app.include_router(admin_router, tags=["admin"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(healthz_router, tags=["health"])


@app.get("/", include_in_schema=False)
async def root() -> Dict[str, Any]:
    """Root endpoint with service information."""
    return {
        "service": "hookrelay",
        "version": app.version,
        "status": "ok",
        "endpoints": [
            "GET /healthz",
            "GET /readyz",
            "GET /metrics",
            "POST /webhook/{secretId}",
            "GET /api/clients/by-secret/{secretId}",
            "POST /admin/cache/purge/{secretId}",
        ],
    }


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "hookrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
