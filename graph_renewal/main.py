"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from graph_renewal.logging_config import configure_logging, get_logger
from graph_renewal.middleware import ContextMiddleware, RequestLoggingMiddleware

VERSION = "0.1.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the renewal scheduler with the app and stop it on shutdown."""
    from graph_renewal.services.renewal_scheduler import get_renewal_scheduler

    logger.info("renewal_service_starting", version=VERSION)
    scheduler = get_renewal_scheduler()
    if os.getenv("RENEWAL_AUTOSTART", "true").lower() == "true":
        scheduler.start()
    else:
        logger.info("renewal_autostart_disabled")

    try:
        logger.info("renewal_service_started", status="ready")
        yield
    finally:
        logger.info("renewal_service_shutting_down")
        scheduler.stop()
        scheduler.orchestrator.shutdown()
        logger.info("renewal_service_stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    app = FastAPI(
        title="Graph Subscription Renewal",
        description="Keeps delegated credentials and change-notification subscriptions alive",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)
    app.add_middleware(ContextMiddleware)

    from graph_renewal.api.control import router as control_router

    app.include_router(control_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Liveness endpoint."""
        logger.debug("root_endpoint_called")
        return {
            "service": "graph-renewal",
            "status": "running",
            "version": VERSION,
        }

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Detailed health check."""
        from graph_renewal.repositories.user_registry import get_user_registry
        from graph_renewal.services.renewal_scheduler import get_renewal_scheduler

        stats = get_user_registry().get_statistics()
        return {
            "status": "healthy",
            "scheduler": get_renewal_scheduler().state.value,
            "users": str(stats["total_users"]),
            "subscriptions": str(stats["total_subscriptions"]),
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app


# Create app instance
app = create_app()
