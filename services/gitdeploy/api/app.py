"""
FastAPI application factory for git-deploy.

Settings, resolver, launcher and dashboard are built once here and kept on
app.state, after logging is configured. The lifespan handler prepares the
data directories and, on shutdown, detaches from builds that are still running.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gitdeploy import __version__
from gitdeploy.config import Settings, load_settings
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.deploy.resolver import TargetResolver
from gitdeploy.logging_config import configure_logging, get_logger
from gitdeploy.services.dashboard_service import DashboardService

from .health import router as health_router

logger = get_logger(__name__)


def ensure_data_dirs(settings: Settings) -> None:
    for path in (settings.private_root, settings.public_root, settings.www_root):
        os.makedirs(path, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    settings: Settings = app.state.settings

    # Startup
    logger.info(
        "Starting git-deploy server",
        version=__version__,
        data_root=str(settings.data_root),
        repositories=len(settings.repos),
    )

    ensure_data_dirs(settings)
    logger.info("Data directories ready")

    yield

    # Shutdown
    logger.info("Shutting down git-deploy server")
    await app.state.launcher.drain()


def create_app(
    settings: Settings | None = None,
    launcher: DeploymentLauncher | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Raises ConfigurationError if the repository configuration is invalid.
    """
    if settings is None:
        settings = load_settings()
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    app = FastAPI(
        title="git-deploy",
        description="Webhook-triggered continuous deployment",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.resolver = TargetResolver(settings)
    app.state.launcher = launcher or DeploymentLauncher(settings)
    app.state.dashboard = DashboardService(settings)

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Ensure every request has a request ID for logging correlation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        structlog.contextvars.unbind_contextvars("request_id")

        return response

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # GitLab webhook receiver
    from gitdeploy.api.routers.gitlab import router as gitlab_router

    app.include_router(gitlab_router, prefix=settings.gitlab_prefix)

    # Dashboard data
    if settings.dashboard_enabled:
        from gitdeploy.api.routers.dashboard import router as dashboard_router

        app.include_router(dashboard_router, prefix=settings.dashboard_prefix)

    return app
