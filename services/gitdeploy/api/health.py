"""
Health check endpoints for git-deploy.

Provides /health (liveness) and /ready (readiness) endpoints.
"""

import os
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from gitdeploy.api.dependencies import get_launcher, get_settings
from gitdeploy.config import Settings
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.logging_config import get_logger

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness probe endpoint.

    Returns 200 if the server is running.
    """
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(
    response: Response,
    settings: Annotated[Settings, Depends(get_settings)],
    launcher: Annotated[DeploymentLauncher, Depends(get_launcher)],
) -> dict[str, str | int | dict[str, str]]:
    """Readiness probe endpoint.

    Checks that the data directories exist and are writable.
    """
    checks: dict[str, str] = {}
    for name, path in (
        ("private", settings.private_root),
        ("public", settings.public_root),
        ("www", settings.www_root),
    ):
        ok = os.path.isdir(path) and os.access(path, os.W_OK)
        checks[name] = "healthy" if ok else "unhealthy"

    all_healthy = all(v == "healthy" for v in checks.values())

    if not all_healthy:
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks, "pending_deployments": launcher.pending}
