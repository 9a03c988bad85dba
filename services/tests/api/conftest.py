"""
Shared fixtures for API tests.
"""

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from gitdeploy.api.app import create_app
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.deploy.models import DeploymentDescriptor


class RecordingLauncher(DeploymentLauncher):
    """Launcher that records scheduled deployments instead of running them."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.scheduled: list[DeploymentDescriptor] = []

    def schedule(self, descriptor):  # type: ignore[override]
        self.scheduled.append(descriptor)
        return None


@pytest.fixture
def launcher(settings) -> RecordingLauncher:
    return RecordingLauncher(settings)


@pytest.fixture
def app(settings, launcher) -> FastAPI:
    return create_app(settings, launcher=launcher)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient]:
    # Errors surface as responses, the way a real server returns them
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
