"""
FastAPI dependencies.

Components are built once in create_app() and kept on app.state; these
helpers hand them to route handlers.
"""

from fastapi import Request

from gitdeploy.config import Settings
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.deploy.resolver import TargetResolver
from gitdeploy.services.dashboard_service import DashboardService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_resolver(request: Request) -> TargetResolver:
    return request.app.state.resolver


def get_launcher(request: Request) -> DeploymentLauncher:
    return request.app.state.launcher


def get_dashboard(request: Request) -> DashboardService:
    return request.app.state.dashboard
