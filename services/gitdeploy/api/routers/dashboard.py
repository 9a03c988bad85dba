"""Dashboard data endpoints (JSON and plain-text logs).

Endpoints:
    GET    {dashboard_prefix}/projects
    GET    {dashboard_prefix}/builds
    GET    {dashboard_prefix}/log/{repo}/{target}
    POST   {dashboard_prefix}/builds/{repo}/{target}/cancel
    DELETE {dashboard_prefix}/builds/{repo}/{target}
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from gitdeploy.api.dependencies import get_dashboard, get_launcher
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.logging_config import get_logger
from gitdeploy.services.dashboard_service import DashboardService

router = APIRouter(tags=["dashboard"])
logger = get_logger(__name__)

Dashboard = Annotated[DashboardService, Depends(get_dashboard)]


@router.get("/projects")
async def list_projects(dashboard: Dashboard) -> dict[str, Any]:
    projects = dashboard.list_projects()
    return {"result": 0, "projects": [p.to_dict() for p in projects]}


@router.get("/builds")
async def list_builds(dashboard: Dashboard) -> dict[str, Any]:
    return {"builds": [b.to_dict() for b in dashboard.list_builds()]}


@router.get("/log/{repo}/{target}", response_class=PlainTextResponse)
async def get_log(repo: str, target: str, dashboard: Dashboard) -> PlainTextResponse:
    content = await dashboard.read_log(repo, target)
    if content is None:
        raise HTTPException(status_code=404, detail="Log not found")
    return PlainTextResponse(content)


@router.post("/builds/{repo}/{target}/cancel")
async def cancel_build(repo: str, target: str, dashboard: Dashboard) -> dict[str, str]:
    message = dashboard.cancel_build(repo, target)
    return {"type": message.type, "body": message.body}


@router.delete("/builds/{repo}/{target}")
async def remove_build(
    repo: str,
    target: str,
    dashboard: Dashboard,
    launcher: Annotated[DeploymentLauncher, Depends(get_launcher)],
) -> dict[str, str]:
    message = dashboard.remove_build(repo, target, launcher)
    return {"type": message.type, "body": message.body}
