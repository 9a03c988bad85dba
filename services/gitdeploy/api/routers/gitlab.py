"""GitLab webhook receiver.

Validates the event, resolves it to a target and answers right away; the
build runs in the background after the response is sent.

Endpoints:
    POST {gitlab_prefix}   (GitLab push / tag push hook)
"""

import json
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from gitdeploy.api.dependencies import get_launcher, get_resolver
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.deploy.resolver import TargetResolver
from gitdeploy.errors import AuthenticationError, ConfigurationError, EventValidationError
from gitdeploy.logging_config import get_logger
from gitdeploy.services.webhook_service import (
    GitLabPushEvent,
    WebhookOutcome,
    handle_push_event,
)

router = APIRouter(tags=["gitlab"])
logger = get_logger(__name__)


@router.post("")
async def gitlab_webhook(
    request: Request,
    resolver: Annotated[TargetResolver, Depends(get_resolver)],
    launcher: Annotated[DeploymentLauncher, Depends(get_launcher)],
) -> Response:
    """Receive GitLab webhook events."""
    event_name = request.headers.get("X-Gitlab-Event")
    if not event_name:
        raise HTTPException(status_code=404, detail="Not Found")
    token = request.headers.get("X-Gitlab-Token")

    try:
        body = json.loads(await request.body())
        event = GitLabPushEvent.model_validate(body)
    except (ValueError, ValidationError) as e:
        logger.warning("Invalid webhook payload", gitlab_event=event_name, error=str(e))
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    try:
        result = handle_push_event(event, token, resolver)
    except EventValidationError as e:
        logger.warning("Rejected webhook event", gitlab_event=event_name, error=str(e))
        raise HTTPException(status_code=400, detail=str(e)) from e
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except ConfigurationError as e:
        logger.error("Target configuration error", gitlab_event=event_name, error=str(e))
        raise HTTPException(status_code=500, detail=str(e)) from e

    if result.outcome is WebhookOutcome.IGNORED or result.descriptor is None:
        return JSONResponse(content={"message": "ignored"})

    # Respond first; the launcher supervises the build on its own.
    launcher.schedule(result.descriptor)
    return JSONResponse(content={"message": "accepted", "target": result.descriptor.url})
