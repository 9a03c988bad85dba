"""GitLab push/tag-push event handling.

Turns a parsed webhook payload into a deployment decision: ignore it, reject
it, or accept it with a resolved descriptor. No HTTP and no side effects; the
router launches accepted deployments.
"""

import hmac
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from gitdeploy.deploy.models import Action, CommitInfo, DeploymentDescriptor
from gitdeploy.deploy.resolver import TargetResolver
from gitdeploy.errors import AuthenticationError, EventValidationError
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)

# These are the only events we deploy on
SUPPORTED_EVENTS = frozenset({"push", "tag_push"})


class GitLabProject(BaseModel):
    path_with_namespace: str = ""


class GitLabRepository(BaseModel):
    git_ssh_url: str = ""
    git_http_url: str = ""


class GitLabCommit(BaseModel):
    id: str | None = None
    timestamp: datetime | None = None
    message: str = ""


class GitLabPushEvent(BaseModel):
    """The parts of a GitLab push / tag push payload we use."""

    object_kind: str = ""
    ref: str = ""
    checkout_sha: str | None = None
    message: str | None = None
    project: GitLabProject | None = None
    repository: GitLabRepository | None = None
    commits: list[GitLabCommit] = Field(default_factory=list)


class WebhookOutcome(StrEnum):
    IGNORED = "ignored"
    ACCEPTED = "accepted"


@dataclass(frozen=True)
class WebhookResult:
    outcome: WebhookOutcome
    descriptor: DeploymentDescriptor | None = None
    reason: str = ""


def check_token(expected: str | None, token: str | None) -> None:
    """Compare the webhook token with the target's secret, if it has one."""
    if not expected:
        return
    if not hmac.compare_digest((token or "").encode(), expected.encode()):
        raise AuthenticationError("Invalid secret token.")


def handle_push_event(
    event: GitLabPushEvent, token: str | None, resolver: TargetResolver
) -> WebhookResult:
    """Validate a push event and resolve it to a deployment.

    Raises EventValidationError for malformed or unsupported events and
    AuthenticationError when the token does not match.
    """
    if event.repository is None or event.project is None:
        raise EventValidationError("Invalid data: Repository.")
    if not event.repository.git_ssh_url:
        raise EventValidationError("Invalid data: Url.")
    if event.object_kind not in SUPPORTED_EVENTS:
        raise EventValidationError(f"Can't handle event type {event.object_kind}")

    repository_key = event.project.path_with_namespace
    first_commit = event.commits[0] if event.commits else None
    commit = (
        CommitInfo(
            id=first_commit.id,
            timestamp=first_commit.timestamp,
            message=first_commit.message,
        )
        if first_commit
        else None
    )

    descriptor = resolver.resolve(
        repository_key,
        event.ref,
        git_url=event.repository.git_ssh_url,
        checkout_sha=event.checkout_sha or "",
        commit=commit,
        message=event.message or "",
        action=Action.UPDATE,
    )
    if descriptor is None:
        logger.debug("No target configured", repo=repository_key, ref=event.ref)
        return WebhookResult(WebhookOutcome.IGNORED, reason="no matching target")

    try:
        check_token(descriptor.secret, token)
    except AuthenticationError:
        logger.warning("Invalid webhook token", repo=repository_key, target=descriptor.url)
        raise

    # Empty when a branch or tag gets deleted
    if not event.checkout_sha:
        logger.info("Ignoring event without checkout sha", repo=repository_key, ref=event.ref)
        return WebhookResult(WebhookOutcome.IGNORED, reason="no checkout sha")

    logger.info(
        "Deployment accepted",
        repo=repository_key,
        ref=event.ref,
        target=descriptor.url,
        sha=descriptor.checkout_sha,
    )
    return WebhookResult(WebhookOutcome.ACCEPTED, descriptor=descriptor)
