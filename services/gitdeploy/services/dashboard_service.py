"""Build status for the dashboard.

Reads the same files the launcher and worker write: build.json and build.log
in the public directory and the lock file in the private directory. Never
talks to a running worker except to send it SIGINT on cancel. A build whose
files are missing or unreadable is left out of listings.
"""

import os
import signal
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import aiofiles
from pydantic import ValidationError

from gitdeploy.config import Settings
from gitdeploy.deploy.identifiers import flatten_url
from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.deploy.lock import LivenessProbe, ProcessLock
from gitdeploy.deploy.models import (
    Action,
    BuildMetadata,
    DeploymentDescriptor,
    DeploymentPaths,
    RepositoryRef,
)
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActionMessage:
    """Result of a dashboard action (cancel / remove)."""

    body: str
    type: str = "success"


@dataclass(frozen=True)
class BuildSummary:
    repo_name: str
    repo_path: str
    name: str
    path: str
    id: str
    url: str
    log_url: str
    ref: str
    sha: str
    message: str
    committed_at: datetime | None
    updated_at: datetime
    running: bool = False
    progress: str | None = None
    frontend: bool = False

    @property
    def sort_key(self) -> float:
        return (self.committed_at or self.updated_at).timestamp()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["committed_at"] = self.committed_at.isoformat() if self.committed_at else None
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class ProjectSummary:
    name: str
    builds: list[BuildSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "builds": [b.to_dict() for b in self.builds]}


def is_valid_segment(name: str) -> bool:
    """A flattened repository or target directory name."""
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name


class DashboardService:
    """Read side of the build directories plus cancel/remove actions."""

    def __init__(self, settings: Settings, probe: LivenessProbe | None = None) -> None:
        self._settings = settings
        self._probe = probe

    def paths(self, repo_path: str, target_path: str) -> DeploymentPaths | None:
        if not (is_valid_segment(repo_path) and is_valid_segment(target_path)):
            return None
        return DeploymentPaths.for_target(self._settings, repo_path, target_path)

    def _lock(self, paths: DeploymentPaths) -> ProcessLock:
        return ProcessLock(
            paths.private_path,
            probe=self._probe,
            grace_seconds=self._settings.lock_grace_seconds,
        )

    def get_build(self, repo_path: str, target_path: str) -> BuildSummary | None:
        """Summary of one build, or None if its files can't be read."""
        paths = self.paths(repo_path, target_path)
        if paths is None:
            return None
        try:
            metadata = BuildMetadata.read(paths.metadata_file)
            log_mtime = os.stat(paths.log_file).st_mtime
        except (OSError, ValueError, ValidationError) as e:
            logger.debug(
                "Skipping unreadable build", repo=repo_path, target=target_path, error=str(e)
            )
            return None

        status = self._lock(paths).status()
        running = bool(status and status.running)
        progress = f"Building for {status.idle_seconds:.1f} seconds" if running else None

        return BuildSummary(
            repo_name=metadata.repo.name,
            repo_path=repo_path,
            name=metadata.name,
            path=target_path,
            id=metadata.id,
            url=metadata.url,
            log_url=f"log/{repo_path}/{target_path}",
            ref=metadata.ref,
            sha=metadata.checkout_sha,
            message=metadata.message or metadata.commit.message,
            committed_at=metadata.commit.timestamp,
            updated_at=datetime.fromtimestamp(log_mtime, tz=UTC),
            running=running,
            progress=progress,
            # Link is disabled while building
            frontend=metadata.has_www and not running,
        )

    def _list_dirs(self, path: str) -> list[str]:
        try:
            return sorted(
                entry.name
                for entry in os.scandir(path)
                if entry.is_dir(follow_symlinks=False)
            )
        except OSError as e:
            logger.debug("Cannot list directory", path=path, error=str(e))
            return []

    def list_projects(self) -> list[ProjectSummary]:
        """All repositories with their readable builds, newest commit first."""
        projects = []
        for repo_path in self._list_dirs(str(self._settings.public_root)):
            builds = [
                build
                for target_path in self._list_dirs(
                    os.path.join(self._settings.public_root, repo_path)
                )
                if (build := self.get_build(repo_path, target_path)) is not None
            ]
            builds.sort(key=lambda b: b.sort_key, reverse=True)
            projects.append(ProjectSummary(name=repo_path, builds=builds))
        return projects

    def list_builds(self) -> list[BuildSummary]:
        builds = [b for project in self.list_projects() for b in project.builds]
        return sorted(builds, key=lambda b: b.sort_key, reverse=True)

    async def read_log(self, repo_path: str, target_path: str) -> str | None:
        paths = self.paths(repo_path, target_path)
        if paths is None:
            return None
        try:
            async with aiofiles.open(paths.log_file, "rb") as f:
                data = await f.read()
        except OSError:
            return None
        return data.decode("utf-8", errors="replace")

    def cancel_build(self, repo_path: str, target_path: str) -> ActionMessage:
        """Send SIGINT to a running build worker."""
        paths = self.paths(repo_path, target_path)
        status = self._lock(paths).status() if paths else None
        if status is None or not status.running or status.pid <= 0:
            return ActionMessage("Build not running.", "warning")
        try:
            os.kill(status.pid, signal.SIGINT)
        except ProcessLookupError:
            return ActionMessage("Build not running.", "warning")
        logger.info("Build canceled", repo=repo_path, target=target_path, pid=status.pid)
        return ActionMessage("Build canceled.")

    def removal_descriptor(
        self, repo_path: str, target_path: str
    ) -> DeploymentDescriptor | None:
        """A remove descriptor from the stored metadata, or from the derived paths."""
        paths = self.paths(repo_path, target_path)
        if paths is None:
            return None
        try:
            return BuildMetadata.read(paths.metadata_file).with_action(Action.REMOVE)
        except (OSError, ValueError, ValidationError):
            pass

        if not (
            os.path.exists(paths.private_path)
            or os.path.exists(paths.public_path)
            or os.path.islink(paths.www_dst_path)
        ):
            return None

        return DeploymentDescriptor(
            repo=RepositoryRef(name=repo_path, id=flatten_url(repo_path), path=repo_path),
            ref="",
            name=target_path,
            id=flatten_url(target_path),
            path=target_path,
            url=paths.url,
            private_path=paths.private_path,
            public_path=paths.public_path,
            checkout_path=paths.checkout_path,
            www_dst_path=paths.www_dst_path,
            action=Action.REMOVE,
        )

    def remove_build(
        self, repo_path: str, target_path: str, launcher: DeploymentLauncher
    ) -> ActionMessage:
        """Schedule a remove run for the build."""
        descriptor = self.removal_descriptor(repo_path, target_path)
        if descriptor is None:
            return ActionMessage("Build not found.", "warning")
        status = launcher.lock_for(descriptor.private_path).status()
        if status is not None and status.running:
            return ActionMessage("Build is running. Cancel it first.", "warning")
        launcher.schedule(descriptor)
        logger.info("Build removal scheduled", repo=repo_path, target=target_path)
        return ActionMessage("Build removal scheduled.")
