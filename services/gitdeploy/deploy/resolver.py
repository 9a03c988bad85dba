"""
Target resolution from (repository, ref) to a deployment descriptor.

Targets of a repository are evaluated in configuration order and the first
match wins. The target's path template is interpolated with the match's
captures (%1, %2, ...; %% for a literal percent sign) and flattened into the
identifiers used on disk and in URLs.
"""

import os
import re
from collections.abc import Sequence

from gitdeploy.config import RepositoryConfig, Settings, TargetConfig
from gitdeploy.deploy.identifiers import flatten_path, flatten_url
from gitdeploy.deploy.models import (
    Action,
    CommitInfo,
    DeploymentDescriptor,
    DeploymentPaths,
    RepositoryRef,
)
from gitdeploy.errors import ConfigurationError
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)

# For interpolation of match results
_INTERPOLATION = re.compile(r"%(%|[0-9]+)")

# Flattened names that would escape or alias the parent directory
_RESERVED_SEGMENTS = frozenset({"", ".", ".."})


def interpolate(template: str, captures: Sequence[str]) -> str:
    """Replace %N with captures[N] and %% with a literal %.

    Index 0 is the whole match, so %1 is the first capture group.
    """

    def _replace(match: re.Match[str]) -> str:
        token = match.group(1)
        if token == "%":
            return "%"
        index = int(token)
        if index >= len(captures):
            raise ConfigurationError(
                f"Path template {template!r} references %{index}, "
                f"but the match only produced {len(captures)} capture(s)"
            )
        return captures[index]

    return _INTERPOLATION.sub(_replace, template)


def check_repository_ids(repos: dict[str, RepositoryConfig]) -> None:
    """Reject repositories whose flattened identifiers collide."""
    seen_ids: dict[str, str] = {}
    seen_paths: dict[str, str] = {}
    for key in repos:
        repo_id = flatten_url(key)
        repo_path = flatten_path(key)
        if repo_id in seen_ids:
            raise ConfigurationError(
                f"Repository {key!r} has the same id {repo_id!r} as {seen_ids[repo_id]!r}"
            )
        if repo_path in seen_paths:
            raise ConfigurationError(
                f"Repository {key!r} has the same path {repo_path!r} as {seen_paths[repo_path]!r}"
            )
        if repo_path in _RESERVED_SEGMENTS:
            raise ConfigurationError(f"Repository key {key!r} is not a usable directory name")
        seen_ids[repo_id] = key
        seen_paths[repo_path] = key


class TargetResolver:
    """Holds the repository configuration and resolves incoming refs."""

    def __init__(self, settings: Settings) -> None:
        check_repository_ids(settings.repos)
        self._settings = settings
        self._repos: dict[str, tuple[str, RepositoryConfig]] = {
            flatten_url(key): (key, repo) for key, repo in settings.repos.items()
        }
        logger.info("Target resolver initialized", repositories=len(self._repos))

    def repository(self, repository_key: str) -> tuple[str, RepositoryConfig] | None:
        """Look up a repository by its provider key (compared flattened)."""
        return self._repos.get(flatten_url(repository_key))

    def match_target(
        self, repo: RepositoryConfig, ref: str
    ) -> tuple[TargetConfig, list[str]] | None:
        """Return the first target matching ref, with its captures."""
        for target in repo.targets:
            captures = target.match.captures(ref)
            if captures is not None:
                return target, captures
        return None

    def resolve(
        self,
        repository_key: str,
        ref: str,
        *,
        git_url: str = "",
        checkout_sha: str = "",
        commit: CommitInfo | None = None,
        message: str = "",
        action: Action = Action.UPDATE,
    ) -> DeploymentDescriptor | None:
        """Resolve an event to a descriptor; None when nothing is configured for it."""
        found = self.repository(repository_key)
        if found is None:
            return None
        key, repo = found

        matched = self.match_target(repo, ref)
        if matched is None:
            return None
        target, captures = matched

        repo_ref = RepositoryRef(
            name=repo.name or key,
            id=flatten_url(key),
            path=flatten_path(key),
        )

        name = interpolate(target.path, captures)
        path = flatten_path(name)
        if path in _RESERVED_SEGMENTS:
            raise ConfigurationError(
                f"Target path {target.path!r} resolves to unusable name {name!r} for ref {ref!r}"
            )

        paths = DeploymentPaths.for_target(self._settings, repo_ref.path, path)
        www_src_path = (
            os.path.normpath(os.path.join(paths.checkout_path, target.www))
            if target.www
            else None
        )
        if www_src_path and os.path.commonpath([www_src_path, paths.checkout_path]) != (
            paths.checkout_path
        ):
            raise ConfigurationError(f"Web root {target.www!r} points outside the checkout")

        return DeploymentDescriptor(
            repo=repo_ref,
            ref=ref,
            name=name,
            id=flatten_url(name),
            path=path,
            url=paths.url,
            private_path=paths.private_path,
            public_path=paths.public_path,
            checkout_path=paths.checkout_path,
            www_src_path=www_src_path,
            www_dst_path=paths.www_dst_path if www_src_path else None,
            git_url=git_url,
            checkout_sha=checkout_sha,
            commit=commit or CommitInfo(),
            message=message,
            action=action,
            postupdate=target.postupdate,
            postremove=target.postremove,
            secret=repo.secret or self._settings.secret or None,
        )
