"""
Deployment descriptor, build metadata and the derived on-disk layout.

Persisted layout under the data root:

    private/{repo}/{target}/build.pid     lock file
    private/{repo}/{target}/src           checkout
    public/{repo}/{target}/build.json     build metadata
    public/{repo}/{target}/build.log      worker output
    www/{repoId}-{targetId}               symlink to the web root
"""

import os
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from gitdeploy.config import Command, Settings, normalize_commands
from gitdeploy.deploy.identifiers import flatten_url

BUILD_PID = "build.pid"
BUILD_DATA = "build.json"
BUILD_LOG = "build.log"
CHECKOUT_DIR = "src"


class Action(StrEnum):
    """What a build worker does for a target."""

    UPDATE = "update"
    REMOVE = "remove"


# Older metadata files may use these names.
_ACTION_ALIASES = {"create": Action.UPDATE, "delete": Action.REMOVE}


@dataclass(frozen=True)
class DeploymentPaths:
    """Everything on disk that belongs to one target.

    Pure function of the flattened repository and target path segments, so the
    dashboard can find a build without any index.
    """

    private_path: str
    public_path: str
    checkout_path: str
    url: str
    www_dst_path: str

    @classmethod
    def for_target(cls, settings: Settings, repo_path: str, target_path: str) -> "DeploymentPaths":
        private_path = os.path.join(settings.private_root, repo_path, target_path)
        url = f"{flatten_url(repo_path)}-{flatten_url(target_path)}"
        return cls(
            private_path=private_path,
            public_path=os.path.join(settings.public_root, repo_path, target_path),
            checkout_path=os.path.join(private_path, CHECKOUT_DIR),
            url=url,
            www_dst_path=os.path.join(settings.www_root, url),
        )

    @property
    def lock_file(self) -> str:
        return os.path.join(self.private_path, BUILD_PID)

    @property
    def metadata_file(self) -> str:
        return os.path.join(self.public_path, BUILD_DATA)

    @property
    def log_file(self) -> str:
        return os.path.join(self.public_path, BUILD_LOG)


class CamelModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RepositoryRef(CamelModel):
    name: str
    id: str
    path: str


class CommitInfo(CamelModel):
    """First commit of the pushed range, if the provider sent one."""

    id: str | None = None
    timestamp: datetime | None = None
    message: str = ""


class DeploymentDescriptor(CamelModel):
    """Fully resolved deployment intent for one incoming event."""

    repo: RepositoryRef
    ref: str
    name: str = Field(description="Interpolated target name")
    id: str = Field(description="Target name flattened for URLs")
    path: str = Field(description="Target name flattened for the filesystem")
    url: str = Field(description="Composite key {repoId}-{targetId}")

    private_path: str
    public_path: str
    checkout_path: str
    www_src_path: str | None = None
    www_dst_path: str | None = None

    git_url: str = ""
    checkout_sha: str = ""
    commit: CommitInfo = Field(default_factory=CommitInfo)
    message: str = ""
    action: Action = Action.UPDATE

    postupdate: list[Command] = Field(default_factory=list)
    postremove: list[Command] = Field(default_factory=list)

    secret: str | None = Field(default=None, exclude=True)

    @field_validator("action", mode="before")
    @classmethod
    def _map_action_alias(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _ACTION_ALIASES.get(value, value)
        return value

    @field_validator("postupdate", "postremove", mode="before")
    @classmethod
    def _coerce_commands(cls, value: Any) -> list[Any]:
        return normalize_commands(value)

    @property
    def lock_file(self) -> str:
        return os.path.join(self.private_path, BUILD_PID)

    @property
    def metadata_file(self) -> str:
        return os.path.join(self.public_path, BUILD_DATA)

    @property
    def log_file(self) -> str:
        return os.path.join(self.public_path, BUILD_LOG)

    @property
    def has_www(self) -> bool:
        return bool(self.www_src_path and self.www_dst_path)

    def with_action(self, action: Action) -> "DeploymentDescriptor":
        return self.model_copy(update={"action": action})


class BuildMetadata(DeploymentDescriptor):
    """Snapshot of a descriptor at launch time, persisted as build.json."""

    launched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_descriptor(cls, descriptor: DeploymentDescriptor) -> "BuildMetadata":
        return cls.model_validate(descriptor.model_dump(exclude={"launched_at"}))

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)

    def write(self, path: str | os.PathLike[str]) -> None:
        Path(path).write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def read(cls, path: str | os.PathLike[str]) -> "BuildMetadata":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))
