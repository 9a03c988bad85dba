"""
Configuration management for git-deploy.

Repository and target definitions plus server settings are loaded from a YAML
file, with environment variables taking precedence. The resulting Settings
object is built once at startup and passed explicitly to every component.
"""

import os
import re
import shlex
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ImportString,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from gitdeploy.errors import ConfigurationError

CONFIG_FILE_ENV = "GITDEPLOY_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "/etc/gitdeploy/config.yaml"

# Entries whose program ends with this suffix run with the service's own interpreter.
SCRIPT_SUFFIX = ".py"


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE))
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- Post-update / post-remove commands ---


class ScriptCommand(BaseModel):
    """A Python script run with the same interpreter as the service."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["script"] = "script"
    path: str
    args: list[str] = Field(default_factory=list)

    def describe(self) -> str:
        return shlex.join([self.path, *self.args])


class ShellCommand(BaseModel):
    """A command line run through the shell."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["shell"] = "shell"
    command: str
    args: list[str] = Field(default_factory=list)

    def command_line(self) -> str:
        if not self.args:
            return self.command
        return " ".join([self.command, *(shlex.quote(a) for a in self.args)])

    def describe(self) -> str:
        return self.command_line()


Command = Annotated[ScriptCommand | ShellCommand, Field(discriminator="kind")]


def _command_from_argv(program: str, args: Sequence[Any]) -> ScriptCommand | ShellCommand:
    str_args = [str(a) for a in args]
    if program.endswith(SCRIPT_SUFFIX):
        return ScriptCommand(path=program, args=str_args)
    return ShellCommand(command=program, args=str_args)


def parse_command(entry: Any) -> Any:
    """Turn one configured command entry into a Script or Shell command.

    Accepts a command string, an argv list, an explicit mapping
    ({script: ..} / {shell: ..}), or an already parsed command.
    """
    if isinstance(entry, ScriptCommand | ShellCommand):
        return entry

    if isinstance(entry, dict):
        if "kind" in entry:
            return entry
        if "script" in entry:
            return ScriptCommand(path=entry["script"], args=entry.get("args", []))
        if "shell" in entry:
            return ShellCommand(command=entry["shell"], args=entry.get("args", []))
        raise ValueError(f"Command mapping needs a 'script' or 'shell' key: {entry!r}")

    if isinstance(entry, str):
        if not entry.strip():
            raise ValueError("Empty command string")
        tokens = shlex.split(entry)
        if tokens[0].endswith(SCRIPT_SUFFIX):
            return ScriptCommand(path=tokens[0], args=tokens[1:])
        return ShellCommand(command=entry)

    if isinstance(entry, list | tuple):
        if not entry:
            raise ValueError("Empty command list")
        return _command_from_argv(str(entry[0]), entry[1:])

    raise ValueError(f"Unsupported command entry: {entry!r}")


def normalize_commands(value: Any) -> list[Any]:
    """A single entry or a list of entries becomes a list of commands."""
    if value is None:
        return []
    if isinstance(value, str | dict | ScriptCommand | ShellCommand):
        value = [value]
    return [parse_command(entry) for entry in value]


# --- Ref matching rules ---


class LiteralMatch(BaseModel):
    """Matches a ref by exact string equality."""

    kind: Literal["literal"] = "literal"
    value: str

    def captures(self, ref: str) -> list[str] | None:
        return [ref] if ref == self.value else None


class RegexMatch(BaseModel):
    """Matches a ref against a regular expression (search semantics)."""

    kind: Literal["regex"] = "regex"
    regex: re.Pattern[str]

    def captures(self, ref: str) -> list[str] | None:
        match = self.regex.search(ref)
        if match is None:
            return None
        return [match.group(0), *(group or "" for group in match.groups())]


class PredicateMatch(BaseModel):
    """Matches a ref with a custom callable returning captures or None."""

    kind: Literal["predicate"] = "predicate"
    predicate: ImportString[Callable[[str], Any]]

    def captures(self, ref: str) -> list[str] | None:
        result = self.predicate(ref)
        if result is None or result is False:
            return None
        if result is True:
            return [ref]
        if isinstance(result, str):
            return [result]
        return [str(item) for item in result]


MatchRule = Annotated[LiteralMatch | RegexMatch | PredicateMatch, Field(discriminator="kind")]


def _normalize_match(value: Any) -> Any:
    if isinstance(value, str):
        return {"kind": "literal", "value": value}
    if isinstance(value, re.Pattern):
        return {"kind": "regex", "regex": value}
    if isinstance(value, dict) and "kind" not in value:
        if "regex" in value:
            return {"kind": "regex", **value}
        if "predicate" in value:
            return {"kind": "predicate", **value}
        if "value" in value:
            return {"kind": "literal", **value}
    if callable(value) and not isinstance(value, BaseModel):
        return {"kind": "predicate", "predicate": value}
    return value


# --- Repository configuration ---


class TargetConfig(BaseModel):
    """A deployable target: ref rule, path template, web root and hooks."""

    match: MatchRule
    path: str = Field(description="Target path template; may reference captures as %N")
    www: str | None = Field(
        default=None,
        description="Web root relative to the checkout; linked into the www directory",
    )
    postupdate: list[Command] = Field(default_factory=list)
    postremove: list[Command] = Field(default_factory=list)

    @field_validator("match", mode="before")
    @classmethod
    def _coerce_match(cls, value: Any) -> Any:
        return _normalize_match(value)

    @field_validator("postupdate", "postremove", mode="before")
    @classmethod
    def _coerce_commands(cls, value: Any) -> list[Any]:
        return normalize_commands(value)

    @field_validator("path")
    @classmethod
    def _path_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Target path template must not be empty")
        return value


class RepositoryConfig(BaseModel):
    """A repository keyed by the provider's namespaced identifier."""

    name: str = Field(default="", description="Display name (falls back to the key)")
    secret: str | None = Field(default=None, description="Shared webhook secret")
    targets: list[TargetConfig] = Field(min_length=1)


# --- Main Settings ---


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="GITDEPLOY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="git-deploy")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080)
    gitlab_prefix: str = Field(default="/hooks/gitlab")
    dashboard_prefix: str = Field(default="/dashboard")
    dashboard_enabled: bool = Field(default=True)

    # Data layout
    data_root: Path = Field(
        default=Path("/opt/git-deploy"),
        description="Root for checkouts, build logs and the www directory",
    )
    private_dir: str = Field(default="private", description="Checkouts and lock files")
    public_dir: str = Field(default="public", description="Build metadata and logs")
    www_dir: str = Field(default="www", description="Web root symlinks")

    # Locking
    lock_grace_seconds: float = Field(
        default=30.0,
        description="How long a lock still holding the pid 0 placeholder counts as live",
    )

    # Fallback secret for repositories without their own
    secret: str = Field(default="")

    # Repositories keyed by provider path, e.g. "mygroup/fancy-app"
    repos: dict[str, RepositoryConfig] = Field(default_factory=dict)

    @field_validator("data_root")
    @classmethod
    def _absolute_data_root(cls, value: Path) -> Path:
        return Path(os.path.normpath(value.expanduser().absolute()))

    @property
    def private_root(self) -> Path:
        return self.data_root / self.private_dir

    @property
    def public_root(self) -> Path:
        return self.data_root / self.public_dir

    @property
    def www_root(self) -> Path:
        return self.data_root / self.www_dir

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


def load_settings(**overrides: Any) -> Settings:
    """Build the settings once at startup.

    Raises ConfigurationError for malformed repository/target definitions.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid configuration file: {e}") from e
