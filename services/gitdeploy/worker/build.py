"""
Build worker state machine.

update:  START -> CHECKOUT -> HOOKS -> LINK -> DONE
remove:  START -> UNLINK -> HOOKS -> PURGE -> DONE

Any step may end the run in FAILED or CANCELLED instead.

The worker's only input is the build metadata file. The checkout is always
forced to exactly the requested commit, discarding local changes.
"""

import json
import os
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from gitdeploy.deploy.models import Action, BuildMetadata
from gitdeploy.deploy.process import check_call
from gitdeploy.deploy.safety import ensure_safe_for_rmtree, purge_tree
from gitdeploy.errors import BuildCancelledError, LinkConflictError, MetadataError
from gitdeploy.logging_config import get_logger
from gitdeploy.worker.commands import CommandRunner

logger = get_logger(__name__)

_ALWAYS_REQUIRED = ("privatePath", "publicPath")
_UPDATE_REQUIRED = ("checkoutPath", "gitUrl", "checkoutSha")


class BuildState(StrEnum):
    START = "start"
    CHECKOUT = "checkout"
    HOOKS = "hooks"
    LINK = "link"
    UNLINK = "unlink"
    PURGE = "purge"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _field(raw: dict[str, Any], alias: str) -> Any:
    """Read a camelCase key, falling back to its snake_case spelling."""
    if alias in raw:
        return raw[alias]
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in alias)
    return raw.get(snake)


def read_metadata_file(path: str | os.PathLike[str]) -> dict[str, Any]:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise MetadataError(f"Missing datafile: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise MetadataError(f"Unreadable datafile {path}: {e}") from e
    if not isinstance(raw, dict):
        raise MetadataError(f"Datafile {path} does not contain an object")
    return raw


def private_path_of(raw: dict[str, Any]) -> str | None:
    value = _field(raw, "privatePath")
    return value if isinstance(value, str) and value else None


def validate_metadata(raw: dict[str, Any]) -> BuildMetadata:
    """Check required fields before anything is touched on disk."""
    action = _field(raw, "action")
    if not action:
        raise MetadataError(f"Invalid or missing action: {action}")

    required = list(_ALWAYS_REQUIRED)
    if action in ("update", "create"):
        required += _UPDATE_REQUIRED
    elif action not in ("remove", "delete"):
        raise MetadataError(f"Invalid action {action}")

    for alias in required:
        value = _field(raw, alias)
        if not value:
            raise MetadataError(f"Invalid or missing {alias}: {value}")

    try:
        return BuildMetadata.model_validate(raw)
    except ValidationError as e:
        raise MetadataError(f"Invalid build metadata: {e}") from e


def load_metadata(path: str | os.PathLike[str]) -> BuildMetadata:
    return validate_metadata(read_metadata_file(path))


def git(*args: str, cwd: str) -> None:
    logger.info("Running git", command="git " + " ".join(args), cwd=cwd)
    check_call(["git", *args], cwd=cwd)


class BuildWorker:
    """Performs one build or removal, sequentially."""

    def __init__(self, metadata: BuildMetadata, metadata_file: str) -> None:
        self.metadata = metadata
        self.metadata_file = metadata_file
        self.state = BuildState.START
        self.history: list[BuildState] = [BuildState.START]

    def _enter(self, state: BuildState) -> None:
        self.state = state
        self.history.append(state)
        logger.info("Build step", step=str(state), target=self.metadata.url)

    def run(self) -> None:
        m = self.metadata
        try:
            match m.action:
                case Action.UPDATE:
                    self._update()
                case Action.REMOVE:
                    self._remove()
        except BuildCancelledError:
            self._enter(BuildState.CANCELLED)
            raise
        except Exception:
            self._enter(BuildState.FAILED)
            raise

        self._enter(BuildState.DONE)

    # --- update ---

    def _update(self) -> None:
        m = self.metadata
        os.makedirs(m.private_path, exist_ok=True)
        os.makedirs(m.public_path, exist_ok=True)

        self._enter(BuildState.CHECKOUT)
        self.checkout()

        self._enter(BuildState.HOOKS)
        CommandRunner(self.metadata_file, m.checkout_path).run_all(m.postupdate)

        if m.has_www:
            self._enter(BuildState.LINK)
            self.link()

    def checkout(self) -> None:
        """Clone or update the checkout, then hard-reset to the requested commit."""
        m = self.metadata
        checkout_path = m.checkout_path
        parent = os.path.dirname(checkout_path)
        os.makedirs(parent, exist_ok=True)

        if not os.path.isdir(checkout_path):
            git("clone", "--recursive", m.git_url, os.path.basename(checkout_path), cwd=parent)
        else:
            git("fetch", "origin", cwd=checkout_path)

        git("reset", "--hard", m.checkout_sha, cwd=checkout_path)
        git("submodule", "update", "--init", "--recursive", cwd=checkout_path)

    def link(self) -> None:
        """Point the www entry at the web root inside the checkout."""
        src = self.metadata.www_src_path
        dst = self.metadata.www_dst_path
        assert src is not None and dst is not None

        if os.path.lexists(dst) and not self.owns_link(dst):
            logger.error("Web root link belongs to another target", dst=dst, src=src)
            raise LinkConflictError(
                f"Refuse to replace {dst}: it does not point into this checkout"
            )

        os.makedirs(os.path.dirname(dst), exist_ok=True)
        tmp = f"{dst}.{os.getpid()}.tmp"
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        os.symlink(src, tmp)
        os.replace(tmp, dst)
        logger.info("Linked web root", src=src, dst=dst)

    def owns_link(self, dst: str) -> bool:
        """Whether dst is a symlink into this build's own checkout.

        Web link names can coincide across targets (`2.1` and `2-1` both map to
        `{repo}-2-1`), so a link is only replaced or removed by its owner.
        """
        if not os.path.islink(dst):
            return False
        checkout = os.path.realpath(self.metadata.checkout_path)
        target = os.path.realpath(dst)
        return os.path.commonpath([checkout, target]) == checkout

    # --- remove ---

    def _remove(self) -> None:
        m = self.metadata
        # Refuse before touching anything
        ensure_safe_for_rmtree(m.private_path)
        ensure_safe_for_rmtree(m.public_path)

        self._enter(BuildState.UNLINK)
        self.unlink()

        self._enter(BuildState.HOOKS)
        if os.path.isdir(m.checkout_path):
            cwd = m.checkout_path
        else:
            os.makedirs(m.private_path, exist_ok=True)
            cwd = m.private_path
        CommandRunner(self.metadata_file, cwd).run_all(m.postremove)

        self._enter(BuildState.PURGE)
        purge_tree(m.private_path)
        purge_tree(m.public_path)

    def unlink(self) -> None:
        dst = self.metadata.www_dst_path
        if not dst:
            return
        if not os.path.islink(dst):
            if os.path.exists(dst):
                logger.warning("Web root is not a symlink, leaving it", path=dst)
            return
        if not self.owns_link(dst):
            logger.error("Web root link belongs to another target, leaving it", path=dst)
            return
        try:
            os.unlink(dst)
        except FileNotFoundError:
            return
        logger.info("Removed web root link", path=dst)
