"""Guard for recursive deletes."""

import os
import shutil
from pathlib import Path, PurePath

from gitdeploy.errors import UnsafeRemovalError
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)

# Min number of path segments (below the root) a path needs before rm -rf is allowed.
MIN_PATH_PARTS_FOR_SAFE_RM = 3


def ensure_safe_for_rmtree(
    path: str | os.PathLike[str], min_parts: int = MIN_PATH_PARTS_FOR_SAFE_RM
) -> str:
    """Reject paths that are too short to be a build directory.

    Returns the normalized absolute path.
    """
    normalized = os.path.normpath(os.path.abspath(os.fspath(path)))
    pure = PurePath(normalized)
    segments = [part for part in pure.parts if part != pure.anchor]
    if len(segments) < min_parts:
        raise UnsafeRemovalError(
            f'Refuse to rm -rf on "{normalized}": Path does not contain enough parts.'
        )
    return normalized


def purge_tree(path: str | os.PathLike[str]) -> bool:
    """Recursively delete a directory after the guard accepts it.

    A missing directory is not an error. Returns whether anything was removed.
    """
    target = Path(ensure_safe_for_rmtree(path))
    try:
        shutil.rmtree(target)
    except FileNotFoundError:
        logger.debug("Nothing to remove", path=str(target))
        return False
    logger.info("Removed directory", path=str(target))
    return True
