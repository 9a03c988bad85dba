"""
Top-level test configuration for git-deploy.
"""

import logging
import os
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

# Ensure test-friendly defaults
os.environ.setdefault("GITDEPLOY_JSON_LOGS", "false")
os.environ.setdefault("GITDEPLOY_LOG_LEVEL", "DEBUG")
# Never pick up a config file from the host
os.environ["GITDEPLOY_CONFIG_FILE"] = "/nonexistent/gitdeploy-test-config.yaml"

from gitdeploy.config import Settings, load_settings  # noqa: E402

SERVICES_DIR = Path(__file__).resolve().parent.parent

REPOS = {
    "grp/app": {
        "name": "App",
        "targets": [
            {"match": {"regex": r"^refs\/tags\/rc(.+)$"}, "path": "%1", "www": "public"},
            {"match": "refs/heads/main", "path": "main"},
            {"match": {"regex": r"^refs/heads/(feature)/(.+)$"}, "path": "%1/%2"},
        ],
    },
    "grp/secret-app": {
        "secret": "s3cret",
        "targets": [{"match": "refs/heads/main", "path": "main"}],
    },
}


@pytest.fixture(autouse=True)
def restore_root_handlers():
    """configure_logging() points logging at the captured stdout of the current test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    yield
    root.handlers[:] = handlers


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def settings(data_root: Path) -> Settings:
    return load_settings(data_root=data_root, repos=REPOS)


@pytest.fixture
def worker_pythonpath(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make the package importable by spawned worker processes."""
    current = os.environ.get("PYTHONPATH")
    value = str(SERVICES_DIR) if not current else f"{SERVICES_DIR}{os.pathsep}{current}"
    monkeypatch.setenv("PYTHONPATH", value)


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


@pytest.fixture
def run_git() -> Callable[..., str]:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    return git


@pytest.fixture
def origin_repo(tmp_path: Path, run_git: Callable[..., str]) -> tuple[Path, str]:
    """A local repository with one commit containing public/index.html.

    Returns the repository path and the commit sha.
    """
    origin = tmp_path / "origin"
    origin.mkdir()
    run_git("init", "-q", cwd=origin)
    (origin / "public").mkdir()
    (origin / "public" / "index.html").write_text("<h1>hello</h1>\n")
    (origin / "README").write_text("app\n")
    run_git("add", ".", cwd=origin)
    run_git("commit", "-q", "-m", "initial", cwd=origin)
    return origin, run_git("rev-parse", "HEAD", cwd=origin)
