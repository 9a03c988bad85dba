"""Tests for the build launcher, with stand-in worker commands."""

import asyncio
import json
import os
import signal
import sys

import pytest

from gitdeploy.deploy.launcher import DeploymentLauncher
from gitdeploy.deploy.lock import ProcessLock
from gitdeploy.deploy.resolver import TargetResolver


def python_worker(code: str) -> list[str]:
    """A worker command that runs code; the metadata file arrives as sys.argv[1]."""
    return [sys.executable, "-c", code]


@pytest.fixture
def descriptor(settings):
    return TargetResolver(settings).resolve(
        "grp/app", "refs/heads/main", git_url="git@x:grp/app.git", checkout_sha="abc123"
    )


class TestLaunch:
    async def test_successful_build(self, settings, descriptor):
        launcher = DeploymentLauncher(
            settings, worker_command=python_worker("import sys; print('worker ran', sys.argv[1])")
        )

        assert await launcher.launch(descriptor) is True

        with open(descriptor.metadata_file) as f:
            assert json.load(f)["checkoutSha"] == "abc123"
        with open(descriptor.log_file) as f:
            assert f"worker ran {descriptor.metadata_file}" in f.read()

    async def test_records_worker_pid(self, settings, descriptor):
        launcher = DeploymentLauncher(settings, worker_command=python_worker("pass"))
        await launcher.launch(descriptor)

        # The stand-in worker leaves the lock behind, holding its pid
        status = ProcessLock(descriptor.private_path).status()
        assert status is not None
        assert status.pid > 0
        assert not status.running

    async def test_log_is_appended(self, settings, descriptor):
        launcher = DeploymentLauncher(settings, worker_command=python_worker("print('run')"))
        await launcher.launch(descriptor)
        ProcessLock(descriptor.private_path).release()
        await launcher.launch(descriptor)

        with open(descriptor.log_file) as f:
            assert f.read().count("run") == 2

    async def test_failed_build_returns_false(self, settings, descriptor):
        launcher = DeploymentLauncher(
            settings, worker_command=python_worker("import sys; sys.exit(3)")
        )
        assert await launcher.launch(descriptor) is False

    async def test_conflict_rejected(self, settings, descriptor):
        ProcessLock(descriptor.private_path).acquire()
        launcher = DeploymentLauncher(settings, worker_command=python_worker("pass"))

        assert await launcher.launch(descriptor) is False
        assert not os.path.exists(descriptor.metadata_file)

    async def test_spawn_failure_releases_lock(self, settings, descriptor, tmp_path):
        launcher = DeploymentLauncher(
            settings, worker_command=[str(tmp_path / "no-such-worker")]
        )

        assert await launcher.launch(descriptor) is False
        assert not os.path.exists(descriptor.lock_file)


class TestSchedule:
    async def test_schedule_does_not_wait(self, settings, descriptor):
        launcher = DeploymentLauncher(
            settings, worker_command=python_worker("import time; time.sleep(0.3)")
        )

        task = launcher.schedule(descriptor)
        assert not task.done()
        assert launcher.pending == 1

        assert await task is True
        await asyncio.sleep(0)
        assert launcher.pending == 0

    async def test_drain_detaches_from_running_worker(self, settings, descriptor):
        launcher = DeploymentLauncher(
            settings, worker_command=python_worker("import time; time.sleep(30)")
        )
        launcher.schedule(descriptor)
        # Let the worker start
        for _ in range(50):
            status = ProcessLock(descriptor.private_path).status()
            if status and status.pid > 0:
                break
            await asyncio.sleep(0.05)

        await launcher.drain(timeout=0.1)
        await asyncio.sleep(0)

        assert launcher.pending == 0
        status = ProcessLock(descriptor.private_path).status()
        assert status.running
        os.kill(status.pid, signal.SIGKILL)

    async def test_drain_without_tasks(self, settings):
        await DeploymentLauncher(settings).drain()
