"""
Build launcher: lock, spawn and supervise the worker.

Each accepted deployment runs as a background task that takes the target's
lock, writes build.json, spawns the build worker as an independent process
with its output appended to build.log, and awaits its exit. Nothing here
raises to the caller: the webhook has already been answered, so outcomes are
only logged.

The worker removes the lock itself when it exits; the launcher only removes it
when setup fails before the worker exists.
"""

import asyncio
import os
import sys
from collections.abc import Sequence

from gitdeploy.config import Settings
from gitdeploy.deploy.lock import LivenessProbe, ProcessLock
from gitdeploy.deploy.models import BuildMetadata, DeploymentDescriptor
from gitdeploy.deploy.process import describe, wait_process
from gitdeploy.errors import ConcurrencyConflictError, ProcessExecutionError
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)

WORKER_MODULE = "gitdeploy.worker"


class DeploymentLauncher:
    """Runs build workers for resolved deployments."""

    def __init__(
        self,
        settings: Settings,
        probe: LivenessProbe | None = None,
        worker_command: Sequence[str] | None = None,
    ) -> None:
        self._settings = settings
        self._probe = probe
        self._worker_command = list(worker_command or [sys.executable, "-m", WORKER_MODULE])
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def lock_for(self, private_path: str) -> ProcessLock:
        return ProcessLock(
            private_path,
            probe=self._probe,
            grace_seconds=self._settings.lock_grace_seconds,
        )

    async def launch(self, descriptor: DeploymentDescriptor) -> bool:
        """Run one build to completion. Returns True if the worker succeeded."""
        log = logger.bind(target=descriptor.url, action=str(descriptor.action))
        lock = self.lock_for(descriptor.private_path)
        acquired = False
        argv = [*self._worker_command, descriptor.metadata_file]

        try:
            os.makedirs(descriptor.private_path, exist_ok=True)
            os.makedirs(descriptor.public_path, exist_ok=True)

            lock.acquire()
            acquired = True

            BuildMetadata.from_descriptor(descriptor).write(descriptor.metadata_file)

            with open(descriptor.log_file, "ab") as logfile:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=descriptor.private_path,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=logfile,
                    stderr=asyncio.subprocess.STDOUT,
                    start_new_session=True,
                )
            lock.record_pid(process.pid)
        except ConcurrencyConflictError as e:
            log.warning("Deployment rejected", error=str(e), pid=e.pid)
            return False
        except Exception as e:
            log.error("Failed to start build worker", error=str(e), exc_info=e)
            if acquired:
                lock.release()
            return False

        log.info(
            "Build worker started",
            pid=process.pid,
            sha=descriptor.checkout_sha,
            log_file=descriptor.log_file,
        )

        try:
            await wait_process(process, describe(argv))
        except ProcessExecutionError as e:
            log.error(
                "Build failed",
                pid=process.pid,
                returncode=e.returncode,
                signal=e.signal,
                log_file=descriptor.log_file,
            )
            return False
        except asyncio.CancelledError:
            log.warning("Stopped supervising build worker", pid=process.pid)
            raise

        log.info("Build finished", pid=process.pid)
        return True

    def schedule(self, descriptor: DeploymentDescriptor) -> asyncio.Task[bool]:
        """Launch in the background; the caller does not wait for the build."""
        task = asyncio.create_task(self.launch(descriptor), name=f"deploy:{descriptor.url}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[bool]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Deployment task failed", task=task.get_name(), error=str(exc))

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait briefly for supervising tasks; the workers themselves keep running."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Detached from running builds", count=len(pending))
