"""
File-based mutual exclusion for builds.

One lock file per target's private directory. The file holds the worker's pid
(0 while the worker is being spawned); its mtime is the build's start time.
Presence of the file plus a live pid means a build is in flight. A file whose
pid is dead is a stale lock: it is reported as not running and overwritten by
the next launch, but never deleted by a status check.
"""

import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from gitdeploy.deploy.models import BUILD_PID
from gitdeploy.errors import ConcurrencyConflictError
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_GRACE_SECONDS = 30.0


class LivenessProbe(Protocol):
    """Checks whether a process id refers to a live process."""

    def is_alive(self, pid: int) -> bool: ...


class SignalProbe:
    """Liveness via signal 0, which checks the pid without affecting it."""

    def is_alive(self, pid: int) -> bool:
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, but owned by someone else
            return True
        return True


@dataclass(frozen=True)
class LockStatus:
    """What the lock file says about a target."""

    pid: int
    started_at: float
    running: bool

    @property
    def idle_seconds(self) -> float:
        return max(0.0, time.time() - self.started_at)


class ProcessLock:
    """Lock file at {private_path}/build.pid."""

    def __init__(
        self,
        private_path: str | os.PathLike[str],
        probe: LivenessProbe | None = None,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self.private_path = os.fspath(private_path)
        self.lock_file = os.path.join(self.private_path, BUILD_PID)
        self._probe = probe or SignalProbe()
        self._grace_seconds = grace_seconds
        # (inode, mtime) of the placeholder this instance wrote
        self._placeholder: tuple[int, int] | None = None

    def status(self) -> LockStatus | None:
        """Read the lock file; None if there is none."""
        try:
            started_at = os.stat(self.lock_file).st_mtime
            content = Path(self.lock_file).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

        try:
            pid = int(content or 0)
        except ValueError:
            logger.warning("Unreadable lock file", lock_file=self.lock_file)
            pid = 0

        if pid == 0:
            # Placeholder written just before spawning the worker
            running = time.time() - started_at < self._grace_seconds
        else:
            running = self._probe.is_alive(pid)
        return LockStatus(pid=pid, started_at=started_at, running=running)

    def acquire(self) -> "ProcessLock":
        """Take the lock by writing the pid 0 placeholder.

        Raises ConcurrencyConflictError if a live build holds the lock. A stale
        lock is overwritten.
        """
        os.makedirs(self.private_path, exist_ok=True)
        try:
            fd = os.open(self.lock_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            current = self.status()
            if current is not None and current.running:
                raise ConcurrencyConflictError(
                    self.private_path, current.pid, current.idle_seconds
                ) from None
            if current is not None:
                logger.warning(
                    "Overwriting stale lock", lock_file=self.lock_file, stale_pid=current.pid
                )
            self._write(0)
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("0")

        st = os.stat(self.lock_file)
        self._placeholder = (st.st_ino, st.st_mtime_ns)
        return self

    def record_pid(self, pid: int) -> bool:
        """Replace the placeholder with the real worker pid.

        Only the placeholder written by this instance's acquire() is replaced.
        Does nothing if the worker has already removed the lock, or if another
        launch has taken it since.
        """
        try:
            with open(self.lock_file, "r+", encoding="utf-8") as f:
                st = os.fstat(f.fileno())
                ours = (st.st_ino, st.st_mtime_ns) == self._placeholder
                if not ours or f.read().strip() != "0":
                    logger.warning(
                        "Lock taken over, pid not recorded", lock_file=self.lock_file, pid=pid
                    )
                    return False
                f.seek(0)
                f.truncate()
                f.write(str(pid))
        except FileNotFoundError:
            logger.debug("Lock already released", lock_file=self.lock_file, pid=pid)
            return False
        return True

    def release(self) -> None:
        try:
            os.unlink(self.lock_file)
        except FileNotFoundError:
            pass

    @contextmanager
    def held(self) -> Iterator["ProcessLock"]:
        """Guarantee release on every exit path of the block."""
        try:
            yield self
        finally:
            self.release()

    def _write(self, pid: int) -> None:
        with open(self.lock_file, "w", encoding="utf-8") as f:
            f.write(str(pid))
