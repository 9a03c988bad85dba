"""Helpers for awaiting child processes and classifying their exit."""

import asyncio
import shlex
import subprocess
import sys
from collections.abc import Mapping, Sequence

from gitdeploy.errors import ProcessExecutionError


def describe(argv: Sequence[str] | str) -> str:
    if isinstance(argv, str):
        return argv
    return shlex.join(argv)


def raise_for_returncode(command: str, returncode: int) -> None:
    """Raise ProcessExecutionError unless the process exited with 0.

    Negative return codes (POSIX) mean the process was killed by a signal.
    """
    if returncode == 0:
        return
    if returncode < 0:
        raise ProcessExecutionError(command, signal=-returncode)
    raise ProcessExecutionError(command, returncode=returncode)


def check_call(
    argv: Sequence[str] | str,
    cwd: str,
    env: Mapping[str, str] | None = None,
    shell: bool = False,
) -> None:
    """Run a command to completion with inherited stdio.

    Our own buffered output is flushed first so it stays in order with the
    child's output in the build log.
    """
    sys.stdout.flush()
    sys.stderr.flush()
    completed = subprocess.run(
        argv,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        shell=shell,
        check=False,
    )
    raise_for_returncode(describe(argv), completed.returncode)


async def wait_process(process: asyncio.subprocess.Process, command: str) -> int:
    """Await an asyncio child process; raise ProcessExecutionError on failure."""
    returncode = await process.wait()
    raise_for_returncode(command, returncode)
    return returncode
