"""Runs post-update / post-remove command lists for a build."""

import os
import sys
from collections.abc import Iterable

from gitdeploy.config import ScriptCommand, ShellCommand
from gitdeploy.deploy.process import check_call
from gitdeploy.logging_config import get_logger

logger = get_logger(__name__)

# Points commands at the build metadata of the running build.
DATA_FILE_ENV = "GIT_DEPLOY_DATA_FILE"


class CommandRunner:
    """Runs commands one by one in a working directory.

    The first failing command raises ProcessExecutionError and the rest are
    skipped.
    """

    def __init__(self, metadata_file: str, cwd: str) -> None:
        self.metadata_file = metadata_file
        self.cwd = cwd

    def environment(self) -> dict[str, str]:
        env = dict(os.environ)
        env[DATA_FILE_ENV] = self.metadata_file
        return env

    def run(self, command: ScriptCommand | ShellCommand) -> None:
        logger.info("Running command", command=command.describe(), cwd=self.cwd)
        match command:
            case ScriptCommand():
                check_call(
                    [sys.executable, command.path, *command.args],
                    cwd=self.cwd,
                    env=self.environment(),
                )
            case ShellCommand():
                check_call(
                    command.command_line(),
                    cwd=self.cwd,
                    env=self.environment(),
                    shell=True,
                )

    def run_all(self, commands: Iterable[ScriptCommand | ShellCommand]) -> int:
        count = 0
        for command in commands:
            self.run(command)
            count += 1
        return count
