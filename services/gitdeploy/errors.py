"""
Exception hierarchy for git-deploy.

Errors raised while resolving an incoming event are surfaced to the webhook
caller. Everything raised after the event has been acknowledged (launching
and running a build) is only logged.
"""


class GitDeployError(Exception):
    """Base exception for all git-deploy errors."""


class ConfigurationError(GitDeployError):
    """Malformed repository or target definition."""


class EventValidationError(GitDeployError):
    """Webhook payload is malformed or describes an unsupported event."""


class AuthenticationError(GitDeployError):
    """Webhook token does not match the configured secret."""


class ConcurrencyConflictError(GitDeployError):
    """A build is already in flight for the same target."""

    def __init__(self, private_path: str, pid: int, idle_seconds: float) -> None:
        self.private_path = private_path
        self.pid = pid
        self.idle_seconds = idle_seconds
        super().__init__(
            f"Deployment process ({pid}) already in progress for {private_path}. "
            f"Process is idling for {idle_seconds:.1f}s"
        )


class ProcessExecutionError(GitDeployError):
    """A spawned command exited non-zero or was killed by a signal."""

    def __init__(
        self, command: str, returncode: int | None = None, signal: int | None = None
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.signal = signal
        super().__init__(f"Command failed: {command} (code: {returncode}, sig: {signal})")

    @property
    def exit_code(self) -> int:
        """Exit code a worker should propagate for this failure."""
        if self.returncode is not None and self.returncode > 0:
            return self.returncode
        return 1


class UnsafeRemovalError(GitDeployError):
    """Refused to recursively delete a path that is too close to the root."""


class LinkConflictError(GitDeployError):
    """The web root link belongs to another target's checkout."""


class MetadataError(GitDeployError):
    """Build metadata file is missing, unreadable, or incomplete."""


class BuildCancelledError(GitDeployError):
    """The worker received an interrupt or termination signal."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"Build canceled by signal {signum}")
