"""Worker process entry point: signal handling, lock release, exit codes."""

import io
import os
import signal
import sys
import time
from collections.abc import Iterator, Sequence
from contextlib import ExitStack, contextmanager
from types import FrameType

from gitdeploy.deploy.lock import ProcessLock
from gitdeploy.errors import BuildCancelledError, MetadataError, ProcessExecutionError
from gitdeploy.logging_config import configure_logging, get_logger
from gitdeploy.worker.build import (
    BuildWorker,
    private_path_of,
    read_metadata_file,
    validate_metadata,
)

logger = get_logger(__name__)

EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

_CANCEL_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _raise_cancelled(signum: int, frame: FrameType | None) -> None:
    raise BuildCancelledError(signum)


@contextmanager
def cancel_on_signals() -> Iterator[None]:
    """Turn SIGINT/SIGTERM into BuildCancelledError for the duration of the block.

    Already running git or shell children may be left behind.
    """
    previous = {signum: signal.signal(signum, _raise_cancelled) for signum in _CANCEL_SIGNALS}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def run_build(metadata_file: str) -> None:
    """Validate the metadata and run the state machine.

    The lock in the build's private directory is released however this ends.
    """
    raw = read_metadata_file(metadata_file)
    private_path = private_path_of(raw)

    with ExitStack() as stack:
        if private_path:
            stack.enter_context(ProcessLock(private_path).held())
        stack.enter_context(cancel_on_signals())

        metadata = validate_metadata(raw)
        logger.info(
            "Build started",
            target=metadata.url,
            action=str(metadata.action),
            sha=metadata.checkout_sha,
            pid=os.getpid(),
        )
        BuildWorker(metadata, metadata_file).run()


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)

    if isinstance(sys.stdout, io.TextIOWrapper):
        sys.stdout.reconfigure(line_buffering=True)
    configure_logging(
        json_logs=False,
        log_level=os.environ.get("GITDEPLOY_LOG_LEVEL", "INFO"),
        colors=False,
    )

    if len(args) != 1:
        print("Usage: python -m gitdeploy.worker <build.json>", file=sys.stderr)
        return EXIT_USAGE

    metadata_file = os.path.abspath(args[0])
    start = time.monotonic()

    try:
        run_build(metadata_file)
    except BuildCancelledError as e:
        logger.warning("Build canceled", signal=e.signum)
        print("*** Build canceled ***")
        return EXIT_CANCELLED
    except ProcessExecutionError as e:
        logger.error("Command failed", command=e.command, returncode=e.returncode, signal=e.signal)
        print("*** Build failed ***")
        return e.exit_code
    except MetadataError as e:
        logger.error("Invalid build metadata", error=str(e), metadata_file=metadata_file)
        print("*** Build failed ***")
        return EXIT_FAILED
    except Exception as e:
        logger.error("Build failed", error=str(e), exc_info=e)
        print("*** Build failed ***")
        return EXIT_FAILED

    print(f"*** Build finished in {time.monotonic() - start:.2f} seconds. ***")
    return 0
