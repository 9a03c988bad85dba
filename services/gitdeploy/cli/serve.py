"""
Run the git-deploy webhook server.

Run via: gitdeploy [--config PATH] [--host HOST] [--port PORT]
     or: python -m gitdeploy.cli.serve

Settings come from GITDEPLOY_* environment variables and the YAML file
named by GITDEPLOY_CONFIG_FILE; --config overrides the latter.
"""

import argparse
import logging
import os
import sys

import uvicorn

from gitdeploy.api.app import create_app
from gitdeploy.config import CONFIG_FILE_ENV, load_settings
from gitdeploy.errors import ConfigurationError

# Use stdlib logging; structlog is configured by the app lifespan
logger = logging.getLogger("gitdeploy.serve")
logging.basicConfig(level=logging.INFO, format="%(message)s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gitdeploy", description=__doc__.strip().splitlines()[0])
    parser.add_argument("-c", "--config", help="Path to the YAML configuration file")
    parser.add_argument("--host", help="Bind address (overrides settings)")
    parser.add_argument("--port", type=int, help="Bind port (overrides settings)")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.config:
        if not os.path.isfile(args.config):
            logger.error("Configuration file not found: %s", args.config)
            return 2
        os.environ[CONFIG_FILE_ENV] = os.path.abspath(args.config)

    try:
        settings = load_settings()
        app = create_app(settings)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
