"""changeloop command line entry point."""

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import ValidationError

from changeloop.api.cli.parsers import (
    add_serve_subparser,
    add_watch_db_subparser,
    add_watch_dir_subparser,
)
from changeloop.api.cli.utils import configure_logging
from changeloop.core.config import Config
from changeloop.version import __version__

CommandFn = Callable[[argparse.Namespace, Config], Awaitable[None]]


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="changeloop",
        description=(
            "Ingest changes from directories, databases and webhooks, batch "
            "them into analysis runs and learn from recorded outcomes."
        ),
    )
    parser.add_argument("--version", action="version", version=f"changeloop {__version__}")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    add_serve_subparser(subparsers)
    add_watch_dir_subparser(subparsers)
    add_watch_db_subparser(subparsers)
    return parser


def _resolve_command(name: str) -> CommandFn:
    # Lazy imports keep startup light for --help
    if name == "serve":
        from changeloop.api.cli.commands.serve import serve_command

        return serve_command
    if name == "watch-dir":
        from changeloop.api.cli.commands.watch_dir import watch_dir_command

        return watch_dir_command
    if name == "watch-db":
        from changeloop.api.cli.commands.watch_db import watch_db_command

        return watch_db_command
    raise ValueError(f"Unknown command: {name}")


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args: Any = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    configure_logging(verbose=args.verbose, debug=args.debug)

    try:
        config = Config.from_args(args)
    except ValidationError as e:
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            logger.error(f"Configuration error: {location}: {error['msg']}")
        return 1

    command = _resolve_command(args.command)
    try:
        asyncio.run(command(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        if args.debug:
            logger.exception("Traceback")
        return 1
    return 0


def main_sync() -> None:
    """Synchronous wrapper for the console script."""
    sys.exit(main())


if __name__ == "__main__":
    main_sync()
