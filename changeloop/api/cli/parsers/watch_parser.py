"""Watch command argument parsers for changeloop CLI."""

import argparse
from typing import Any

from .common_arguments import add_common_arguments, add_config_arguments


def add_watch_dir_subparser(subparsers: Any) -> argparse.ArgumentParser:
    """Add the directory watching subcommand."""
    parser = subparsers.add_parser(
        "watch-dir",
        help="Watch a directory for dropped data files",
        description=(
            "Watch a directory tree, batch settled data files and run one "
            "analysis per batch. Processed files are moved to a per-run "
            "directory together with the analysis result."
        ),
    )
    add_common_arguments(parser)
    add_config_arguments(parser, ["watch", "analysis"])
    return parser


def add_watch_db_subparser(subparsers: Any) -> argparse.ArgumentParser:
    """Add the database watching subcommand."""
    parser = subparsers.add_parser(
        "watch-db",
        help="Watch database collections for changes",
        description=(
            "Watch MongoDB collections with change streams (falling back to "
            "polling), batch detected changes and run one analysis per batch. "
            "When a webhook URL is configured every change is also relayed."
        ),
    )
    add_common_arguments(parser)
    add_config_arguments(parser, ["database", "analysis"])
    return parser
