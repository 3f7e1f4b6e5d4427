"""Serve command argument parser for changeloop CLI."""

import argparse
from typing import Any

from .common_arguments import add_common_arguments, add_config_arguments


def add_serve_subparser(subparsers: Any) -> argparse.ArgumentParser:
    """Add serve command subparser to the main parser.

    Args:
        subparsers: Subparsers object from the main argument parser

    Returns:
        The configured serve subparser
    """
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API",
        description=(
            "Serve the HTTP API: analysis requests and inbound webhooks are "
            "queued and processed one at a time; queue status and learning "
            "metrics are exposed read-only."
        ),
    )
    add_common_arguments(serve_parser)
    add_config_arguments(serve_parser, ["server", "analysis"])
    return serve_parser
