"""Argument parsers for the changeloop CLI."""

from .serve_parser import add_serve_subparser
from .watch_parser import add_watch_db_subparser, add_watch_dir_subparser

__all__ = [
    "add_serve_subparser",
    "add_watch_db_subparser",
    "add_watch_dir_subparser",
]
