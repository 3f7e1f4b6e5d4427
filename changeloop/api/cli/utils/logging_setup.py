"""Logging setup for the CLI entry point."""

import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(verbose: bool = False, debug: bool = False) -> None:
    """Route loguru output to stderr at INFO, or DEBUG when asked for."""
    logger.remove()
    level = "DEBUG" if verbose or debug else "INFO"
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, backtrace=debug)
