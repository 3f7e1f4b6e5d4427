"""CLI utility helpers."""

from .logging_setup import configure_logging
from .shutdown import wait_for_shutdown_signal

__all__ = ["configure_logging", "wait_for_shutdown_signal"]
