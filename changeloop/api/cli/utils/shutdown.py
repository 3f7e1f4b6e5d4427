"""Graceful shutdown on SIGINT / SIGTERM for long-running commands."""

import asyncio
import signal

from loguru import logger


async def wait_for_shutdown_signal() -> None:
    """Block until SIGINT or SIGTERM is received."""
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal(sig_name: str) -> None:
        logger.info(f"Received {sig_name}, shutting down gracefully")
        shutdown_event.set()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, "SIGTERM")
        loop.add_signal_handler(signal.SIGINT, handle_signal, "SIGINT")
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        def signal_handler(sig: int, _frame: object) -> None:
            loop.call_soon_threadsafe(handle_signal, signal.Signals(sig).name)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    try:
        await shutdown_event.wait()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGTERM)
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass
