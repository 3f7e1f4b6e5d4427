"""Watch-dir command module - batches dropped data files into analyses."""

import argparse

from loguru import logger

from changeloop.api.cli.utils import wait_for_shutdown_signal
from changeloop.core.config import Config
from changeloop.services.directory_monitor import DataDirectoryMonitor
from changeloop.services.pipeline_context import PipelineContext


async def watch_dir_command(args: argparse.Namespace, config: Config) -> None:
    """Execute the watch-dir command."""
    async with PipelineContext(config) as context:
        monitor = DataDirectoryMonitor(config.watch, context.runner)
        await monitor.start()
        try:
            logger.info(f"Drop files into {config.watch.path} to trigger analysis")
            await wait_for_shutdown_signal()
        finally:
            await monitor.stop()
