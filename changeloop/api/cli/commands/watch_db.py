"""Watch-db command module - batches database changes into analyses."""

import argparse

from loguru import logger

from changeloop.api.cli.utils import wait_for_shutdown_signal
from changeloop.core.config import Config
from changeloop.providers.database.mongo_source import MongoChangeSource
from changeloop.services.change_source_monitor import ChangeSourceMonitor
from changeloop.services.pipeline_context import PipelineContext
from changeloop.services.webhook_relay import WebhookRelay


async def watch_db_command(args: argparse.Namespace, config: Config) -> None:
    """Execute the watch-db command."""
    db_config = config.database
    async with PipelineContext(config) as context:
        source = MongoChangeSource(db_config.uri, db_config.database)
        monitor = ChangeSourceMonitor(db_config, source, context.runner)

        relay = None
        if config.webhook.is_configured():
            relay = WebhookRelay(
                config.webhook,
                db_config.database,
                subject_field=db_config.subject_field,
            )
            relay.attach(monitor)
            logger.info(f"Relaying changes to webhook: {config.webhook.url}")

        try:
            await monitor.initialize()
            logger.info(
                f"Insert or update documents in {db_config.database} to trigger analysis"
            )
            await wait_for_shutdown_signal()
        finally:
            await monitor.shutdown()
            if relay is not None:
                await relay.close()
