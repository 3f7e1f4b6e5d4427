"""Serve command module - runs the HTTP API."""

import argparse

from changeloop.api.server import ChangeLoopServer
from changeloop.core.config import Config
from changeloop.services.pipeline_context import PipelineContext


async def serve_command(args: argparse.Namespace, config: Config) -> None:
    """Execute the serve command.

    The server lifespan initializes and shuts down the pipeline context;
    uvicorn handles SIGINT/SIGTERM itself.
    """
    context = PipelineContext(config)
    server = ChangeLoopServer(context, host=config.server.host, port=config.server.port)
    await server.run()
