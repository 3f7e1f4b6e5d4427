"""HTTP API server configuration."""

import argparse
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """Bind address for the HTTP API."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGELOOP_SERVER_",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Host to bind to")
    port: int = Field(default=3000, description="Port to listen on")

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--host", type=str, help="Host to bind to (default: localhost)"
        )
        parser.add_argument("--port", type=int, help="Port to listen on (default: 3000)")

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        if getattr(args, "host", None):
            overrides["host"] = args.host
        if getattr(args, "port", None):
            overrides["port"] = args.port
        return overrides
