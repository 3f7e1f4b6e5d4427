"""Top-level configuration object composed from the individual sections.

Each section reads its own environment variables; CLI arguments override
environment values section by section.
"""

import argparse
from typing import Any

from pydantic import BaseModel, Field

from .analysis_config import AnalysisConfig
from .database_config import DatabaseMonitorConfig
from .queue_config import QueueConfig
from .server_config import ServerConfig
from .watch_config import DirectoryWatchConfig
from .webhook_config import WebhookConfig

_CLI_SECTIONS: dict[str, type] = {
    "watch": DirectoryWatchConfig,
    "database": DatabaseMonitorConfig,
    "analysis": AnalysisConfig,
    "server": ServerConfig,
}


class Config(BaseModel):
    """All changeloop settings."""

    watch: DirectoryWatchConfig = Field(default_factory=DirectoryWatchConfig)
    database: DatabaseMonitorConfig = Field(default_factory=DatabaseMonitorConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)

    debug: bool = False

    @classmethod
    def add_cli_arguments(
        cls, parser: argparse.ArgumentParser, sections: list[str]
    ) -> None:
        """Add CLI arguments for the named sections."""
        for name in sections:
            _CLI_SECTIONS[name].add_cli_arguments(parser)

    @classmethod
    def from_args(cls, args: Any | None = None) -> "Config":
        """Build configuration from the environment plus CLI overrides."""
        if args is None:
            return cls()
        sections: dict[str, Any] = {}
        for name, section_cls in _CLI_SECTIONS.items():
            overrides = section_cls.extract_cli_overrides(args)
            if overrides:
                sections[name] = section_cls(**overrides)
        return cls(debug=bool(getattr(args, "debug", False)), **sections)
