"""Directory watching configuration.

Controls which directory tree is observed, which files qualify, and how
settled file changes are batched into analysis triggers.
"""

import argparse
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FILE_TYPES = [".json", ".csv", ".txt", ".xml"]


class DirectoryWatchConfig(BaseSettings):
    """Settings for ``FileChangeWatcher`` and ``DataDirectoryMonitor``."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGELOOP_WATCH_",
        case_sensitive=False,
        validate_default=True,
        populate_by_name=True,
        extra="ignore",
    )

    path: Path = Field(
        default=Path("./data-inbox"),
        description="Directory tree to watch for dropped data files",
        validation_alias=AliasChoices("CHANGELOOP_WATCH_PATH", "DATA_WATCH_PATH"),
    )
    processed_path: Path = Field(
        default=Path("./data-processed"),
        description="Where processed files are moved, one subdirectory per run",
        validation_alias=AliasChoices(
            "CHANGELOOP_WATCH_PROCESSED_PATH", "DATA_PROCESSED_PATH"
        ),
    )
    file_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FILE_TYPES),
        description="Allow-listed file extensions",
    )
    recursive: bool = Field(default=True, description="Watch subdirectories too")
    debounce_delay: float = Field(
        default=1.0, description="Seconds a path must stay quiet before it settles"
    )
    trigger_delay: float = Field(
        default=5.0, description="Seconds of batch quiet time before analysis fires"
    )
    batch_mode: bool = Field(
        default=True,
        description="Batch settled files; when false every file triggers at once",
    )

    @field_validator("file_types")
    def normalize_file_types(cls, value: list[str]) -> list[str]:  # noqa: N805
        """Lowercase extensions and make sure each starts with a dot."""
        normalized = []
        for ext in value:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized

    @field_validator("debounce_delay", "trigger_delay")
    def validate_delay(cls, value: float) -> float:  # noqa: N805
        if value < 0:
            raise ValueError("delays must be non-negative")
        return value

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add directory watching CLI arguments."""
        parser.add_argument("--watch-path", type=Path, help="Directory to watch")
        parser.add_argument(
            "--processed-path", type=Path, help="Directory for processed files"
        )
        parser.add_argument(
            "--trigger-delay",
            type=float,
            help="Seconds to wait after the last change before triggering",
        )
        parser.add_argument(
            "--immediate",
            action="store_true",
            help="Trigger analysis per file instead of batching",
        )

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        """Extract directory watching overrides from CLI arguments."""
        overrides: dict[str, Any] = {}
        if getattr(args, "watch_path", None):
            overrides["path"] = args.watch_path
        if getattr(args, "processed_path", None):
            overrides["processed_path"] = args.processed_path
        if getattr(args, "trigger_delay", None) is not None:
            overrides["trigger_delay"] = args.trigger_delay
        if getattr(args, "immediate", False):
            overrides["batch_mode"] = False
        return overrides

    def __repr__(self) -> str:
        return (
            f"DirectoryWatchConfig(path={self.path}, "
            f"processed_path={self.processed_path}, batch_mode={self.batch_mode})"
        )
