"""Database change monitoring configuration."""

import argparse
from typing import Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from changeloop.core.types import ChangeCategory

DEFAULT_COLLECTIONS: dict[ChangeCategory, str] = {
    ChangeCategory.REVIEWS: "reviews",
    ChangeCategory.METRICS: "metrics",
    ChangeCategory.SALES: "sales",
    ChangeCategory.CUSTOMERS: "customers",
}


class DatabaseMonitorConfig(BaseSettings):
    """Settings for ``ChangeSourceMonitor`` and the MongoDB change source.

    The collection map is fixed for the lifetime of a monitor: each entry
    gets its own detection channel.
    """

    model_config = SettingsConfigDict(
        env_prefix="CHANGELOOP_DB_",
        case_sensitive=False,
        validate_default=True,
        populate_by_name=True,
        extra="ignore",
    )

    uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string",
        validation_alias=AliasChoices("CHANGELOOP_DB_URI", "MONGODB_URI"),
    )
    database: str = Field(
        default="coo_assistant",
        description="Database holding the watched collections",
        validation_alias=AliasChoices("CHANGELOOP_DB_DATABASE", "MONGODB_DATABASE"),
    )
    collections: dict[ChangeCategory, str] = Field(
        default_factory=lambda: dict(DEFAULT_COLLECTIONS),
        description="Logical data type -> collection name",
    )
    results_collection: str = Field(
        default="analysis_results", description="Collection receiving run results"
    )
    poll_interval: float = Field(
        default=5.0, description="Seconds between polls for collections in poll mode"
    )
    batch_delay: float = Field(
        default=3.0, description="Seconds of quiet time before a batch fires"
    )
    use_change_streams: bool = Field(
        default=True, description="Try push-based change streams before polling"
    )
    subject_field: str = Field(
        default="startup_id",
        description="Document field carrying the subject identifier",
    )

    @field_validator("poll_interval", "batch_delay")
    def validate_interval(cls, value: float) -> float:  # noqa: N805
        if value <= 0:
            raise ValueError("intervals must be positive")
        return value

    @field_validator("collections")
    def validate_collections(
        cls, value: dict[ChangeCategory, str]  # noqa: N805
    ) -> dict[ChangeCategory, str]:
        if not value:
            raise ValueError("at least one collection must be watched")
        return value

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        """Add database monitor CLI arguments."""
        parser.add_argument("--db-uri", help="MongoDB connection string")
        parser.add_argument("--db-name", help="MongoDB database name")
        parser.add_argument(
            "--poll-only",
            action="store_true",
            help="Skip change streams and poll every collection",
        )
        parser.add_argument(
            "--poll-interval", type=float, help="Seconds between polls"
        )

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        """Extract database monitor overrides from CLI arguments."""
        overrides: dict[str, Any] = {}
        if getattr(args, "db_uri", None):
            overrides["uri"] = args.db_uri
        if getattr(args, "db_name", None):
            overrides["database"] = args.db_name
        if getattr(args, "poll_only", False):
            overrides["use_change_streams"] = False
        if getattr(args, "poll_interval", None) is not None:
            overrides["poll_interval"] = args.poll_interval
        return overrides

    def __repr__(self) -> str:
        """String representation hiding credentials embedded in the URI."""
        uri_display = self.uri.split("@")[-1] if "@" in self.uri else self.uri
        return (
            f"DatabaseMonitorConfig(uri={uri_display}, database={self.database}, "
            f"collections={[c.value for c in self.collections]})"
        )
