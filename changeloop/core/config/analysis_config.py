"""External analysis engine configuration."""

import argparse
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalysisConfig(BaseSettings):
    """Endpoint of the analysis engine invoked once per fired batch."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGELOOP_ANALYSIS_",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    url: str = Field(
        default="http://localhost:8080/analyze",
        description="URL receiving POST {subject_id, payload}",
    )
    timeout: float = Field(
        default=120.0, description="Seconds to wait for one analysis run"
    )

    @field_validator("url")
    def validate_url(cls, value: str) -> str:  # noqa: N805
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"analysis url must be http(s); received {value!r}")
        return value

    @classmethod
    def add_cli_arguments(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--analysis-url", help="Analysis engine endpoint")

    @classmethod
    def extract_cli_overrides(cls, args: Any) -> dict[str, Any]:
        if getattr(args, "analysis_url", None):
            return {"url": args.analysis_url}
        return {}
