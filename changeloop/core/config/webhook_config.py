"""Outbound webhook delivery configuration."""

from typing import Any

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebhookConfig(BaseSettings):
    """Where normalized change envelopes are POSTed, and the shared secret."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGELOOP_WEBHOOK_",
        case_sensitive=False,
        validate_default=True,
        populate_by_name=True,
        extra="ignore",
    )

    url: str | None = Field(
        default=None,
        description="External endpoint receiving change envelopes",
        validation_alias=AliasChoices("CHANGELOOP_WEBHOOK_URL", "WEBHOOK_URL"),
    )
    secret: SecretStr = Field(
        default=SecretStr("your-webhook-secret"),
        description="Sent in the X-Webhook-Secret header",
        validation_alias=AliasChoices("CHANGELOOP_WEBHOOK_SECRET", "WEBHOOK_SECRET"),
    )
    timeout: float = Field(default=10.0, description="Delivery timeout in seconds")

    @field_validator("url")
    def validate_url(cls, value: str | None) -> str | None:  # noqa: N805
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"webhook url must be http(s); received {value!r}")
        return value

    def is_configured(self) -> bool:
        return self.url is not None

    def headers_for(self, event: str, timestamp: str) -> dict[str, Any]:
        return {
            "Content-Type": "application/json",
            "X-Webhook-Secret": self.secret.get_secret_value(),
            "X-Event-Type": event,
            "X-Timestamp": timestamp,
        }

    def __repr__(self) -> str:
        return f"WebhookConfig(url={self.url}, secret=***)"
