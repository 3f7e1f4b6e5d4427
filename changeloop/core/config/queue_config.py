"""Sequential event queue configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueueConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHANGELOOP_QUEUE_",
        case_sensitive=False,
        extra="ignore",
    )

    pause_seconds: float = Field(
        default=0.1, ge=0, description="Pause between successive dequeues"
    )
