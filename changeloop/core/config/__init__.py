"""Configuration sections for changeloop."""

from .analysis_config import AnalysisConfig
from .config import Config
from .database_config import DatabaseMonitorConfig
from .queue_config import QueueConfig
from .server_config import ServerConfig
from .watch_config import DirectoryWatchConfig
from .webhook_config import WebhookConfig

__all__ = [
    "AnalysisConfig",
    "Config",
    "DatabaseMonitorConfig",
    "DirectoryWatchConfig",
    "QueueConfig",
    "ServerConfig",
    "WebhookConfig",
]
