"""
Centralized configuration management using Pydantic Settings.

Configuration is loaded from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HubConfig(BaseSettings):
    """Broadcast hub configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DASHINO_HUB_",
        env_file=".env",
        extra="ignore",
    )

    heartbeat_seconds: float = Field(
        default=5.0, gt=0, description="Seconds between tick events sent to keep idle streams open"
    )
    subscriber_queue_size: int = Field(
        default=256, ge=1, description="Frames buffered per subscriber before it is dropped as too slow"
    )
    ready_event: Optional[str] = Field(
        default=None,
        description="SSE event name for the connect acknowledgement (None = default 'message')",
    )


class JobsConfig(BaseSettings):
    """Job supervisor configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DASHINO_JOBS_",
        env_file=".env",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Start job processes on startup")
    directory: Path = Field(default=Path("jobs"), description="Directory scanned for job files")
    restart_delay_seconds: float = Field(
        default=2.0, ge=0, description="Fixed delay before a terminated job is started again"
    )
    stop_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Grace period for job processes to exit on shutdown"
    )
    start_method: str = Field(
        default="forkserver",
        pattern="^(spawn|forkserver|fork)$",
        description="multiprocessing start method for job processes (forkserver preloads the job runner)",
    )
    restart_invalid: bool = Field(
        default=True,
        description="Keep restarting jobs whose file fails validation (false = reject them after the first failure)",
    )


class WebhookConfig(BaseSettings):
    """Inbound webhook configuration.

    Per-source secrets and defaults are read from the environment at
    startup: DASHINO_WEBHOOK_SECRET_<KEY>, DASHINO_WEBHOOK_<KEY>_WIDGET_ID
    and DASHINO_WEBHOOK_<KEY>_TYPE.
    """

    model_config = SettingsConfigDict(
        env_prefix="DASHINO_WEBHOOK_",
        env_file=".env",
        extra="ignore",
    )

    sources: str = Field(default="", description="Comma-separated webhook source names")
    secret_header: str = Field(default="x-webhook-secret", description="Header carrying the shared secret")


class Settings(BaseSettings):
    """Application-wide settings."""

    model_config = SettingsConfigDict(
        env_prefix="DASHINO_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # General
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=4040, description="Bind port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Optional[Path] = Field(default=None, description="Directory for daily rotated log files")
    log_retention_days: int = Field(default=3, ge=1, description="Rotated log files to keep")

    # Nested configs
    hub: HubConfig = Field(default_factory=HubConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)


# Singleton settings instance
settings = Settings()
