"""Configuration management using Pydantic Settings."""

from datetime import datetime
from functools import lru_cache
from typing import cast
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="KNAPSACK_",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Backend services
    backend_url: str = Field(
        default="http://localhost:8897/api/knapsack",
        description="Base URL of the local Knapsack backend",
    )
    web_search_url: str = Field(
        default="https://knap.ai/api/knapsack/stream_search",
        description="Streaming web search endpoint",
    )

    # Signed-in user (empty when nobody is logged in)
    user_email: str | None = Field(default=None, description="Email of the signed-in user")
    user_name: str | None = Field(default=None, description="Display name of the signed-in user")

    timezone: str = Field(
        default="UTC",
        description="Timezone used for cadence matching and feed day labels",
    )

    # HTTP retry policy
    http_max_retries: int = Field(default=3, description="Retries after the first attempt")
    http_base_delay: float = Field(default=0.1, description="Base backoff delay in seconds")
    http_max_delay: float = Field(default=1.0, description="Backoff delay cap in seconds")
    http_timeout: float = Field(default=2.0, description="Per-attempt timeout in seconds")

    # LLM endpoint
    llm_timeout: float = Field(default=60.0, description="Completion request timeout in seconds")
    llm_max_stream_reads: int = Field(default=10000, description="Maximum chunks read from one stream")
    llm_is_local: bool = Field(default=False, description="Ask the backend to run the local model")

    # Timers
    cadence_tick_seconds: int = Field(default=60, description="Cadence tick interval")
    resync_interval_seconds: int = Field(default=300, description="Connection and automation resync interval")
    connection_poll_interval: float = Field(default=1.0, description="Sync status poll interval")

    # Email autopilot
    autopilot_batch_size: int = Field(default=3, description="Emails per classification request")
    autopilot_batch_stagger: float = Field(default=0.1, description="Delay between batch submissions")
    autopilot_max_retries: int = Field(default=5, description="Classification retries per batch")
    autopilot_retry_base_delay: float = Field(default=0.5, description="Base backoff between batch retries")
    autopilot_retry_max_delay: float = Field(default=8.0, description="Backoff cap between batch retries")
    autopilot_drain_interval: float = Field(default=0.2, description="Priority queue drain interval")
    autopilot_drain_delay: float = Field(default=0.05, description="Delay between drained items")
    autopilot_lookback_days: int = Field(default=2, description="Days of inbox to triage")
    autopilot_max_emails: int = Field(default=5000, description="Maximum emails fetched per run")

    # Automation readiness polling for click-triggered meeting prep
    automation_ready_attempts: int = Field(default=20, description="Readiness poll attempts")
    automation_ready_interval: float = Field(default=1.0, description="Readiness poll interval")

    # Meeting notifications
    notification_lead_minutes: int = Field(
        default=1,
        description="Minutes before a meeting to show the notification",
    )

    # API settings
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Use JSON logging format")

    @property
    def tzinfo(self) -> ZoneInfo:
        """Timezone of the user."""
        return ZoneInfo(self.timezone)

    def now(self) -> datetime:
        """Get the current time in the user's timezone."""
        return datetime.now(self.tzinfo)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Pydantic Settings loads fields from environment variables.
    We use cast to bypass static type checkers that don't understand this pattern.
    """
    return cast("Settings", Settings.__call__())

