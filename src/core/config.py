"""Configuration management for lifeops."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/lifeops.db", description="Path of the SQLite task database")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="production", description="Deployment environment reported to Logfire")

    # Daily Rollover Configuration
    rollover_hour: int = Field(default=0, ge=0, le=23, description="Hour of day the rollover job runs")
    rollover_minute: int = Field(default=5, ge=0, le=59, description="Minute of the hour the rollover job runs")
    timezone: str = Field(default="UTC", description="IANA timezone used to decide what 'today' is")
    enable_rollover_scheduler: bool = Field(default=True, description="Enable/disable the daily rollover job")

    # Debugging
    debug_date_offset_days: int = Field(
        default=0, description="Days added to the real date when computing 'today' (debug date advance)"
    )


# Application Constants
class Constants:
    """Application-wide constants."""

    # Recurrence search bounds
    SPECIFIC_DAY_SEARCH_DAYS: int = 7  # One full week covers every weekday
    EXCLUSION_SEARCH_MAX_DAYS: int = 365

    # Task validation
    TASK_NAME_MAX_LENGTH: int = 100

    # Storage
    TASKS_COLLECTION: str = "tasks"
    EDGES_COLLECTION: str = "task_edges"
    TASK_SUPPLIES_COLLECTION: str = "task_supplies"
    APP_STATE_COLLECTION: str = "app_state"
    DEFAULT_PER_PAGE_LIMIT: int = 100  # Page size used when draining a collection

    # Scheduler
    ROLLOVER_JOB_ID: str = "daily_rollover"
    ROLLOVER_MISFIRE_GRACE_SECONDS: int = 3600
    LAST_ROLLOVER_KEY: str = "last_rollover_date"
    JOB_MAX_RETRIES: int = 3
    JOB_RETRY_BASE_DELAY_SECONDS: float = 2.0

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
