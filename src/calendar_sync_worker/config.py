"""Configuration management for the calendar sync worker."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service info
    service_name: str = "calendar-sync-worker"
    environment: str = "development"

    # Database (PostgreSQL)
    database_url: str

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Microsoft identity platform / Graph
    azure_ad_client_id: str
    azure_ad_client_secret: str
    azure_ad_tenant_id: str = Field(
        default="consumers",
        description="Authority tenant; 'consumers' targets personal Outlook.com accounts",
    )

    # Google Calendar API (lets stored Google credentials refresh themselves)
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None

    # Token lifecycle
    token_expiry_buffer_seconds: int = 300
    token_refresh_lookahead_minutes: int = 60

    # Provider calls
    provider_timeout_seconds: float = 30.0
    sync_targets_concurrently: bool = False

    # Event rendering
    default_calendar_id: str = "primary"
    default_timezone: str = "UTC"
    business_name: str = "Beauty & Wellness"
    event_reminder_minutes: int = 60
    event_email_reminder_minutes: int = 24 * 60

    # Background jobs
    max_retries: int = 3
    retry_backoff_seconds: int = 60
    backfill_batch_size: int = 100

    # Logging
    log_level: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """Database URL rewritten for the asyncpg driver when needed."""
        db_url = self.database_url
        if db_url.startswith("postgresql://"):
            return db_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if db_url.startswith("postgresql+psycopg2://"):
            return db_url.replace("postgresql+psycopg2://", "postgresql+asyncpg://", 1)
        return db_url


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
