"""Application settings and configuration."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="REFERRALS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "referral-engine"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = Field(
        default="console",
        description="Log output format: console or json",
    )
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used to build link claim URLs",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./referrals.db",
        description="Database connection URL",
    )

    sqlite_busy_timeout_seconds: float = Field(
        default=30.0,
        description="How long a SQLite transaction waits for the write lock",
    )

    # Eligibility
    worldwide_country_code: str = Field(
        default="WW",
        description="Alpha-2 code of the country record meaning 'no restriction'",
    )

    # Claims
    claim_onboarding_window_minutes: int | None = Field(
        default=None,
        description="Only users onboarded within this many minutes may claim a link (None = no window)",
    )

    # Background sweeps
    program_deletion_retention_days: int = Field(
        default=30,
        description="Expired or LimitReached programs untouched this long are soft-deleted",
    )

    # Link shortener
    short_link_provider_url: str | None = None
    short_link_api_key: str | None = None
    request_timeout_seconds: int = 30
    max_retries: int = 3


# Global settings instance
settings = Settings()
