"""
Configuration Utility - Environment Variables Management

Centralized process settings loaded from environment variables and .env files
using pydantic-settings. The YAML mapping file (query, time range, mapping
rules) is loaded separately, see dd_export.utils.schemas.load_export_config.

Usage:
    from dd_export.utils.config import settings

    page_size = settings.PAGE_SIZE
    limiter_window = settings.RATE_LIMIT_WINDOW_SECONDS
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from dd_export.utils.schemas import AuthConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Datadog credentials (fallbacks for values missing from the mapping file)
    DD_SITE: str = Field(default="datadoghq.com")
    DD_API_KEY: str = Field(default="", repr=False)
    DD_APP_KEY: str = Field(default="", repr=False)

    # Fetch Configuration
    PAGE_SIZE: int = Field(default=1000, ge=1, le=1000)
    VALIDATE_SAMPLE_SIZE: int = Field(default=10, ge=1)
    MAX_PAGES: int | None = Field(default=None, ge=1)
    SORT_ASCENDING: bool = Field(default=True)

    # Parallel Export Configuration
    PARTITION_COUNT: int = Field(default=10, ge=1)
    PARTITION_MIN_SPAN_MS: int = Field(default=10 * 60 * 1000, ge=0)
    QUEUE_MAXSIZE: int = Field(default=100, ge=0)

    # Rate Limit Configuration (Datadog allows about 2 searches per 10 seconds)
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_REQUESTS: int = Field(default=2, ge=1)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=10.0, gt=0)

    # Record error policy: fail the run or skip the record
    ON_RECORD_ERROR: Literal["fail", "skip"] = Field(default="fail")

    # File System Paths
    OUTPUT_DIR: str = Field(default="./output")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Literal["json", "text"] = Field(default="text")

    # Application Metadata
    APP_NAME: str = Field(default="dd-export")
    APP_VERSION: str = Field(default="0.1.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    def resolve_auth(self, auth: AuthConfig) -> AuthConfig:
        """Fill credentials missing from the mapping file with DD_* settings."""
        return AuthConfig(
            site=auth.site if "site" in auth.model_fields_set else self.DD_SITE,
            api_key=auth.api_key or self.DD_API_KEY,
            app_key=auth.app_key or self.DD_APP_KEY,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
