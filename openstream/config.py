"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Shipped fallback for local development only; refused in production.
DEFAULT_ADMIN_TOKEN = "admin2520"


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "OpenStream Access API"
    api_version: str = "0.1.0"
    api_description: str = "Access code lifecycle and activity log service for OpenStream"
    environment: str = "development"  # development, staging, production

    # Admin Authentication - static bearer token
    ADMIN_TOKEN: str = DEFAULT_ADMIN_TOKEN

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "openstream-access-api"

    # Access code policy
    code_length: int = 8
    code_prefix_max_length: int = 4
    code_default_duration_minutes: int = 10
    code_max_duration_minutes: int = 525600  # one year
    code_max_uses_limit: int = 1000
    code_generation_attempts: int = 5
    cleanup_interval_seconds: int = 60
    log_failed_validations: bool = True

    # Activity log query policy
    default_page_size: int = 50
    max_page_size: int = 1000
    search_default_limit: int = 100
    aggregation_max_rows: int = 50000

    # Export policy
    export_max_rows: int = 10000
    export_preview_rows: int = 10

    # Report scheduling
    report_scheduler_enabled: bool = False
    report_scheduler_interval_seconds: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        This prevents silent failures that only manifest at runtime.
        """
        errors: list[str] = []

        # DATABASE_URL is absolutely required
        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.ADMIN_TOKEN:
            errors.append("ADMIN_TOKEN must not be empty")
        elif self.is_production and self.ADMIN_TOKEN == DEFAULT_ADMIN_TOKEN:
            errors.append("ADMIN_TOKEN is the development default; set a real token")

        if self.code_prefix_max_length >= self.code_length:
            errors.append("CODE_PREFIX_MAX_LENGTH must be shorter than CODE_LENGTH")

        if self.default_page_size > self.max_page_size:
            errors.append("DEFAULT_PAGE_SIZE cannot exceed MAX_PAGE_SIZE")

        # If we have errors, fail immediately with clear messaging
        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_production(self) -> bool:
        """Whether the service runs in production."""
        return self.environment.lower() == "production"

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
