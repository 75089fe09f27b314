"""
Application Configuration - Pydantic Settings for type-safe config.

FAIL FAST - Critical config is validated at startup.
"""

import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Hosted database (Supabase Postgres) - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 1800

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "KHQR Top-Up Checkout API"
    api_version: str = "0.1.0"
    api_description: str = "Game top-up checkout with KHQR payment confirmation"

    # Payment proxy (code generation, verification, notification relay)
    payment_api_base_url: str = "http://localhost:3000"
    http_timeout_seconds: float = 20.0

    # KHQR destination account - the merchant the payment code pays into
    khqr_account_id: str = ""
    khqr_account_name: str = ""
    khqr_account_information: str = ""
    khqr_currency: str = "USD"
    khqr_address: str = ""

    # Mobile Legends nickname lookup
    nickname_api_base_url: str = "https://api.isan.eu.org"

    # Resellers see reseller prices when they present this key
    reseller_api_key: str = ""

    # Payment confirmation timings (seconds)
    code_cooldown_seconds: float = 180
    code_validity_seconds: float = 300
    initial_check_delay_seconds: float = 7
    check_interval_seconds: float = 5
    verification_timeout_seconds: float = 60
    max_verification_attempts: int = 12

    # Finished checkouts stay readable this long before they are dropped
    checkout_retention_seconds: float = 120

    # Receipts show the shop's wall-clock time
    order_timezone: str = "Asia/Phnom_Penh"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "khqr-topup-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a database to read prices from or a
        destination account to generate payment codes for.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.khqr_account_id:
            errors.append("KHQR_ACCOUNT_ID is required but empty or missing")

        if self.max_verification_attempts < 1:
            errors.append("MAX_VERIFICATION_ATTEMPTS must be at least 1")

        try:
            ZoneInfo(self.order_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"ORDER_TIMEZONE is not a known timezone: {self.order_timezone}")

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


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
