"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Product Launch Studio API"
    api_version: str = "0.1.0"
    api_description: str = "Product launch content pipeline with credit metering"
    app_url: str = "http://localhost:3000"  # Frontend origin, used for checkout redirects
    cors_allow_origins: str = "*"  # Comma-separated

    # Sessions
    session_jwt_secret: str = ""  # openssl rand -hex 32
    session_expire_days: int = 7
    session_cookie_name: str = "auth_token"
    session_cookie_secure: bool = False

    # Credits policy
    starting_credits: int = 2
    price_per_credit_minor: int = 100  # $1.00 per credit
    credit_currency: str = "usd"
    max_credits_per_purchase: int = 1000

    # Stage costs (credits)
    stage_cost_market_analysis: int = 0
    stage_cost_product_page: int = 1
    stage_cost_image_prompts: int = 1
    stage_cost_ad_copy: int = 0

    # Completion service - Gemini
    gemini_api_key: str = ""
    gemini_text_model: str = "gemini-2.5-pro"
    gemini_image_model: str = "gemini-2.5-flash-image"
    generation_timeout_seconds: float = 60.0

    # Image generation
    image_max_retries: int = 3  # Retries after the first attempt, rate limits only
    image_retry_backoff_seconds: float = 2.0
    image_prompt_max_chars: int = 1500
    optimized_prompt_max_chars: int = 400

    # Upload limits
    max_document_bytes: int = 5 * 1024 * 1024
    max_image_bytes: int = 5 * 1024 * 1024
    max_name_from_first_line: int = 50

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "launch-studio-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if len(self.session_jwt_secret) < 32:
            errors.append("SESSION_JWT_SECRET must be at least 32 characters")

        if self.starting_credits < 0:
            errors.append("STARTING_CREDITS cannot be negative")

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
    def allowed_origins(self) -> list[str]:
        """Get list of allowed CORS origins."""
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
