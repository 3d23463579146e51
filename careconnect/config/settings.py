"""
Application Settings for CareConnect

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supabase issues the JWTs, Postgres holds providers and conversations,
    and Stripe owns provider billing.
    """

    # Supabase Configuration (identity provider)
    supabase_url: str = "http://localhost:54321"
    supabase_jwt_secret: Optional[str] = None

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    app_url: str = "http://localhost:3000"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_id_basic: Optional[str] = None
    stripe_price_id_premium: Optional[str] = None
    stripe_trial_period_days: int = 7

    # Messaging
    # Fixed identity used for support replies and the automatic welcome message
    support_user_id: str = "e5fde3a3-46f8-4df9-a48e-edfed098ede0"
    admin_user_ids: list[str] = []
    welcome_message_template: str = (
        "Hello {customer}! Thank you for reaching out to CareConnect support. "
        "How can we help you today?"
    )

    # Subscriptions
    # Active subscriptions ending further out than this are grandfathered
    grandfather_threshold_years: int = 50

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("supabase_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """JWT issuer is derived from this URL, so it must not end in '/'."""
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_stripe_keys(self) -> "Settings":
        """Production deployments must be able to verify Stripe webhooks."""
        if self.is_production and self.stripe_secret_key and not self.stripe_webhook_secret:
            raise ValueError(
                "STRIPE_WEBHOOK_SECRET required when STRIPE_SECRET_KEY is set in production"
            )
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    def is_admin(self, user_id: str) -> bool:
        """Support user and configured admins may use the support inbox."""
        return user_id == self.support_user_id or user_id in self.admin_user_ids


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
