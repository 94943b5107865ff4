"""
Application configuration using pydantic-settings.
Loads environment variables from .env file.

Nested config groups (BillingConfig, UsageApiConfig, StripeConfig, AdmissionConfig) are
env-overridable via the double-underscore delimiter, e.g.:
    BILLING__ENABLE_PAYMENT=true
    USAGE_API__BASE_URL=http://usage:9001
    STRIPE__SECRET_KEY=sk_live_...
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BillingConfig(BaseModel):
    """Global billing switches."""

    # Off for self-hosted / dedicated installations
    enable_payment: bool = False


class UsageApiConfig(BaseModel):
    """Usage/billing backend connection."""

    base_url: str = "http://usage:9001"
    request_timeout_seconds: float = 5.0


class StripeConfig(BaseModel):
    """Stripe credentials used for subscription lookups."""

    secret_key: str = ""


class AdmissionConfig(BaseModel):
    """Workspace admission behaviour."""

    # Let workspaces start when the entitlement check itself errors
    fail_open_on_entitlement_error: bool = True


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Supabase
    supabase_url: str = ""
    supabase_secret_key: str = ""

    # App Settings
    debug: bool = False

    # Nested config groups (env-overridable via SECTION__KEY format)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    usage_api: UsageApiConfig = Field(default_factory=UsageApiConfig)
    stripe: StripeConfig = Field(default_factory=StripeConfig)
    admission: AdmissionConfig = Field(default_factory=AdmissionConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
