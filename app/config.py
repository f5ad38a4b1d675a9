"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

# Environments where create_all() may bootstrap the schema
ALLOWED_CREATE_ENV = {"dev", "local", "test"}

PAYPAL_LIVE_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"


class Settings(BaseSettings):
    """Environment configuration for the payment gateway."""

    app_env: str = ENV
    LOG_LEVEL: str = "INFO"
    database_url: str = "sqlite:///payment_gateway.db"
    SESSION_STORE_BACKEND: str = "memory"
    ALLOW_DB_CREATE_ALL: bool = False
    CORS_ALLOW_ORIGINS: list[str] = [
        "https://handywriterz.com",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    # --- Gateway behaviour -----------------------------------------------
    # None means "on everywhere except prod".
    PAYMENT_FALLBACK_ENABLED: bool | None = None
    WEBHOOK_SIGNATURE_OPTIONAL: bool = False
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    REQUIRE_IDENTITY: bool = False

    # --- Card (Stripe) ---------------------------------------------------
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int | None = None

    # --- Wallet (PayPal) -------------------------------------------------
    PAYPAL_CLIENT_ID: str | None = None
    PAYPAL_CLIENT_SECRET: str | None = None
    PAYPAL_WEBHOOK_ID: str | None = None
    PAYPAL_SANDBOX: bool = False
    PAYPAL_BRAND_NAME: str = "HandyWriterz"

    # --- Crypto-fiat (StableLink) ----------------------------------------
    STABLELINK_API_KEY: str | None = None
    STABLELINK_API_SECRET: str | None = None
    STABLELINK_API_URL: str = "https://api.stablelink.io/v1"
    STABLELINK_WEBHOOK_SECRET: str | None = None

    # --- Crypto-native (Coinbase Commerce) -------------------------------
    COINBASE_API_KEY: str | None = None
    COINBASE_API_URL: str = "https://api.commerce.coinbase.com"
    COINBASE_WEBHOOK_SECRET: str | None = None

    # --- Completion notifications ----------------------------------------
    NOTIFY_WEBHOOK_URL: str | None = None
    NOTIFY_CHANNEL: str | None = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator(
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "PAYPAL_CLIENT_ID",
        "PAYPAL_CLIENT_SECRET",
        "PAYPAL_WEBHOOK_ID",
        "STABLELINK_API_KEY",
        "STABLELINK_API_SECRET",
        "STABLELINK_WEBHOOK_SECRET",
        "COINBASE_API_KEY",
        "COINBASE_WEBHOOK_SECRET",
        "NOTIFY_WEBHOOK_URL",
    )
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty credentials to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @property
    def fallback_enabled(self) -> bool:
        """Whether provider outages degrade to a locally synthesized session."""

        if self.PAYMENT_FALLBACK_ENABLED is not None:
            return self.PAYMENT_FALLBACK_ENABLED
        return self.app_env.lower() != "prod"

    @property
    def paypal_base_url(self) -> str:
        return PAYPAL_SANDBOX_URL if self.PAYPAL_SANDBOX else PAYPAL_LIVE_URL


class AppInfo(BaseModel):
    name: str = "payment-gateway"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "ALLOWED_CREATE_ENV",
    "PAYPAL_LIVE_URL",
    "PAYPAL_SANDBOX_URL",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
