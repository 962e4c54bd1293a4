"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Environnement d'exécution: "dev" | "local" | "test" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()


class Settings(BaseSettings):
    """Environment configuration for the locker payment backend."""

    app_env: str = Field(default=ENV, validation_alias=AliasChoices("APP_ENV", "app_env"))
    database_url: str = "sqlite:///lockerpay.db"
    ALLOW_DB_CREATE_ALL: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = False

    # --- Webhooks ----------------------------------------------------------
    gateway_webhook_secret: str | None = None
    gateway_webhook_max_drift_seconds: int = 300
    WEBHOOK_IDEMPOTENCY_WINDOW_SECONDS: int = 3600

    # --- Payment gateway ------------------------------------------------------
    GATEWAY_API_BASE_URL: str = "https://api.tosspayments.com/v1"
    GATEWAY_SECRET_KEY: str | None = None
    GATEWAY_CLIENT_KEY: str | None = None
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_MIN_AMOUNT: int = 100

    # --- Settlement ----------------------------------------------------------
    SETTLEMENT_COMMISSION_RATE: Decimal = Decimal("0.2000")
    SETTLEMENT_CRON: str = "0 3 * * *"
    SETTLEMENT_TIMEZONE: str = "UTC"
    SCHEDULER_ENABLED: bool = False
    ADMIN_API_KEY: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("gateway_webhook_secret", "ADMIN_API_KEY", "GATEWAY_SECRET_KEY", "GATEWAY_CLIENT_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("SETTLEMENT_COMMISSION_RATE")
    @classmethod
    def _check_commission_rate(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 1:
            raise ValueError("SETTLEMENT_COMMISSION_RATE must be between 0 and 1")
        return value.quantize(Decimal("0.0001"))


class AppInfo(BaseModel):
    name: str = "lockerpay-reconciliation"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
