"""
Runtime configuration for SpendFlow.

All settings come from environment variables and are read once into a frozen
Settings instance. Invalid values fail fast with ConfigurationError at startup.

Usage:
    from spendflow.config import get_settings

    settings = get_settings()
    settings.database_url
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import lru_cache

from spendflow.lib.exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./spendflow.db"


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {value}")
    return value


def _decimal(env: Mapping[str, str], key: str, default: str) -> Decimal:
    raw = env.get(key) or default
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Application settings.

    Attributes:
        environment: "development" | "production" | "test"
        dev_mode: Human-readable logs, docs endpoints enabled
        database_url: SQLAlchemy async URL
        api_secret_key: HS256 key for bearer tokens
        stripe_webhook_secret: Signing secret for billing webhooks
        cors_origins: Allowed CORS origins
        default_currency: Currency for notification text when the user has none
        lookahead_days: Window for upcoming insufficient-funds warnings
        low_balance_threshold: Funding balance under which a low-balance alert is sent
        quota_recovery_seconds: OPEN -> HALF_OPEN delay for the quota breaker (0 = manual reset only)
        scheduler_interval_seconds: Daily sweep interval (0 disables the sweep)
        host / port: uvicorn bind address
    """

    environment: str = "development"
    dev_mode: bool = False
    database_url: str = DEFAULT_DATABASE_URL
    api_secret_key: str = ""
    stripe_webhook_secret: str = ""
    cors_origins: tuple[str, ...] = field(default_factory=tuple)
    default_currency: str = "GBP"
    lookahead_days: int = 3
    low_balance_threshold: Decimal = Decimal("50")
    quota_recovery_seconds: int = 300
    scheduler_interval_seconds: int = 0
    host: str = "0.0.0.0"
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables (os.environ by default)."""
        env = os.environ if env is None else env
        environment = env.get("SPENDFLOW_ENVIRONMENT", "development")

        cors_origins = tuple(
            origin.strip()
            for origin in env.get("SPENDFLOW_CORS_ORIGINS", "").split(",")
            if origin.strip()
        )
        currency = env.get("SPENDFLOW_DEFAULT_CURRENCY", "GBP").upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ConfigurationError(f"SPENDFLOW_DEFAULT_CURRENCY must be an ISO-4217 code, got {currency!r}")

        settings = cls(
            environment=environment,
            dev_mode=env.get("SPENDFLOW_DEV_MODE") == "1",
            database_url=env.get("SPENDFLOW_DATABASE_URL") or DEFAULT_DATABASE_URL,
            api_secret_key=env.get("SPENDFLOW_API_SECRET_KEY", ""),
            stripe_webhook_secret=env.get("SPENDFLOW_STRIPE_WEBHOOK_SECRET", ""),
            cors_origins=cors_origins,
            default_currency=currency,
            lookahead_days=_int(env, "SPENDFLOW_LOOKAHEAD_DAYS", 3),
            low_balance_threshold=_decimal(env, "SPENDFLOW_LOW_BALANCE_THRESHOLD", "50"),
            quota_recovery_seconds=_int(env, "SPENDFLOW_QUOTA_RECOVERY_SECONDS", 300),
            scheduler_interval_seconds=_int(env, "SPENDFLOW_SCHEDULER_INTERVAL_SECONDS", 0),
            host=env.get("SPENDFLOW_HOST", "0.0.0.0"),
            port=_int(env, "SPENDFLOW_PORT", 8000, minimum=1),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Fail fast on settings that cannot work in the current environment."""
        if self.is_production:
            if len(self.api_secret_key) < 32:
                raise ConfigurationError(
                    "SPENDFLOW_API_SECRET_KEY must be set to at least 32 characters in production"
                )
            if "*" in self.cors_origins:
                raise ConfigurationError(
                    "SPENDFLOW_CORS_ORIGINS contains wildcard '*' which is forbidden in production"
                )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    return Settings.from_env()
