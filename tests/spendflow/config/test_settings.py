"""Tests for environment-driven settings (spendflow/config/settings.py)."""

from __future__ import annotations

from decimal import Decimal

import pytest

from spendflow.config import Settings
from spendflow.lib.exceptions import ConfigurationError


class TestFromEnv:
    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.environment == "development"
        assert settings.default_currency == "GBP"
        assert settings.lookahead_days == 3
        assert settings.low_balance_threshold == Decimal("50")
        assert settings.scheduler_interval_seconds == 0
        assert settings.cors_origins == ()

    def test_values_are_parsed(self):
        settings = Settings.from_env(
            {
                "SPENDFLOW_DEFAULT_CURRENCY": "usd",
                "SPENDFLOW_LOOKAHEAD_DAYS": "7",
                "SPENDFLOW_LOW_BALANCE_THRESHOLD": "100.50",
                "SPENDFLOW_CORS_ORIGINS": "http://a.test, http://b.test,",
                "SPENDFLOW_DEV_MODE": "1",
                "SPENDFLOW_PORT": "9000",
            }
        )
        assert settings.default_currency == "USD"
        assert settings.lookahead_days == 7
        assert settings.low_balance_threshold == Decimal("100.50")
        assert settings.cors_origins == ("http://a.test", "http://b.test")
        assert settings.dev_mode is True
        assert settings.port == 9000

    @pytest.mark.parametrize(
        "env",
        [
            {"SPENDFLOW_LOOKAHEAD_DAYS": "soon"},
            {"SPENDFLOW_LOOKAHEAD_DAYS": "-1"},
            {"SPENDFLOW_LOW_BALANCE_THRESHOLD": "lots"},
            {"SPENDFLOW_DEFAULT_CURRENCY": "POUNDS"},
            {"SPENDFLOW_PORT": "0"},
        ],
    )
    def test_invalid_values_fail_fast(self, env):
        with pytest.raises(ConfigurationError):
            Settings.from_env(env)


class TestProductionValidation:
    def test_short_secret_rejected(self):
        with pytest.raises(ConfigurationError, match="SECRET_KEY"):
            Settings.from_env(
                {"SPENDFLOW_ENVIRONMENT": "production", "SPENDFLOW_API_SECRET_KEY": "short"}
            )

    def test_wildcard_cors_rejected(self):
        with pytest.raises(ConfigurationError, match="wildcard"):
            Settings.from_env(
                {
                    "SPENDFLOW_ENVIRONMENT": "production",
                    "SPENDFLOW_API_SECRET_KEY": "x" * 40,
                    "SPENDFLOW_CORS_ORIGINS": "*",
                }
            )

    def test_valid_production(self):
        settings = Settings.from_env(
            {"SPENDFLOW_ENVIRONMENT": "production", "SPENDFLOW_API_SECRET_KEY": "x" * 40}
        )
        assert settings.is_production is True
