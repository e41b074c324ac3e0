"""
Unit tests for centralized configuration module.

Tests cover:
- Default configuration values
- Environment variable loading
- Field constraints
- Startup validation
- Settings caching behavior
"""

import os
from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from pool_analytics.core.config import Settings, get_settings, validate_settings
from pool_analytics.core.errors import ConfigurationError, ErrorKind


class TestSettingsDefaults:
    """Test default configuration values."""

    def test_statistics_defaults(self, settings):
        assert settings.risk_free_rate == Decimal("0.02")
        assert settings.market_return == Decimal("0.08")
        assert settings.periods_per_year == 365
        assert settings.var_confidence == Decimal("0.95")
        assert settings.market_returns == []

    def test_optimizer_defaults(self, settings):
        assert settings.momentum_threshold == Decimal("0.05")
        assert settings.price_stability_floor == 70
        assert settings.rebalance_drift_threshold == Decimal("0.10")
        assert settings.allocation_step_bps == 500

    def test_detector_defaults(self, settings):
        assert settings.detector_window_sizes == {"tvl": 24, "apy": 168, "gas": 100}
        assert settings.detector_thresholds["apy"] == Decimal("2.5")
        assert settings.critical_change_bps == 1000
        assert settings.emergency_change_bps == 2000

    def test_feature_defaults(self, settings):
        assert settings.default_platform_tvl == Decimal("1000000000")
        assert settings.vocabulary_version == 1
        assert settings.strict_vocabulary is True


class TestEnvironmentVariables:
    """Test environment variable loading."""

    def test_env_var_with_prefix(self):
        with patch.dict(os.environ, {"POOL_ANALYTICS_RISK_FREE_RATE": "0.03"}):
            settings = Settings(_env_file=None)
        assert settings.risk_free_rate == Decimal("0.03")

    def test_env_var_json_mapping(self):
        """Test that dict settings are parsed from JSON."""
        env = {"POOL_ANALYTICS_DETECTOR_WINDOW_SIZES": '{"tvl": 48, "apy": 168, "gas": 100}'}
        with patch.dict(os.environ, env):
            settings = Settings(_env_file=None)
        assert settings.detector_window_sizes["tvl"] == 48

    def test_env_var_case_insensitive(self):
        with patch.dict(os.environ, {"pool_analytics_momentum_threshold": "0.07"}):
            settings = Settings(_env_file=None)
        assert settings.momentum_threshold == Decimal("0.07")


class TestFieldConstraints:
    """Test pydantic field bounds."""

    @pytest.mark.parametrize(
        "field,value",
        [
            ("risk_free_rate", Decimal("1.5")),
            ("var_confidence", Decimal(1)),
            ("periods_per_year", 0),
            ("price_stability_floor", 101),
            ("allocation_step_bps", 0),
            ("statistics_timeout_seconds", 0),
        ],
    )
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestValidateSettings:
    """Test startup validation."""

    def test_defaults_are_valid(self, settings):
        validate_settings(settings)

    def test_non_monotone_cutoffs(self):
        settings = Settings(
            _env_file=None,
            volatility_regime_cutoffs=(Decimal("0.03"), Decimal("0.01"), Decimal("0.06")),
        )
        with pytest.raises(ConfigurationError, match="strictly increasing") as exc_info:
            validate_settings(settings)
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    def test_change_ladder_order(self):
        settings = Settings(_env_file=None, critical_change_bps=3000, emergency_change_bps=2000)
        with pytest.raises(ConfigurationError, match="critical_change_bps"):
            validate_settings(settings)

    def test_detector_window_too_small(self):
        settings = Settings(_env_file=None, detector_window_sizes={"tvl": 1, "apy": 168, "gas": 100})
        with pytest.raises(ConfigurationError, match="at least 2"):
            validate_settings(settings)

    def test_mismatched_detector_metrics(self):
        settings = Settings(_env_file=None, detector_thresholds={"tvl": Decimal(3)})
        with pytest.raises(ConfigurationError, match="different metrics"):
            validate_settings(settings)

    def test_all_problems_reported(self):
        settings = Settings(
            _env_file=None,
            critical_change_bps=3000,
            emergency_change_bps=2000,
            min_strategy_weight_bps=5000,
            max_strategy_weight_bps=4000,
        )
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(settings)
        message = str(exc_info.value)
        assert "critical_change_bps" in message
        assert "min_strategy_weight_bps" in message


def test_get_settings_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
