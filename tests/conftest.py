"""
Shared fixtures for the pool analytics test suite.

Observations are built as JSON-compatible mappings (decimals as strings), the
same shape the ingestion layer receives.
"""

from decimal import Decimal

import pytest

from pool_analytics.core.config import Settings
from pool_analytics.core.telemetry import InMemoryTelemetry
from pool_analytics.data.ingest import NormalizedPool, ingest

DAY = 86400
BASE_TIME = 1_700_000_000


def series(values, start: int = 1, step: int = 1) -> list[list]:
    """[(t, value), ...] with string values, t = start, start + step, ..."""
    return [[start + index * step, str(value)] for index, value in enumerate(values)]


def daily_series(values, start: int = BASE_TIME - 60 * DAY) -> list[list]:
    return series(values, start=start, step=DAY)


def make_observation(**overrides) -> dict:
    """
    Balanced two-token stable pool with a short, gently rising history.

    Keyword overrides replace top-level fields; nested sections are replaced
    wholesale.
    """
    observation = {
        "observation_id": "obs-1",
        "observed_at": BASE_TIME,
        "pool_id": "pool-1",
        "pool_name": "USDC-USDT",
        "platform": "ref-finance",
        "chain": "near",
        "pool_kind": "stable",
        "creation_timestamp": BASE_TIME - 120 * DAY,
        "tvl": "1000000",
        "volume_24h": "250000",
        "volume_7d": "1500000",
        "liquidity": "1000000",
        "fee_structure": {"swap_fee": "0.003", "protocol_fee": "0.0005", "lp_fee": "0.0025"},
        "tokens": [
            {"symbol": "USDC", "weight": "0.5", "amount": "500000", "value_usd": "500000"},
            {"symbol": "USDT", "weight": "0.5", "amount": "500000", "value_usd": "500000"},
        ],
        "apy": {
            "total_apy": "0.12",
            "base_apy": "0.08",
            "reward_apy": "0.04",
            "historical_apy": daily_series(["0.11", "0.12", "0.12"]),
            "apy_stability_score": 80,
            "projected_apy": "0.115",
        },
        "risk": {"score": 10, "price_correlation": "0.95", "max_il_projected": "-0.01"},
        "volatility": {
            "daily_volatility": "0.01",
            "weekly_volatility": "0.02",
            "monthly_volatility": "0.04",
            "price_impact_1k": "0.0001",
            "price_impact_10k": "0.001",
            "volatility_rank": 20,
            "price_stability_score": 60,
        },
        "security": {"audit_score": 90, "contract_risk": 10, "centralization_risk": 20},
        "gas": {
            "near": {
                "avg_gas_cost": "0.0005",
                "gas_token_price": "4",
                "cost_usd": "0.002",
                "gas_efficiency_score": 95,
                "peak_hours": [14, 15],
            }
        },
        "users": {
            "total_users": 1200,
            "active_users_24h": 150,
            "avg_position_size": "5000",
            "avg_holding_period": "30",
            "user_concentration": "0.2",
        },
        "performance_history": {
            "daily_returns": daily_series(["0.001", "0.002", "-0.001", "0.0015", "0.0005"]),
            "tvl_history": daily_series(["990000", "995000", "992000", "998000", "1000000"]),
            "volume_history": daily_series(["240000", "245000", "250000", "248000", "250000"]),
            "il_history": daily_series(["0", "-0.001", "-0.0005", "0", "0"]),
        },
    }
    observation.update(overrides)
    return observation


def make_pool(**overrides) -> NormalizedPool:
    return ingest(make_observation(**overrides))


def performance_history(returns=None, tvl=None, start: int = 1) -> dict:
    """Performance history with timestamps start, start + 1, ..."""
    history = {}
    if returns is not None:
        history["daily_returns"] = series(returns, start=start)
    if tvl is not None:
        history["tvl_history"] = series(tvl, start=start)
    return history


@pytest.fixture
def observation():
    """Valid observation mapping."""
    return make_observation()


@pytest.fixture
def pool():
    """Normalized default pool."""
    return make_pool()


@pytest.fixture
def settings():
    """Default settings, isolated from the environment's .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def telemetry():
    return InMemoryTelemetry()


@pytest.fixture
def long_returns():
    """60 daily returns oscillating around a small positive drift."""
    pattern = [Decimal("0.004"), Decimal("-0.002"), Decimal("0.003"), Decimal("-0.001"), Decimal("0.002")]
    return [pattern[index % len(pattern)] for index in range(60)]
