"""
Unit tests for the half-Kelly position sizer.

Tests cover:
- The stable pool sizing scenario (capped at TVL, scaled by volatility)
- No-edge and certain-loss rejections
- Invalid inputs
- Size bounds
"""

from decimal import Decimal

import pytest

from pool_analytics.optimizer.position_sizer import PositionSize, PositionSizer, PositionSizeResult

TVL = Decimal(1_000_000)


@pytest.fixture
def sizer():
    return PositionSizer()


def test_stable_pool_capped_at_tvl(sizer):
    """Test risk 10 / volatility 1%: Kelly 8, half Kelly capped, size 0.99 TVL."""
    result = sizer.calculate_position_size(TVL, 10, Decimal("0.01"))

    assert result.size == Decimal(990_000)
    assert result.kelly_fraction == Decimal(8)
    assert result.win_ratio == Decimal("0.9")
    assert result.loss_ratio == Decimal("0.1")
    assert result.result_code == PositionSizeResult.CAPPED_AT_TVL


def test_uncapped_half_kelly(sizer):
    """Test risk 40: Kelly 0.5, half Kelly 0.25."""
    result = sizer.calculate_position_size(TVL, 40, Decimal("0.01"))

    assert result.result_code == PositionSizeResult.SUCCESS
    assert result.size == Decimal(247_500)


def test_no_edge(sizer):
    result = sizer.calculate_position_size(TVL, 50, Decimal("0.01"))
    assert result.size == 0
    assert result.result_code == PositionSizeResult.NO_EDGE


def test_certain_loss(sizer):
    result = sizer.calculate_position_size(TVL, 100, Decimal("0.01"))
    assert result.size == 0
    assert result.result_code == PositionSizeResult.CERTAIN_LOSS


def test_zero_risk_takes_cap(sizer):
    result = sizer.calculate_position_size(TVL, 0, Decimal(0))
    assert result.size == TVL
    assert result.result_code == PositionSizeResult.SUCCESS


@pytest.mark.parametrize("tvl,risk", [(Decimal(0), 10), (Decimal(-5), 10), (TVL, 101), (TVL, -1)])
def test_invalid_inputs(sizer, tvl, risk):
    result = sizer.calculate_position_size(tvl, risk, Decimal("0.01"))
    assert result.result_code == PositionSizeResult.INVALID_INPUT
    assert result.size == 0


def test_extreme_volatility_sizes_to_zero(sizer):
    result = sizer.calculate_position_size(TVL, 10, Decimal("1.5"))
    assert result.size == 0


@pytest.mark.parametrize("risk", range(0, 101, 5))
def test_size_within_tvl(sizer, risk):
    """Test that 0 <= size <= TVL across the risk range."""
    result = sizer.calculate_position_size(TVL, risk, Decimal("0.02"))
    assert 0 <= result.size <= TVL


def test_neutral():
    assert PositionSize.neutral().size == 0
