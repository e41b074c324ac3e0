"""
Unit tests for the fixed-point time-series primitives.

Tests cover:
- Moments (mean, variance, std dev, covariance, correlation)
- Moving averages (SMA, EMA, Wilder smoothing, half-life EMA)
- Slopes, z-score, percentage changes and value index
- Drawdown and empirical quantile
"""

from decimal import Decimal

import pytest

from pool_analytics.computation import timeseries as ts

D = Decimal


def decimals(*values):
    return tuple(D(str(value)) for value in values)


# ============================================================================
# Moments
# ============================================================================


def test_empty_inputs_return_zero():
    """Test that every reducer returns 0 on empty input."""
    assert ts.mean(()) == 0
    assert ts.variance(()) == 0
    assert ts.std_dev(()) == 0
    assert ts.max_drawdown(()) == 0
    assert ts.quantile((), D("0.05")) == 0
    assert ts.ema_half_life((), D(10)) == 0


def test_mean_and_sample_variance():
    """Test mean and unbiased variance of a small sample."""
    data = decimals(2, 4, 4, 4, 5, 5, 7, 9)
    assert ts.mean(data) == D(5)
    assert abs(ts.variance(data) - D(32) / D(7)) < D("1e-25")


def test_variance_of_single_point_is_zero():
    assert ts.variance(decimals(3)) == 0


def test_std_dev_of_constant_series_is_zero():
    assert ts.std_dev(decimals(1, 1, 1, 1)) == 0


def test_covariance_requires_equal_lengths():
    assert ts.covariance(decimals(1, 2, 3), decimals(1, 2)) == 0


def test_correlation_of_identical_series_is_one():
    data = decimals(1, 3, 2, 5, 4)
    assert abs(ts.correlation(data, data) - 1) < D("1e-25")


def test_correlation_of_flat_series_is_zero():
    assert ts.correlation(decimals(1, 2, 3), decimals(2, 2, 2)) == 0


# ============================================================================
# Moving averages
# ============================================================================


def test_sma_uses_last_period_points():
    assert ts.sma(decimals(1, 2, 3, 4, 5), 2) == D("4.5")


def test_ema_seeded_with_sma():
    """Test EMA seeding and recursion with alpha = 2 / (period + 1)."""
    result = ts.ema(decimals(1, 2, 3, 4), 3)
    assert len(result) == 2
    assert result[0] == D(2)
    assert result[1] == D(3)  # 0.5 * 4 + 0.5 * 2


def test_ema_shorter_than_period_is_empty():
    assert ts.ema(decimals(1, 2), 3) == ()


def test_wilder_smooth():
    result = ts.wilder_smooth(decimals(2, 4, 6, 8), 2)
    assert result == (D(3), D("4.5"), D("6.25"))


def test_ema_half_life_weights_recent_points():
    """Test that a point one half-life old weighs half as much as the latest."""
    series = ((0, D(0)), (10, D(3)))
    # weights: 0.5 for t=0, 1 for t=10 -> (0 * 0.5 + 3 * 1) / 1.5 = 2
    assert abs(ts.ema_half_life(series, D(10)) - D(2)) < D("1e-30")


def test_ema_half_life_non_positive_returns_latest():
    series = ((0, D(1)), (10, D(7)))
    assert ts.ema_half_life(series, D(0)) == D(7)


# ============================================================================
# Slopes, z-score, changes
# ============================================================================


def test_linear_slope_of_line():
    assert ts.linear_slope(decimals(1, 3, 5, 7)) == D(2)


def test_relative_slope_of_flat_series_is_zero():
    assert ts.relative_slope(decimals(5, 5, 5)) == 0


def test_zscore():
    data = decimals(1, 2, 3, 4, 5)
    assert ts.zscore(D(3), data) == 0
    assert ts.zscore(D(5), data) > 0


def test_zscore_of_flat_window_is_zero():
    assert ts.zscore(D(9), decimals(1, 1, 1)) == 0


def test_pct_changes_with_zero_base():
    assert ts.pct_changes(decimals(0, 10, 15)) == (D(0), D("0.5"))


def test_value_index_starts_at_one():
    index = ts.value_index(decimals("0.1", "-0.5"))
    assert index == (D(1), D("1.1"), D("0.55"))


def test_compounded_growth():
    assert ts.compounded_growth(decimals("0.1", "0.1")) == D("1.21")
    assert ts.compounded_growth(()) == D(1)


# ============================================================================
# Drawdown and quantile
# ============================================================================


def test_max_drawdown_peak_to_trough():
    """Test the literal drawdown scenario 100 -> 150 -> 75 -> 120."""
    assert ts.max_drawdown(decimals(100, 150, 75, 120)) == D("-0.5")


def test_max_drawdown_non_decreasing_is_zero():
    assert ts.max_drawdown(decimals(100, 100, 110, 120)) == 0


def test_max_drawdown_strictly_decreasing_is_full_decline():
    assert ts.max_drawdown(decimals(200, 150, 100, 50)) == D("-0.75")


def test_drawdown_series_non_positive():
    assert all(value <= 0 for value in ts.drawdown_series(decimals(3, 1, 4, 1, 5, 9, 2, 6)))


@pytest.mark.parametrize(
    "q,expected",
    [(D("0"), D(1)), (D("0.5"), D(6)), (D("0.05"), D(1)), (D("1"), D(10))],
)
def test_quantile_sorted_index(q, expected):
    data = tuple(D(value) for value in (10, 1, 9, 2, 8, 3, 7, 4, 6, 5))
    assert ts.quantile(data, q) == expected


def test_window_returns_tail():
    assert ts.window(decimals(1, 2, 3), 2) == decimals(2, 3)
    assert ts.window(decimals(1, 2, 3), 10) == decimals(1, 2, 3)
    assert ts.window(decimals(1, 2, 3), 0) == ()
