"""
Advanced Risk and Performance Metrics

Fixed-point implementations of the pool-level statistics derived from a
NormalizedPool's performance history.

Metrics:
- Alpha: mean period return - (risk-free + market return), both per period
- Beta: cov(pool, market) / var(market), 1 when the market series is flat
- Sharpe: (mean - risk-free) / std_dev, 0 when std_dev is 0
- Sortino: (mean - risk-free) / std_dev(min(r - risk-free, 0)), 0 when flat
- Max Drawdown: running-peak decline of the TVL history (non-positive)
- Value at Risk: empirical (1 - c) quantile of returns, needs 20 points
- Calmar: annualized return / |max drawdown|, 0 without drawdown
- Omega: excess gains over the threshold / excess losses below it
- Annualized Return: compounded growth scaled to periods_per_year

Supplementary performance statistics (PerformanceStats) feed the performance
target section of the feature vector: realized APY, total return, recovery
factor, win/loss ratio, profit factor and expected shortfall.

Ratios whose denominator is zero while the numerator is positive are capped at
RATIO_CAP instead of becoming infinite.
"""

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from decimal import Decimal

from pool_analytics.computation import timeseries as ts
from pool_analytics.core.numerics import ONE, ZERO, fixed_point, per_period_rate, safe_div
from pool_analytics.data.ingest import NormalizedPool

logger = logging.getLogger(__name__)

RATIO_CAP = Decimal(10)
MIN_VAR_POINTS = 20
MIN_RETURN_POINTS = 2


@dataclass(frozen=True)
class MetricsConfig:
    """
    Constants used by the derived statistics.

    Attributes:
        risk_free_rate: Annualized risk-free rate
        market_return: Annualized market return
        var_confidence: VaR / expected shortfall confidence level
        periods_per_year: Periods per year of the return history
        market_returns: Configured benchmark series (empty: synthetic)
    """

    risk_free_rate: Decimal = Decimal("0.02")
    market_return: Decimal = Decimal("0.08")
    var_confidence: Decimal = Decimal("0.95")
    periods_per_year: int = 365
    market_returns: tuple[tuple[int, Decimal], ...] = ()

    @classmethod
    def from_settings(cls, settings) -> "MetricsConfig":
        return cls(
            risk_free_rate=settings.risk_free_rate,
            market_return=settings.market_return,
            var_confidence=settings.var_confidence,
            periods_per_year=settings.periods_per_year,
            market_returns=tuple(settings.market_returns),
        )

    @property
    def risk_free_per_period(self) -> Decimal:
        return per_period_rate(self.risk_free_rate, self.periods_per_year)

    @property
    def market_per_period(self) -> Decimal:
        return per_period_rate(self.market_return, self.periods_per_year)


@dataclass(frozen=True)
class AdvancedMetrics:
    """
    Risk-adjusted statistics for one pool.

    Attributes:
        insufficient: Names of statistics that lacked history ("returns", "var")
    """

    alpha: Decimal = ZERO
    beta: Decimal = ONE
    sharpe: Decimal = ZERO
    sortino: Decimal = ZERO
    max_drawdown: Decimal = ZERO
    value_at_risk: Decimal = ZERO
    calmar: Decimal = ZERO
    omega: Decimal = ZERO
    annualized_return: Decimal = ZERO
    insufficient: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def neutral(cls) -> "AdvancedMetrics":
        """Result used when the computation overflowed."""
        return cls()

    def as_dict(self) -> dict[str, Decimal]:
        data = asdict(self)
        data.pop("insufficient")
        return data


@dataclass(frozen=True)
class PerformanceStats:
    realized_apy: Decimal = ZERO
    total_return: Decimal = ZERO
    recovery_factor: Decimal = ZERO
    win_loss_ratio: Decimal = ZERO
    profit_factor: Decimal = ZERO
    expected_shortfall: Decimal = ZERO


def _capped_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == 0:
        return RATIO_CAP if numerator > 0 else ZERO
    with fixed_point():
        return numerator / denominator


# ============================================================================
# Individual metrics
# ============================================================================


def calculate_alpha(returns: Sequence[Decimal], config: MetricsConfig) -> Decimal:
    """
    Excess of the mean period return over risk-free plus market return.

    Example:
        >>> calculate_alpha([], MetricsConfig())
        Decimal('0')
    """
    if not returns:
        return ZERO
    with fixed_point():
        return ts.mean(returns) - (config.risk_free_per_period + config.market_per_period)


def calculate_beta(returns: Sequence[Decimal], market: Sequence[Decimal]) -> Decimal:
    """Sensitivity of pool returns to market returns; 1 when the market is flat."""
    market_variance = ts.variance(market)
    if market_variance == 0:
        return ONE
    with fixed_point():
        return ts.covariance(returns, market) / market_variance


def calculate_sharpe_ratio(returns: Sequence[Decimal], risk_free_per_period: Decimal) -> Decimal:
    deviation = ts.std_dev(returns)
    if deviation == 0:
        return ZERO
    with fixed_point():
        return (ts.mean(returns) - risk_free_per_period) / deviation


def calculate_sortino_ratio(returns: Sequence[Decimal], target: Decimal) -> Decimal:
    """
    Sharpe numerator over the standard deviation of the clipped downside
    series min(r - target, 0).

    A series whose downside is constant (including all-flat returns) has no
    downside deviation and scores 0.
    """
    with fixed_point():
        downside = [min(value - target, ZERO) for value in returns]
    deviation = ts.std_dev(downside)
    if deviation == 0:
        return ZERO
    with fixed_point():
        return (ts.mean(returns) - target) / deviation


def calculate_max_drawdown(tvl: Sequence[Decimal]) -> Decimal:
    return ts.max_drawdown(tvl)


def calculate_value_at_risk(returns: Sequence[Decimal], confidence: Decimal) -> Decimal:
    """
    Historical VaR: the (1 - confidence) quantile of returns.

    Returns 0 with fewer than MIN_VAR_POINTS returns.
    """
    if len(returns) < MIN_VAR_POINTS:
        return ZERO
    return ts.quantile(returns, ONE - confidence)


def calculate_expected_shortfall(returns: Sequence[Decimal], confidence: Decimal) -> Decimal:
    """Mean of the returns at or below VaR; 0 below MIN_VAR_POINTS."""
    if len(returns) < MIN_VAR_POINTS:
        return ZERO
    var = calculate_value_at_risk(returns, confidence)
    return ts.mean([value for value in returns if value <= var])


def calculate_annualized_return(returns: Sequence[Decimal], periods_per_year: int) -> Decimal:
    """
    Compounded growth scaled to one year: growth ** (periods / n) - 1.

    A total loss reports -1.
    """
    if not returns:
        return ZERO
    growth = ts.compounded_growth(returns)
    if growth <= 0:
        return -ONE
    with fixed_point():
        return growth ** (Decimal(periods_per_year) / Decimal(len(returns))) - ONE


def calculate_calmar_ratio(annualized_return: Decimal, max_drawdown: Decimal) -> Decimal:
    if max_drawdown == 0:
        return ZERO
    return safe_div(annualized_return, abs(max_drawdown))


def calculate_omega_ratio(returns: Sequence[Decimal], threshold: Decimal) -> Decimal:
    """Sum of excess gains above threshold over the sum of shortfalls below it."""
    gains = ZERO
    losses = ZERO
    with fixed_point():
        for value in returns:
            excess = value - threshold
            if excess > 0:
                gains += excess
            else:
                losses -= excess
    return _capped_ratio(gains, losses)


def calculate_profit_factor(returns: Sequence[Decimal]) -> Decimal:
    with fixed_point():
        gains = sum((value for value in returns if value > 0), ZERO)
        losses = -sum((value for value in returns if value < 0), ZERO)
    return _capped_ratio(gains, losses)


def calculate_win_loss_ratio(returns: Sequence[Decimal]) -> Decimal:
    """Average winning return over the absolute average losing return."""
    wins = [value for value in returns if value > 0]
    losses = [value for value in returns if value < 0]
    return _capped_ratio(ts.mean(wins), abs(ts.mean(losses)))


def calculate_recovery_factor(total_return: Decimal, max_drawdown: Decimal) -> Decimal:
    if max_drawdown == 0:
        return ZERO
    return safe_div(total_return, abs(max_drawdown))


# ============================================================================
# Aggregation
# ============================================================================


def aligned_market_returns(
    pool: NormalizedPool, config: MetricsConfig
) -> tuple[tuple[Decimal, ...], tuple[Decimal, ...]]:
    """
    Pair the pool's returns with a benchmark series of the same length.

    The observation's own market_returns take precedence over the configured
    series; both are aligned on common timestamps. Without at least two common
    points a synthetic benchmark returning the per-period market rate is used.

    Returns:
        (pool returns, market returns) of equal length
    """
    for source in (pool.observation.market_returns, config.market_returns):
        if not source:
            continue
        lookup = dict(source)
        pairs = [(value, lookup[t]) for t, value in pool.return_series if t in lookup]
        if len(pairs) >= MIN_RETURN_POINTS:
            return tuple(p for p, _ in pairs), tuple(m for _, m in pairs)

    returns = pool.returns
    return returns, (config.market_per_period,) * len(returns)


def calculate_advanced_metrics(pool: NormalizedPool, config: MetricsConfig | None = None) -> AdvancedMetrics:
    """
    Compute all advanced metrics for a pool.

    Args:
        pool: Normalized observation
        config: Metric constants (defaults when omitted)

    Returns:
        AdvancedMetrics with insufficient-history flags

    Raises:
        NumericOverflow: If any intermediate leaves the fixed-point range.
    """
    config = config or MetricsConfig()
    returns = pool.returns
    insufficient: set[str] = set()
    if len(returns) < MIN_RETURN_POINTS:
        insufficient.add("returns")
    if len(returns) < MIN_VAR_POINTS:
        insufficient.add("var")

    risk_free = config.risk_free_per_period
    paired_returns, market = aligned_market_returns(pool, config)

    max_drawdown = calculate_max_drawdown(pool.tvl_values)
    annualized = calculate_annualized_return(returns, config.periods_per_year)

    metrics = AdvancedMetrics(
        alpha=calculate_alpha(returns, config),
        beta=calculate_beta(paired_returns, market),
        sharpe=calculate_sharpe_ratio(returns, risk_free),
        sortino=calculate_sortino_ratio(returns, risk_free),
        max_drawdown=max_drawdown,
        value_at_risk=calculate_value_at_risk(returns, config.var_confidence),
        calmar=calculate_calmar_ratio(annualized, max_drawdown),
        omega=calculate_omega_ratio(returns, risk_free),
        annualized_return=annualized,
        insufficient=frozenset(insufficient),
    )

    if insufficient:
        logger.debug(
            "Insufficient history for advanced metrics",
            extra={"pool_id": pool.pool_id, "points": len(returns), "flags": sorted(insufficient)},
        )
    return metrics


def calculate_performance_stats(
    pool: NormalizedPool,
    metrics: AdvancedMetrics,
    config: MetricsConfig | None = None,
) -> PerformanceStats:
    """Supplementary statistics for the performance-target feature section."""
    config = config or MetricsConfig()
    returns = pool.returns
    total_return = ts.compounded_growth(returns) - ONE if returns else ZERO

    return PerformanceStats(
        realized_apy=metrics.annualized_return,
        total_return=total_return,
        recovery_factor=calculate_recovery_factor(total_return, metrics.max_drawdown),
        win_loss_ratio=calculate_win_loss_ratio(returns),
        profit_factor=calculate_profit_factor(returns),
        expected_shortfall=calculate_expected_shortfall(returns, config.var_confidence),
    )
