"""
Technical Indicators

Fixed-point technical indicators computed on a pool's value index, the
cumulative growth of one unit invested at the start of the return history
(1, 1+r1, (1+r1)(1+r2), ...).

Indicators:
- RSI-14: Wilder smoothing of gains and losses, SMA-seeded
- MACD (12, 26, 9): EMA12 - EMA26, signal EMA9 of the MACD line, histogram
- Bollinger Bands (20, 2): SMA20 +/- 2 sample standard deviations
- ATR-14: Wilder-smoothed close-to-close true range
- Volatility regime: daily volatility against configured cutoffs
- Momentum, trend strength and trend regime helpers for the feature vector

An indicator without enough points reports 0 and adds its name to the
`insufficient` flags.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from pool_analytics.computation import timeseries as ts
from pool_analytics.core.numerics import HUNDRED, ONE, TWO, ZERO, fixed_point, safe_div
from pool_analytics.data.ingest import NormalizedPool

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BOLLINGER_PERIOD = 20
BOLLINGER_STD = TWO
ATR_PERIOD = 14
MOMENTUM_PERIOD = 10
TREND_WINDOW = 30
TREND_TOLERANCE = Decimal("0.001")

DEFAULT_REGIME_CUTOFFS = (Decimal("0.01"), Decimal("0.03"), Decimal("0.06"))


class VolatilityRegime(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


class TrendRegime(str, Enum):
    DOWNTREND = "downtrend"
    SIDEWAYS = "sideways"
    UPTREND = "uptrend"


@dataclass(frozen=True)
class TechnicalIndicators:
    """
    Latest indicator values for one pool.

    Attributes:
        rsi_14: RSI scaled to [0, 100]
        macd: MACD line (EMA12 - EMA26)
        macd_signal: EMA9 of the MACD line
        macd_histogram: macd - macd_signal
        bollinger_upper, bollinger_middle, bollinger_lower: Bollinger bands
        atr: Average true range of the value index
        volatility_regime: Regime of the daily volatility
        insufficient: Indicators that lacked history
    """

    rsi_14: Decimal = ZERO
    macd: Decimal = ZERO
    macd_signal: Decimal = ZERO
    macd_histogram: Decimal = ZERO
    bollinger_upper: Decimal = ZERO
    bollinger_middle: Decimal = ZERO
    bollinger_lower: Decimal = ZERO
    atr: Decimal = ZERO
    volatility_regime: VolatilityRegime = VolatilityRegime.LOW
    insufficient: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def neutral(cls) -> "TechnicalIndicators":
        return cls()


def calculate_rsi(prices: Sequence[Decimal], period: int = RSI_PERIOD) -> Decimal | None:
    """
    Relative Strength Index with Wilder smoothing.

    Formula:
        RS = avg_gain / avg_loss
        RSI = 100 - 100 / (1 + RS)

    Returns:
        RSI in [0, 100]; 100 when there are no losses, 50 when there is no
        movement at all; None with fewer than period + 1 prices.
    """
    if period < 1 or len(prices) < period + 1:
        return None

    with fixed_point():
        changes = [current - previous for previous, current in zip(prices, prices[1:])]
        gains = [max(change, ZERO) for change in changes]
        losses = [max(-change, ZERO) for change in changes]
    avg_gain = ts.wilder_smooth(gains, period)[-1]
    avg_loss = ts.wilder_smooth(losses, period)[-1]

    if avg_loss == 0:
        return HUNDRED if avg_gain > 0 else Decimal(50)
    with fixed_point():
        return HUNDRED - HUNDRED / (ONE + avg_gain / avg_loss)


def calculate_macd(
    prices: Sequence[Decimal],
    fast: int = MACD_FAST,
    slow: int = MACD_SLOW,
    signal: int = MACD_SIGNAL,
) -> tuple[Decimal | None, Decimal | None]:
    """
    MACD line and signal line.

    Returns:
        (macd, signal): macd is None with fewer than `slow` prices, signal is
        None while the MACD line has fewer than `signal` points.
    """
    fast_ema = ts.ema(prices, fast)
    slow_ema = ts.ema(prices, slow)
    if not slow_ema:
        return None, None

    # fast_ema starts at price index fast-1, slow_ema at slow-1
    offset = slow - fast
    with fixed_point():
        macd_line = [fast_ema[i + offset] - slow_value for i, slow_value in enumerate(slow_ema)]

    signal_ema = ts.ema(macd_line, signal)
    return macd_line[-1], (signal_ema[-1] if signal_ema else None)


def calculate_bollinger_bands(
    prices: Sequence[Decimal],
    period: int = BOLLINGER_PERIOD,
    num_std: Decimal = BOLLINGER_STD,
) -> tuple[Decimal, Decimal, Decimal] | None:
    """
    Bollinger Bands over the last `period` prices.

    Returns:
        (upper, middle, lower) or None with fewer than `period` prices.
    """
    if len(prices) < period:
        return None
    recent = ts.window(prices, period)
    middle = ts.mean(recent)
    width = ts.std_dev(recent)
    with fixed_point():
        return middle + num_std * width, middle, middle - num_std * width


def calculate_true_range(prices: Sequence[Decimal]) -> tuple[Decimal, ...]:
    """Close-to-close true range |P[t] - P[t-1]|."""
    with fixed_point():
        return tuple(abs(current - previous) for previous, current in zip(prices, prices[1:]))


def calculate_atr(prices: Sequence[Decimal], period: int = ATR_PERIOD) -> Decimal | None:
    """Wilder-smoothed ATR; None with fewer than period + 1 prices."""
    smoothed = ts.wilder_smooth(calculate_true_range(prices), period)
    return smoothed[-1] if smoothed else None


def classify_volatility_regime(
    daily_volatility: Decimal,
    cutoffs: Sequence[Decimal] = DEFAULT_REGIME_CUTOFFS,
) -> VolatilityRegime:
    """
    Classify daily volatility.

    Example:
        >>> classify_volatility_regime(Decimal("0.02"))
        <VolatilityRegime.MEDIUM: 'medium'>
    """
    low, medium, high = cutoffs
    if daily_volatility < low:
        return VolatilityRegime.LOW
    if daily_volatility < medium:
        return VolatilityRegime.MEDIUM
    if daily_volatility < high:
        return VolatilityRegime.HIGH
    return VolatilityRegime.EXTREME


def calculate_momentum(prices: Sequence[Decimal], period: int = MOMENTUM_PERIOD) -> Decimal:
    """Rate of change over `period` points: P[t] / P[t-period] - 1."""
    if len(prices) <= period:
        return ZERO
    base = prices[-period - 1]
    return safe_div(prices[-1], base, default=ONE) - ONE


def calculate_trend_strength(returns: Sequence[Decimal], window: int = TREND_WINDOW) -> Decimal:
    """Fraction of positive returns among the last `window` returns."""
    recent = ts.window(returns, window)
    if not recent:
        return ZERO
    positive = sum(1 for value in recent if value > 0)
    return safe_div(Decimal(positive), Decimal(len(recent)))


def classify_trend(
    prices: Sequence[Decimal],
    window: int = TREND_WINDOW,
    tolerance: Decimal = TREND_TOLERANCE,
) -> TrendRegime:
    """Trend regime from the relative OLS slope of the last `window` prices."""
    slope = ts.relative_slope(ts.window(prices, window))
    if slope > tolerance:
        return TrendRegime.UPTREND
    if slope < -tolerance:
        return TrendRegime.DOWNTREND
    return TrendRegime.SIDEWAYS


def calculate_technical_indicators(
    pool: NormalizedPool,
    regime_cutoffs: Sequence[Decimal] = DEFAULT_REGIME_CUTOFFS,
) -> TechnicalIndicators:
    """
    Compute the full indicator set for a pool.

    Raises:
        NumericOverflow: If any intermediate leaves the fixed-point range.
    """
    prices = ts.value_index(pool.returns)
    insufficient: set[str] = set()

    rsi = calculate_rsi(prices)
    if rsi is None:
        insufficient.add("rsi")

    macd, signal = calculate_macd(prices)
    if macd is None or signal is None:
        insufficient.add("macd")

    bands = calculate_bollinger_bands(prices)
    if bands is None:
        insufficient.add("bollinger")
        bands = (ZERO, ZERO, ZERO)

    atr = calculate_atr(prices)
    if atr is None:
        insufficient.add("atr")

    macd = macd if macd is not None else ZERO
    signal = signal if signal is not None else ZERO
    with fixed_point():
        histogram = macd - signal if "macd" not in insufficient else ZERO

    return TechnicalIndicators(
        rsi_14=rsi if rsi is not None else ZERO,
        macd=macd,
        macd_signal=signal,
        macd_histogram=histogram,
        bollinger_upper=bands[0],
        bollinger_middle=bands[1],
        bollinger_lower=bands[2],
        atr=atr if atr is not None else ZERO,
        volatility_regime=classify_volatility_regime(pool.observation.volatility.daily_volatility, regime_cutoffs),
        insufficient=frozenset(insufficient),
    )
