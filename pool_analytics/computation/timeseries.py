"""
Time-Series Primitives

Decimal implementations of the windowed statistics shared by every analysis
phase. Drawdown, EMA, z-score and slope calculations all go through this module
so index arithmetic lives in one tested place.

Conventions:
- A series is an ordered sequence of (timestamp, value) pairs; most helpers take
  the plain value sequence (see values()).
- Every routine returns Decimal(0) (or an empty tuple) on empty input and never
  raises, except NumericOverflow when the fixed-point exponent range is exceeded.
- Variance and covariance are unbiased (n - 1).

Functions:
- mean, variance, std_dev, covariance, correlation
- ema_half_life: time-decayed average with weight exp(-ln2 * age / H)
- ema, wilder_smooth, sma: period-based smoothing
- linear_slope, relative_slope: OLS slope over the point index
- window: last N points
- zscore: (value - mean) / std_dev, 0 when std_dev is 0
- pct_changes, value_index, compounded_growth
- drawdown_series, max_drawdown: running-peak drawdown
- quantile: floor-index empirical quantile
"""

from collections.abc import Sequence
from decimal import Decimal

from pool_analytics.core.numerics import LN2, ONE, TWO, ZERO, clamp, dsqrt, fixed_point

Series = Sequence[tuple[int, Decimal]]


def values(series: Series) -> tuple[Decimal, ...]:
    """Strip timestamps from a series."""
    return tuple(value for _, value in series)


def window(data: Sequence[Decimal], size: int) -> tuple[Decimal, ...]:
    """
    Last `size` points of a sequence.

    When fewer points are available the whole sequence is returned.
    """
    if size <= 0:
        return ()
    return tuple(data[-size:])


def mean(data: Sequence[Decimal]) -> Decimal:
    if not data:
        return ZERO
    with fixed_point():
        return sum(data, ZERO) / Decimal(len(data))


def variance(data: Sequence[Decimal]) -> Decimal:
    """Unbiased sample variance; 0 for fewer than two points."""
    n = len(data)
    if n < 2:
        return ZERO
    avg = mean(data)
    with fixed_point():
        return sum(((x - avg) ** 2 for x in data), ZERO) / Decimal(n - 1)


def std_dev(data: Sequence[Decimal]) -> Decimal:
    return dsqrt(variance(data))


def covariance(x: Sequence[Decimal], y: Sequence[Decimal]) -> Decimal:
    """Unbiased covariance of two equal-length sequences; 0 otherwise."""
    n = len(x)
    if n < 2 or n != len(y):
        return ZERO
    mean_x = mean(x)
    mean_y = mean(y)
    with fixed_point():
        total = sum(((a - mean_x) * (b - mean_y) for a, b in zip(x, y)), ZERO)
        return total / Decimal(n - 1)


def correlation(x: Sequence[Decimal], y: Sequence[Decimal]) -> Decimal:
    """Pearson correlation clamped to [-1, 1]; 0 when either side is flat."""
    std_x = std_dev(x)
    std_y = std_dev(y)
    if std_x == 0 or std_y == 0:
        return ZERO
    with fixed_point():
        return clamp(covariance(x, y) / (std_x * std_y), -ONE, ONE)


def ema_half_life(series: Series, half_life: Decimal, now: int | None = None) -> Decimal:
    """
    Exponential moving average with a time half-life.

    Each point is weighted by exp(-ln2 * (now - t) / half_life). `now` defaults
    to the last timestamp of the series. A non-positive half-life returns the
    latest value.

    Args:
        series: Ordered (timestamp, value) pairs
        half_life: Half-life in the same unit as the timestamps
        now: Reference time

    Returns:
        Weighted average
    """
    if not series:
        return ZERO
    if half_life <= 0:
        return series[-1][1]
    reference = series[-1][0] if now is None else now

    with fixed_point():
        decay = LN2 / half_life
        weighted = ZERO
        total_weight = ZERO
        for timestamp, value in series:
            age = Decimal(max(reference - timestamp, 0))
            weight = (-(decay * age)).exp()
            weighted += weight * value
            total_weight += weight
        if total_weight == 0:
            return series[-1][1]
        return weighted / total_weight


def sma(data: Sequence[Decimal], period: int) -> Decimal:
    """Simple average of the last `period` points."""
    return mean(window(data, period))


def ema(data: Sequence[Decimal], period: int) -> tuple[Decimal, ...]:
    """
    Period EMA with alpha = 2 / (period + 1), seeded with the SMA of the first
    `period` points.

    Returns:
        One value per point from index period-1 onwards (empty when the input
        is shorter than the period).
    """
    if period < 1 or len(data) < period:
        return ()
    with fixed_point():
        alpha = TWO / Decimal(period + 1)
        current = sum(data[:period], ZERO) / Decimal(period)
        result = [current]
        for value in data[period:]:
            current = alpha * value + (ONE - alpha) * current
            result.append(current)
    return tuple(result)


def wilder_smooth(data: Sequence[Decimal], period: int) -> tuple[Decimal, ...]:
    """
    Wilder smoothing: SMA seed over the first `period` points, then
    prev + (value - prev) / period.
    """
    if period < 1 or len(data) < period:
        return ()
    with fixed_point():
        divisor = Decimal(period)
        current = sum(data[:period], ZERO) / divisor
        result = [current]
        for value in data[period:]:
            current = current + (value - current) / divisor
            result.append(current)
    return tuple(result)


def linear_slope(data: Sequence[Decimal]) -> Decimal:
    """Ordinary least squares slope of value against point index."""
    n = len(data)
    if n < 2:
        return ZERO
    with fixed_point():
        count = Decimal(n)
        mean_x = Decimal(n - 1) / TWO
        mean_y = sum(data, ZERO) / count
        numerator = ZERO
        denominator = ZERO
        for index, value in enumerate(data):
            dx = Decimal(index) - mean_x
            numerator += dx * (value - mean_y)
            denominator += dx * dx
        return numerator / denominator


def relative_slope(data: Sequence[Decimal]) -> Decimal:
    """OLS slope divided by the series mean (fraction of the mean per point)."""
    avg = mean(data)
    if avg == 0:
        return ZERO
    with fixed_point():
        return linear_slope(data) / avg


def zscore(value: Decimal, data: Sequence[Decimal]) -> Decimal:
    """(value - mean) / std_dev over `data`; 0 when std_dev is 0."""
    deviation = std_dev(data)
    if deviation == 0:
        return ZERO
    with fixed_point():
        return (value - mean(data)) / deviation


def pct_changes(data: Sequence[Decimal]) -> tuple[Decimal, ...]:
    """Simple period-over-period changes; a zero base yields 0."""
    result = []
    with fixed_point():
        for previous, current in zip(data, data[1:]):
            result.append(ZERO if previous == 0 else (current - previous) / previous)
    return tuple(result)


def value_index(returns: Sequence[Decimal]) -> tuple[Decimal, ...]:
    """
    Cumulative value of one unit invested: 1, (1+r1), (1+r1)(1+r2), ...

    The result has len(returns) + 1 points.
    """
    if not returns:
        return ()
    level = ONE
    result = [level]
    with fixed_point():
        for value in returns:
            level = level * (ONE + value)
            result.append(level)
    return tuple(result)


def compounded_growth(returns: Sequence[Decimal]) -> Decimal:
    """Product of (1 + r); 1 for an empty sequence."""
    growth = ONE
    with fixed_point():
        for value in returns:
            growth *= ONE + value
    return growth


def drawdown_series(data: Sequence[Decimal]) -> tuple[Decimal, ...]:
    """
    Fractional drawdown from the running peak at every point.

    Each entry is (value - peak) / peak, so it is <= 0. Points where the peak is
    not positive report 0.
    """
    result = []
    peak: Decimal | None = None
    with fixed_point():
        for value in data:
            if peak is None or value > peak:
                peak = value
            result.append(ZERO if peak <= 0 else (value - peak) / peak)
    return tuple(result)


def max_drawdown(data: Sequence[Decimal]) -> Decimal:
    """
    Largest peak-to-trough decline as a non-positive fraction.

    Example:
        >>> max_drawdown([Decimal(100), Decimal(150), Decimal(75), Decimal(120)])
        Decimal('-0.5')
    """
    drawdowns = drawdown_series(data)
    if not drawdowns:
        return ZERO
    return min(drawdowns)


def quantile(data: Sequence[Decimal], q: Decimal) -> Decimal:
    """
    Empirical quantile: the sorted value at index floor(q * n).

    q is clamped to [0, 1]; the index is clamped to the last element.
    """
    n = len(data)
    if n == 0:
        return ZERO
    ordered = sorted(data)
    with fixed_point():
        index = int(clamp(q, ZERO, ONE) * Decimal(n))
    return ordered[min(index, n - 1)]
