"""
JIT-Compiled Feature Kernels using Numba

Float64 kernels used by the feature synthesizer once values have crossed the
fixed-point boundary. All functions are decorated with @njit(cache=True).

- sanitize: replace NaN / inf with 0.0
- composition_entropy: normalized Shannon entropy of token weights
- pad_or_truncate: fixed-length copy of a vector
- seasonality_profile: 24 hourly + 7 weekday buckets, each block L1-normalized
- local_extrema: most recent local minima or maxima
"""

import numpy as np
from numba import njit

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400
SECONDS_PER_WEEK = 604800
SEASONALITY_BUCKETS = 31


@njit(cache=True)
def sanitize(values: np.ndarray) -> np.ndarray:
    """
    Replace non-finite entries with 0.0.

    Args:
        values: 1D float64 array

    Returns:
        New array with every NaN and infinity set to 0.0
    """
    result = values.copy()
    for i in range(len(result)):
        if not np.isfinite(result[i]):
            result[i] = 0.0
    return result


@njit(cache=True)
def composition_entropy(weights: np.ndarray) -> float:
    """
    Shannon entropy of token weights normalized by log(n).

    Formula:
        H = -sum(w * ln w) / ln(n), clamped to [0, 1]

    A single-token pool has entropy 0; an equal-weight pool has entropy 1.

    Example:
        >>> composition_entropy(np.array([0.5, 0.5]))
        1.0
    """
    n = len(weights)
    if n <= 1:
        return 0.0

    entropy = 0.0
    for i in range(n):
        w = weights[i]
        if w > 0.0:
            entropy -= w * np.log(w)

    result = entropy / np.log(n)
    if result < 0.0:
        return 0.0
    if result > 1.0:
        return 1.0
    return result


@njit(cache=True)
def pad_or_truncate(values: np.ndarray, size: int) -> np.ndarray:
    """Copy the first `size` entries into a zero vector of length `size`."""
    result = np.zeros(size, dtype=np.float64)
    count = min(len(values), size)
    for i in range(count):
        result[i] = values[i]
    return result


@njit(cache=True)
def seasonality_profile(timestamps: np.ndarray, values: np.ndarray) -> np.ndarray:
    """
    Bucket absolute values by hour of day and day of week.

    Buckets 0-23 hold the hourly profile and 24-30 the weekday profile (day 0
    is the weekday of the Unix epoch). Each block is L1-normalized; an empty
    block stays all zeros.

    Args:
        timestamps: 1D int64 array of Unix timestamps
        values: 1D float64 array (same length)

    Returns:
        1D float64 array of length 31
    """
    profile = np.zeros(SEASONALITY_BUCKETS, dtype=np.float64)
    n = min(len(timestamps), len(values))

    for i in range(n):
        value = abs(values[i])
        if not np.isfinite(value):
            continue
        hour = (timestamps[i] % SECONDS_PER_DAY) // SECONDS_PER_HOUR
        day = (timestamps[i] % SECONDS_PER_WEEK) // SECONDS_PER_DAY
        profile[hour] += value
        profile[24 + day] += value

    hour_total = 0.0
    for i in range(24):
        hour_total += profile[i]
    if hour_total > 0.0:
        for i in range(24):
            profile[i] /= hour_total

    day_total = 0.0
    for i in range(24, SEASONALITY_BUCKETS):
        day_total += profile[i]
    if day_total > 0.0:
        for i in range(24, SEASONALITY_BUCKETS):
            profile[i] /= day_total

    return profile


@njit(cache=True)
def local_extrema(values: np.ndarray, count: int, find_maxima: bool) -> np.ndarray:
    """
    Most recent local extrema, newest first.

    A point is a local maximum when it is strictly above both neighbours (a
    local minimum when strictly below). Missing levels are 0.0.

    Args:
        values: 1D float64 array
        count: Number of levels to return
        find_maxima: True for resistance levels, False for support levels

    Returns:
        1D float64 array of length `count`
    """
    result = np.zeros(count, dtype=np.float64)
    found = 0
    i = len(values) - 2
    while i >= 1 and found < count:
        previous = values[i - 1]
        current = values[i]
        following = values[i + 1]
        if find_maxima:
            is_extremum = current > previous and current > following
        else:
            is_extremum = current < previous and current < following
        if is_extremum:
            result[found] = current
            found += 1
        i -= 1
    return result
