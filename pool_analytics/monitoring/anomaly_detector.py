"""
Rolling Z-Score Anomaly Detector

Keeps the last W samples of one metric in a deque and flags a sample as
anomalous when its z-score against the window (the sample included) exceeds the
threshold.

Invariants:
- The window never holds more than W samples (deque(maxlen=W) evicts oldest)
- Mean and standard deviation are recomputed after every insert
- No anomaly fires before the window holds two samples, nor while the window is
  flat (standard deviation 0)
"""

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from pool_analytics.computation import timeseries as ts
from pool_analytics.core.numerics import ZERO, fixed_point


@dataclass(frozen=True)
class DetectorReading:
    """Outcome of one detector update."""

    value: Decimal
    z_score: Decimal
    mean: Decimal
    std_dev: Decimal
    window_size: int  # Samples currently in the window
    is_anomaly: bool


class AnomalyDetector:
    """
    Rolling-window z-score detector for a single metric.

    Example:
        >>> detector = AnomalyDetector(window_size=24, threshold=Decimal(3))
        >>> for _ in range(23):
        ...     detector.update(Decimal(100))
        >>> detector.update(Decimal(250)).is_anomaly
        True
    """

    def __init__(self, window_size: int, threshold: Decimal):
        """
        Args:
            window_size: Maximum samples kept (W)
            threshold: Absolute z-score above which a sample is anomalous

        Raises:
            ValueError: If window_size is less than 2 or threshold is not positive
        """
        if window_size < 2:
            raise ValueError("window_size must be at least 2")
        if threshold <= 0:
            raise ValueError("threshold must be positive")
        self.window_size = window_size
        self.threshold = threshold
        self._window: deque[Decimal] = deque(maxlen=window_size)
        self.mean = ZERO
        self.std_dev = ZERO

    def __len__(self) -> int:
        return len(self._window)

    @property
    def values(self) -> tuple[Decimal, ...]:
        return tuple(self._window)

    def _recompute(self) -> None:
        data = tuple(self._window)
        self.mean = ts.mean(data)
        self.std_dev = ts.std_dev(data) if len(data) >= 2 else ZERO

    def update(self, value: Decimal) -> DetectorReading:
        """
        Push a sample, evict beyond W, recompute statistics and score it.

        Raises:
            NumericOverflow: If the statistics overflow the fixed-point range.
        """
        self._window.append(value)
        self._recompute()

        z_score = ZERO
        if self.std_dev > 0:
            with fixed_point():
                z_score = (value - self.mean) / self.std_dev

        is_anomaly = len(self._window) >= 2 and self.std_dev > 0 and abs(z_score) > self.threshold
        return DetectorReading(
            value=value,
            z_score=z_score,
            mean=self.mean,
            std_dev=self.std_dev,
            window_size=len(self._window),
            is_anomaly=is_anomaly,
        )

    def load(self, values: Iterable[Decimal]) -> None:
        """Replace the window contents (newest last) and recompute statistics."""
        self._window.clear()
        self._window.extend(values)
        self._recompute()

    def copy(self) -> "AnomalyDetector":
        clone = AnomalyDetector(self.window_size, self.threshold)
        clone._window.extend(self._window)
        clone.mean = self.mean
        clone.std_dev = self.std_dev
        return clone
