"""
Alert & Anomaly Engine

Keeps one rolling z-score detector per (pool, metric), classifies every change
on a severity ladder and dispatches alert events to subscribers.

Features:
- Per-metric detector policies (window size, z-score threshold)
- Severity ladder: NORMAL -> WARNING (volatility) -> CRITICAL -> EMERGENCY (change)
- Bounded alert history per (pool, metric)
- Synchronous callback dispatch in registration order; a failing subscriber is
  logged and the remaining subscribers still run
- Transactional multi-metric updates: all metrics of one observation are staged
  on copies and committed together unless the analysis was cancelled
- Poisoned detectors are rolled back and flagged until their next successful update
- Snapshot/restore of all detector state to a versioned JSON payload

Concurrency:
    A registry lock guards the lock map and the subscriber list. Each
    (pool, metric) key has its own lock; an update holds the locks of every key
    it touches from the read of the current state until the commit, so
    concurrent updates to one key serialize. Subscribers run with no lock held.

Usage:
    engine = AlertEngine.from_settings(get_settings())
    engine.subscribe(lambda event: print(event.severity.name, event.metric))
    outcome = engine.update_metrics("pool-1", {"tvl": Decimal(250)}, timestamp=1_700_000_000)
"""

import json
import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Any

from pool_analytics.computation import timeseries as ts
from pool_analytics.core.errors import ConfigurationError, DetectorPoisoned
from pool_analytics.core.numerics import BPS_SCALE, ZERO, fixed_point
from pool_analytics.core.telemetry import NoOpTelemetry, TelemetrySink
from pool_analytics.monitoring.anomaly_detector import AnomalyDetector

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = "pool-analytics/detectors"
SNAPSHOT_VERSION = 1

AlertCallback = Callable[["AlertEvent"], None]
DetectorKey = tuple[str, str]


# ============================================================================
# Severity Ladder
# ============================================================================


class AlertSeverity(IntEnum):
    """Alert severity levels, ordered."""

    NORMAL = 0
    WARNING = 1  # Recent changes are volatile
    CRITICAL = 2  # Single change >= 10%
    EMERGENCY = 3  # Single change >= 20%


@dataclass(frozen=True)
class SeverityThresholds:
    """Severity cut-offs, all in basis points."""

    warning_volatility_bps: Decimal = Decimal(500)
    critical_change_bps: Decimal = Decimal(1000)
    emergency_change_bps: Decimal = Decimal(2000)
    volatility_window: int = 12

    def __post_init__(self):
        if not self.critical_change_bps < self.emergency_change_bps:
            raise ConfigurationError("critical_change_bps must be below emergency_change_bps")
        if self.volatility_window < 1:
            raise ConfigurationError("volatility_window must be at least 1")


@dataclass(frozen=True)
class MetricPolicy:
    window_size: int
    threshold: Decimal


DEFAULT_POLICIES: dict[str, MetricPolicy] = {
    "tvl": MetricPolicy(window_size=24, threshold=Decimal("3.0")),
    "apy": MetricPolicy(window_size=168, threshold=Decimal("2.5")),
    "gas": MetricPolicy(window_size=100, threshold=Decimal("4.0")),
}


def change_bps(old_value: Decimal | None, new_value: Decimal) -> Decimal | None:
    """Absolute relative change in bps; None without a non-zero previous value."""
    if old_value is None or old_value == 0:
        return None
    with fixed_point():
        return abs(new_value - old_value) * BPS_SCALE / abs(old_value)


def classify_severity(
    change: Decimal | None,
    volatility: Decimal,
    thresholds: SeverityThresholds,
) -> AlertSeverity:
    """
    Place a change on the severity ladder.

    Args:
        change: Change of the latest sample in bps (None for the first sample)
        volatility: Average change in bps over the recent window
        thresholds: Severity cut-offs

    Returns:
        The highest severity whose condition holds
    """
    if change is not None:
        if change >= thresholds.emergency_change_bps:
            return AlertSeverity.EMERGENCY
        if change >= thresholds.critical_change_bps:
            return AlertSeverity.CRITICAL
    if volatility > thresholds.warning_volatility_bps:
        return AlertSeverity.WARNING
    return AlertSeverity.NORMAL


# ============================================================================
# Events and State
# ============================================================================


@dataclass(frozen=True)
class AlertEvent:
    """
    Structured alert emitted for one metric update.

    Attributes
    ----------
    pool_id : str
    metric : str
    severity : AlertSeverity
    old_value : Decimal or None
        Previous sample (None on the first update)
    new_value : Decimal
    change_bps : Decimal
        Relative change of this sample (0 when undefined)
    volatility_bps : Decimal
        Average change over the recent window
    z_score, mean, std_dev : Decimal
        Window statistics after the update
    window_size : int
        Samples in the window after the update
    threshold : Decimal
        Z-score threshold of the metric
    is_anomaly : bool
    timestamp : int
    """

    pool_id: str
    metric: str
    severity: AlertSeverity
    old_value: Decimal | None
    new_value: Decimal
    change_bps: Decimal
    volatility_bps: Decimal
    z_score: Decimal
    mean: Decimal
    std_dev: Decimal
    window_size: int
    threshold: Decimal
    is_anomaly: bool
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "metric": self.metric,
            "severity": self.severity.name.lower(),
            "old_value": None if self.old_value is None else str(self.old_value),
            "new_value": str(self.new_value),
            "change_bps": str(self.change_bps),
            "volatility_bps": str(self.volatility_bps),
            "z_score": str(self.z_score),
            "mean": str(self.mean),
            "std_dev": str(self.std_dev),
            "window_size": self.window_size,
            "threshold": str(self.threshold),
            "is_anomaly": self.is_anomaly,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertEvent":
        old_value = data.get("old_value")
        return cls(
            pool_id=data["pool_id"],
            metric=data["metric"],
            severity=AlertSeverity[str(data["severity"]).upper()],
            old_value=None if old_value is None else Decimal(old_value),
            new_value=Decimal(data["new_value"]),
            change_bps=Decimal(data.get("change_bps", "0")),
            volatility_bps=Decimal(data.get("volatility_bps", "0")),
            z_score=Decimal(data.get("z_score", "0")),
            mean=Decimal(data.get("mean", "0")),
            std_dev=Decimal(data.get("std_dev", "0")),
            window_size=int(data.get("window_size", 0)),
            threshold=Decimal(data.get("threshold", "0")),
            is_anomaly=bool(data.get("is_anomaly", False)),
            timestamp=int(data.get("timestamp", 0)),
        )


@dataclass
class DetectorState:
    """Everything the engine remembers about one (pool, metric)."""

    detector: AnomalyDetector
    recent_changes: deque[Decimal]
    history: deque[AlertEvent]
    last_value: Decimal | None = None
    poisoned: bool = False
    updates: int = 0

    def copy(self) -> "DetectorState":
        return DetectorState(
            detector=self.detector.copy(),
            recent_changes=deque(self.recent_changes, maxlen=self.recent_changes.maxlen),
            history=deque(self.history, maxlen=self.history.maxlen),
            last_value=self.last_value,
            poisoned=self.poisoned,
            updates=self.updates,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_size": self.detector.window_size,
            "threshold": str(self.detector.threshold),
            "values": [str(value) for value in self.detector.values],
            "last_value": None if self.last_value is None else str(self.last_value),
            "recent_changes": [str(value) for value in self.recent_changes],
            "history": [event.to_dict() for event in self.history],
            "poisoned": self.poisoned,
            "updates": self.updates,
        }


@dataclass(frozen=True)
class UpdateOutcome:
    """Result of a multi-metric update."""

    events: tuple[AlertEvent, ...] = ()
    poisoned: tuple[str, ...] = field(default=())  # Metrics rolled back in this update


# ============================================================================
# Engine
# ============================================================================


class AlertEngine:
    """
    Per-pool, per-metric anomaly detection with severity classification.

    Example:
        >>> engine = AlertEngine()
        >>> for _ in range(23):
        ...     engine.observe("pool-1", "tvl", Decimal(100), timestamp=0)
        >>> engine.observe("pool-1", "tvl", Decimal(250), timestamp=1).severity
        <AlertSeverity.EMERGENCY: 3>
    """

    def __init__(
        self,
        policies: Mapping[str, MetricPolicy] | None = None,
        thresholds: SeverityThresholds | None = None,
        history_size: int = 24,
        telemetry: TelemetrySink | None = None,
    ):
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self.policies = dict(policies if policies is not None else DEFAULT_POLICIES)
        for metric, policy in self.policies.items():
            if policy.window_size < 2:
                raise ConfigurationError(f"detector window for {metric} must be at least 2")
            if policy.threshold <= 0:
                raise ConfigurationError(f"detector threshold for {metric} must be positive")
        self.thresholds = thresholds or SeverityThresholds()
        self.history_size = history_size
        self.telemetry = telemetry or NoOpTelemetry()

        self._registry_lock = threading.Lock()
        self._locks: dict[DetectorKey, threading.Lock] = {}
        self._states: dict[DetectorKey, DetectorState] = {}
        self._subscribers: list[AlertCallback] = []

    @classmethod
    def from_settings(cls, settings, telemetry: TelemetrySink | None = None) -> "AlertEngine":
        policies = {
            metric: MetricPolicy(window_size=size, threshold=settings.detector_thresholds[metric])
            for metric, size in settings.detector_window_sizes.items()
        }
        thresholds = SeverityThresholds(
            warning_volatility_bps=Decimal(settings.warning_volatility_bps),
            critical_change_bps=Decimal(settings.critical_change_bps),
            emergency_change_bps=Decimal(settings.emergency_change_bps),
            volatility_window=settings.volatility_window,
        )
        return cls(
            policies=policies,
            thresholds=thresholds,
            history_size=settings.alert_history_size,
            telemetry=telemetry,
        )

    @property
    def monitored_metrics(self) -> tuple[str, ...]:
        return tuple(self.policies)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, callback: AlertCallback) -> None:
        """Register a callback; callbacks run in registration order."""
        with self._registry_lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: AlertCallback) -> None:
        with self._registry_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _dispatch(self, event: AlertEvent) -> None:
        with self._registry_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Alert subscriber failed",
                    extra={"pool_id": event.pool_id, "metric": event.metric, "subscriber": repr(callback)},
                )

    # ------------------------------------------------------------------
    # Detector state
    # ------------------------------------------------------------------

    def _lock_for(self, key: DetectorKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _new_state(self, policy: MetricPolicy) -> DetectorState:
        return DetectorState(
            detector=AnomalyDetector(policy.window_size, policy.threshold),
            recent_changes=deque(maxlen=self.thresholds.volatility_window),
            history=deque(maxlen=self.history_size),
        )

    def _current(self, key: DetectorKey) -> DetectorState | None:
        with self._lock_for(key):
            state = self._states.get(key)
            return state.copy() if state is not None else None

    def _apply(self, pool_id: str, metric: str, state: DetectorState, value: Decimal, timestamp: int) -> AlertEvent | None:
        previous = state.last_value
        reading = state.detector.update(value)

        change = change_bps(previous, value)
        if change is not None:
            state.recent_changes.append(change)
        volatility = ts.mean(tuple(state.recent_changes))
        severity = classify_severity(change, volatility, self.thresholds)

        state.last_value = value
        state.updates += 1
        state.poisoned = False

        if not reading.is_anomaly and severity == AlertSeverity.NORMAL:
            return None

        event = AlertEvent(
            pool_id=pool_id,
            metric=metric,
            severity=severity,
            old_value=previous,
            new_value=value,
            change_bps=change if change is not None else ZERO,
            volatility_bps=volatility,
            z_score=reading.z_score,
            mean=reading.mean,
            std_dev=reading.std_dev,
            window_size=reading.window_size,
            threshold=state.detector.threshold,
            is_anomaly=reading.is_anomaly,
            timestamp=timestamp,
        )
        state.history.append(event)
        return event

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_metrics(
        self,
        pool_id: str,
        samples: Mapping[str, Decimal],
        timestamp: int,
        checkpoint: Callable[[], None] | None = None,
    ) -> UpdateOutcome:
        """
        Feed one observation's metrics into their detectors.

        Every metric is updated on a copy of its state while the key locks are
        held. The copies replace the live state only after all metrics were
        processed and the checkpoint passed, so a cancelled analysis leaves the
        detectors untouched.

        Args:
            pool_id: Pool the samples belong to
            samples: Metric name -> value; metrics without a policy are ignored
            timestamp: Observation time (seconds since epoch)
            checkpoint: Called after each metric; raising aborts the update

        Returns:
            UpdateOutcome with emitted events and the metrics that were poisoned
        """
        monitored: list[tuple[str, Decimal, MetricPolicy]] = []
        for metric, value in samples.items():
            policy = self.policies.get(metric)
            if policy is None:
                logger.debug("Ignoring unmonitored metric", extra={"pool_id": pool_id, "metric": metric})
                continue
            monitored.append((metric, value, policy))

        staged: list[tuple[DetectorKey, DetectorState, AlertEvent | None]] = []
        poisoned: list[str] = []
        events: list[AlertEvent] = []

        # Key locks are taken in sorted order and held until commit
        with ExitStack() as stack:
            for key in sorted((pool_id, metric) for metric, _, _ in monitored):
                stack.enter_context(self._lock_for(key))

            for metric, value, policy in monitored:
                key = (pool_id, metric)
                current = self._states.get(key)
                candidate = current.copy() if current is not None else self._new_state(policy)
                try:
                    event = self._apply(pool_id, metric, candidate, value, timestamp)
                except Exception as exc:
                    error = DetectorPoisoned(pool_id, metric, repr(exc))
                    logger.error(str(error), exc_info=True, extra={"pool_id": pool_id, "metric": metric})
                    candidate = current.copy() if current is not None else self._new_state(policy)
                    candidate.poisoned = True
                    event = None
                    poisoned.append(metric)
                staged.append((key, candidate, event))

                if checkpoint is not None:
                    checkpoint()

            for key, candidate, event in staged:
                self._states[key] = candidate
                if event is not None:
                    events.append(event)

        for event in events:
            if event.is_anomaly:
                self.telemetry.increment("anomalies_total", severity=event.severity.name.lower())
            logger.info(
                "Alert %s on %s/%s",
                event.severity.name,
                event.pool_id,
                event.metric,
                extra={"pool_id": event.pool_id, "metric": event.metric, "z_score": str(event.z_score)},
            )
            self._dispatch(event)

        return UpdateOutcome(events=tuple(events), poisoned=tuple(poisoned))

    def observe(self, pool_id: str, metric: str, value: Decimal, timestamp: int) -> AlertEvent | None:
        """Update a single metric; returns the emitted event, if any."""
        outcome = self.update_metrics(pool_id, {metric: value}, timestamp)
        return outcome.events[0] if outcome.events else None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_alert_history(self, pool_id: str, metric: str) -> list[AlertEvent]:
        """Alerts retained for (pool, metric), oldest first."""
        state = self._current((pool_id, metric))
        return list(state.history) if state is not None else []

    def get_detector(self, pool_id: str, metric: str) -> DetectorState | None:
        """Copy of the detector state for (pool, metric)."""
        return self._current((pool_id, metric))

    def is_poisoned(self, pool_id: str, metric: str) -> bool:
        state = self._current((pool_id, metric))
        return state is not None and state.poisoned

    def get_pool_health(self, pool_id: str) -> AlertSeverity:
        """Worst severity among the latest alert of each metric of a pool."""
        health = AlertSeverity.NORMAL
        for metric in self.policies:
            history = self.get_alert_history(pool_id, metric)
            if history:
                health = max(health, history[-1].severity)
        return health

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> bytes:
        """Serialize every detector state to a versioned JSON payload."""
        with self._registry_lock:
            keys = sorted(self._states)
        detectors = []
        for key in keys:
            state = self._current(key)
            if state is None:
                continue
            entry = {"pool_id": key[0], "metric": key[1]}
            entry.update(state.to_dict())
            detectors.append(entry)
        payload = {"format": SNAPSHOT_FORMAT, "version": SNAPSHOT_VERSION, "detectors": detectors}
        return json.dumps(payload, sort_keys=True).encode("utf-8")

    def restore(self, payload: bytes) -> int:
        """
        Replace detector state from a snapshot payload.

        Unknown fields are ignored so payloads written by newer versions still
        load. Returns the number of restored detectors.

        Raises:
            ValueError: If the payload is not a detector snapshot or an entry is
                malformed. Nothing is restored in that case.
        """
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError(f"Detector snapshot is not valid JSON: {exc}") from exc
        if not isinstance(data, dict) or data.get("format") != SNAPSHOT_FORMAT:
            raise ValueError("Payload is not a detector snapshot")
        version = data.get("version")
        if not isinstance(version, int) or version < 1:
            raise ValueError(f"Unsupported detector snapshot version: {version!r}")

        entries = data.get("detectors", [])
        if not isinstance(entries, list):
            raise ValueError("Detector snapshot entries must be a list")

        restored: dict[DetectorKey, DetectorState] = {}
        for index, entry in enumerate(entries):
            try:
                key, state = self._parse_entry(entry)
            except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
                raise ValueError(f"Invalid detector entry at index {index}: {exc!r}") from exc
            restored[key] = state

        for key, state in restored.items():
            with self._lock_for(key):
                self._states[key] = state
        logger.info("Restored detector snapshot", extra={"detectors": len(restored), "version": version})
        return len(restored)

    def _parse_entry(self, entry: Mapping[str, Any]) -> tuple[DetectorKey, DetectorState]:
        key = (str(entry["pool_id"]), str(entry["metric"]))
        detector = AnomalyDetector(int(entry["window_size"]), Decimal(entry["threshold"]))
        detector.load(Decimal(value) for value in entry.get("values", []))
        last_value = entry.get("last_value")
        state = DetectorState(
            detector=detector,
            recent_changes=deque(
                (Decimal(value) for value in entry.get("recent_changes", [])),
                maxlen=self.thresholds.volatility_window,
            ),
            history=deque(
                (AlertEvent.from_dict(event) for event in entry.get("history", [])),
                maxlen=self.history_size,
            ),
            last_value=None if last_value is None else Decimal(last_value),
            poisoned=bool(entry.get("poisoned", False)),
            updates=int(entry.get("updates", 0)),
        )
        return key, state
