"""
Unit tests for the alert engine.

Tests cover:
- Severity ladder and change computation
- The TVL emergency scenario
- Subscriber ordering and failure isolation
- Detector poisoning and recovery
- Transactional updates with a failing checkpoint
- Pool health, history bounds, telemetry
- Snapshot / restore
"""

import json
import threading
from decimal import Decimal

import pytest

from pool_analytics.core.errors import AnalysisCancelled, ConfigurationError
from pool_analytics.core.telemetry import InMemoryTelemetry
from pool_analytics.monitoring.alert_engine import (
    SNAPSHOT_FORMAT,
    AlertEngine,
    AlertEvent,
    AlertSeverity,
    MetricPolicy,
    SeverityThresholds,
    change_bps,
    classify_severity,
)
from pool_analytics.monitoring.anomaly_detector import AnomalyDetector

D = Decimal


@pytest.fixture
def engine(telemetry):
    return AlertEngine(telemetry=telemetry)


def feed_flat_tvl(engine, pool_id="pool-1", count=23, value=D(100)):
    for tick in range(count):
        engine.observe(pool_id, "tvl", value, timestamp=tick)


# ============================================================================
# Severity ladder
# ============================================================================


class TestSeverityLadder:
    """Test change_bps() and classify_severity()."""

    def test_change_bps(self):
        assert change_bps(D(100), D(250)) == D(15000)
        assert change_bps(D(100), D(95)) == D(500)
        assert change_bps(None, D(1)) is None
        assert change_bps(D(0), D(1)) is None

    @pytest.mark.parametrize(
        "change,volatility,expected",
        [
            (None, D(0), AlertSeverity.NORMAL),
            (D(2000), D(0), AlertSeverity.EMERGENCY),
            (D(1999), D(0), AlertSeverity.CRITICAL),
            (D(1000), D(0), AlertSeverity.CRITICAL),
            (D(999), D(0), AlertSeverity.NORMAL),
            (D(100), D(501), AlertSeverity.WARNING),
            (D(100), D(500), AlertSeverity.NORMAL),
            (None, D(600), AlertSeverity.WARNING),
        ],
    )
    def test_classify(self, change, volatility, expected):
        assert classify_severity(change, volatility, SeverityThresholds()) == expected

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ConfigurationError):
            SeverityThresholds(critical_change_bps=D(3000), emergency_change_bps=D(2000))

    def test_invalid_policy_rejected(self):
        with pytest.raises(ConfigurationError):
            AlertEngine(policies={"tvl": MetricPolicy(window_size=1, threshold=D(3))})


# ============================================================================
# Detection
# ============================================================================


class TestDetection:
    """Test anomaly detection through the engine."""

    def test_tvl_emergency_scenario(self, engine):
        """Test 23 x 100 then 250: one emergency alert in history."""
        feed_flat_tvl(engine)

        event = engine.observe("pool-1", "tvl", D(250), timestamp=23)

        assert event is not None
        assert event.severity == AlertSeverity.EMERGENCY
        assert event.is_anomaly
        assert event.change_bps == D(15000)
        assert event.old_value == D(100)
        assert len(engine.get_alert_history("pool-1", "tvl")) == 1

    def test_flat_series_emits_nothing(self, engine):
        feed_flat_tvl(engine, count=50)
        assert engine.get_alert_history("pool-1", "tvl") == []
        assert engine.get_detector("pool-1", "tvl").updates == 50

    def test_pools_are_independent(self, engine):
        feed_flat_tvl(engine, pool_id="pool-1")
        engine.observe("pool-2", "tvl", D(250), timestamp=0)

        assert len(engine.get_detector("pool-1", "tvl").detector) == 23
        assert len(engine.get_detector("pool-2", "tvl").detector) == 1

    def test_unmonitored_metric_ignored(self, engine):
        assert engine.observe("pool-1", "fees", D(1), timestamp=0) is None
        assert engine.get_detector("pool-1", "fees") is None

    def test_history_bounded(self):
        engine = AlertEngine(history_size=2)
        value = D(100)
        for tick in range(6):
            value = value * 2
            engine.observe("pool-1", "tvl", value, timestamp=tick)

        history = engine.get_alert_history("pool-1", "tvl")
        assert len(history) == 2
        assert history[-1].timestamp == 5

    def test_pool_health_is_worst_latest_alert(self, engine):
        assert engine.get_pool_health("pool-1") == AlertSeverity.NORMAL

        feed_flat_tvl(engine)
        engine.observe("pool-1", "tvl", D(250), timestamp=23)
        engine.observe("pool-1", "apy", D("0.10"), timestamp=23)
        engine.observe("pool-1", "apy", D("0.115"), timestamp=24)

        assert engine.get_pool_health("pool-1") == AlertSeverity.EMERGENCY

    def test_anomalies_counted(self, engine, telemetry):
        feed_flat_tvl(engine)
        engine.observe("pool-1", "tvl", D(250), timestamp=23)

        assert telemetry.counter("anomalies_total", severity="emergency") == 1
        assert telemetry.counter_total("anomalies_total") == 1


# ============================================================================
# Subscribers
# ============================================================================


class TestSubscribers:
    """Test callback dispatch."""

    def test_registration_order(self, engine):
        calls = []
        engine.subscribe(lambda event: calls.append(("first", event.metric)))
        engine.subscribe(lambda event: calls.append(("second", event.metric)))

        engine.observe("pool-1", "tvl", D(100), timestamp=0)
        engine.observe("pool-1", "tvl", D(200), timestamp=1)

        assert calls == [("first", "tvl"), ("second", "tvl")]

    def test_failing_subscriber_does_not_stop_others(self, engine, caplog):
        received = []

        def broken(event):
            raise RuntimeError("subscriber down")

        engine.subscribe(broken)
        engine.subscribe(received.append)

        engine.observe("pool-1", "tvl", D(100), timestamp=0)
        event = engine.observe("pool-1", "tvl", D(200), timestamp=1)

        assert received == [event]
        assert "Alert subscriber failed" in caplog.text

    def test_unsubscribe(self, engine):
        received = []
        engine.subscribe(received.append)
        engine.unsubscribe(received.append)

        engine.observe("pool-1", "tvl", D(100), timestamp=0)
        engine.observe("pool-1", "tvl", D(200), timestamp=1)

        assert received == []


# ============================================================================
# Poisoning and transactions
# ============================================================================


class TestStateSafety:
    """Test rollback on failure and on cancellation."""

    def test_poisoned_detector_rolled_back(self, engine, monkeypatch):
        """Test that a failing update keeps the prior window and flags the detector."""
        feed_flat_tvl(engine, count=5)
        original_update = AnomalyDetector.update

        def failing_update(self, value):
            if value == D(999):
                raise ArithmeticError("boom")
            return original_update(self, value)

        monkeypatch.setattr(AnomalyDetector, "update", failing_update)
        outcome = engine.update_metrics("pool-1", {"tvl": D(999), "apy": D("0.1")}, timestamp=5)

        assert outcome.poisoned == ("tvl",)
        state = engine.get_detector("pool-1", "tvl")
        assert state.poisoned
        assert state.detector.values == (D(100),) * 5
        assert state.updates == 5
        assert engine.get_detector("pool-1", "apy").updates == 1

        engine.observe("pool-1", "tvl", D(100), timestamp=6)
        assert not engine.is_poisoned("pool-1", "tvl")

    def test_failing_checkpoint_leaves_state_untouched(self, engine):
        feed_flat_tvl(engine, count=3)
        before = engine.get_detector("pool-1", "tvl")

        def cancel():
            raise AnalysisCancelled("pool-1", "alerts")

        with pytest.raises(AnalysisCancelled):
            engine.update_metrics("pool-1", {"tvl": D(500), "apy": D("0.2")}, timestamp=3, checkpoint=cancel)

        after = engine.get_detector("pool-1", "tvl")
        assert after.detector.values == before.detector.values
        assert after.updates == before.updates
        assert engine.get_detector("pool-1", "apy") is None

    def test_queries_return_copies(self, engine):
        feed_flat_tvl(engine, count=3)
        state = engine.get_detector("pool-1", "tvl")
        state.detector.update(D(1))

        assert len(engine.get_detector("pool-1", "tvl").detector) == 3

    def test_concurrent_updates_to_one_key_are_serialized(self, engine):
        """Test that an update parked at its checkpoint blocks a second update of the same key."""
        engine.observe("pool-1", "tvl", D(100), timestamp=0)
        entered = threading.Event()
        release = threading.Event()

        def parked_checkpoint():
            entered.set()
            release.wait(timeout=5)

        first = threading.Thread(
            target=engine.update_metrics,
            args=("pool-1", {"tvl": D(101)}, 1),
            kwargs={"checkpoint": parked_checkpoint},
        )
        second = threading.Thread(target=engine.observe, args=("pool-1", "tvl", D(102), 2))

        first.start()
        assert entered.wait(timeout=5)
        second.start()
        second.join(timeout=0.2)
        assert second.is_alive()

        release.set()
        first.join(timeout=5)
        second.join(timeout=5)

        state = engine.get_detector("pool-1", "tvl")
        assert state.updates == 3
        assert state.detector.values == (D(100), D(101), D(102))
        assert state.last_value == D(102)

    def test_parallel_observers_lose_no_samples(self):
        engine = AlertEngine(policies={"tvl": MetricPolicy(window_size=500, threshold=D(3))})

        def worker(offset):
            for tick in range(50):
                engine.observe("pool-1", "tvl", D(1000 + offset + tick), timestamp=tick)

        threads = [threading.Thread(target=worker, args=(offset * 100,)) for offset in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        state = engine.get_detector("pool-1", "tvl")
        assert state.updates == 400
        assert len(state.detector) == 400


# ============================================================================
# Snapshot / restore
# ============================================================================


class TestSnapshot:
    """Test detector persistence."""

    def test_restore_reproduces_state(self, engine):
        feed_flat_tvl(engine)
        engine.observe("pool-1", "tvl", D(250), timestamp=23)
        payload = engine.snapshot()

        restored = AlertEngine()
        assert restored.restore(payload) == 1

        original = engine.get_detector("pool-1", "tvl")
        copy = restored.get_detector("pool-1", "tvl")
        assert copy.detector.values == original.detector.values
        assert copy.last_value == original.last_value
        assert copy.updates == original.updates
        assert restored.get_alert_history("pool-1", "tvl") == engine.get_alert_history("pool-1", "tvl")
        assert restored.snapshot() == payload

    def test_restored_engine_continues_identically(self, engine):
        feed_flat_tvl(engine, count=10)
        restored = AlertEngine()
        restored.restore(engine.snapshot())

        first = engine.observe("pool-1", "tvl", D(300), timestamp=10)
        second = restored.observe("pool-1", "tvl", D(300), timestamp=10)

        assert first == second

    def test_unknown_fields_ignored(self, engine):
        feed_flat_tvl(engine, count=3)
        data = json.loads(engine.snapshot())
        data["version"] = 2
        data["producer"] = "newer-build"
        data["detectors"][0]["extra"] = {"anything": 1}

        assert AlertEngine().restore(json.dumps(data).encode()) == 1

    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            json.dumps({"format": "other", "version": 1}).encode(),
            json.dumps({"format": SNAPSHOT_FORMAT, "version": 0}).encode(),
        ],
    )
    def test_invalid_payload_rejected(self, payload):
        with pytest.raises(ValueError):
            AlertEngine().restore(payload)

    @pytest.mark.parametrize("field", ["pool_id", "metric", "window_size", "threshold"])
    def test_entry_missing_field_rejected(self, engine, field):
        feed_flat_tvl(engine, count=3)
        data = json.loads(engine.snapshot())
        del data["detectors"][0][field]

        restored = AlertEngine()
        with pytest.raises(ValueError):
            restored.restore(json.dumps(data).encode())
        assert restored.get_detector("pool-1", "tvl") is None

    @pytest.mark.parametrize(
        "field,value",
        [
            ("threshold", "not-a-number"),
            ("values", ["100", "abc"]),
            ("window_size", "wide"),
            ("last_value", "??"),
        ],
    )
    def test_entry_with_bad_value_rejected(self, engine, field, value):
        """Test that malformed numbers surface as ValueError, not decimal errors."""
        feed_flat_tvl(engine, count=3)
        data = json.loads(engine.snapshot())
        data["detectors"][0][field] = value

        with pytest.raises(ValueError):
            AlertEngine().restore(json.dumps(data).encode())

    def test_event_dict_round_trip(self, engine):
        feed_flat_tvl(engine)
        event = engine.observe("pool-1", "tvl", D(250), timestamp=23)

        data = event.to_dict()

        assert data["severity"] == "emergency"
        assert data["new_value"] == "250"
        assert AlertEvent.from_dict(data) == event


def test_from_settings(settings):
    engine = AlertEngine.from_settings(settings)

    assert engine.monitored_metrics == ("tvl", "apy", "gas")
    assert engine.policies["apy"].window_size == 168
    assert engine.thresholds.emergency_change_bps == D(2000)
