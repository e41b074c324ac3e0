"""
Unit tests for telemetry sinks.
"""

import threading

import pytest
from prometheus_client import CollectorRegistry

from pool_analytics.core.telemetry import InMemoryTelemetry, NoOpTelemetry, PrometheusTelemetry


def test_counters_are_per_label_set(telemetry):
    telemetry.increment("anomalies_total", severity="warning")
    telemetry.increment("anomalies_total", severity="warning")
    telemetry.increment("anomalies_total", severity="emergency")

    assert telemetry.counter("anomalies_total", severity="warning") == 2
    assert telemetry.counter("anomalies_total", severity="emergency") == 1
    assert telemetry.counter("anomalies_total", severity="critical") == 0
    assert telemetry.counter_total("anomalies_total") == 3


def test_histogram_samples(telemetry):
    telemetry.observe("phase_duration", 0.25, phase="features")
    telemetry.observe("phase_duration", 0.5, phase="features")

    assert telemetry.samples("phase_duration", phase="features") == [0.25, 0.5]
    assert telemetry.samples("phase_duration", phase="alerts") == []


def test_reset(telemetry):
    telemetry.increment("observations_total")
    telemetry.reset()
    assert telemetry.counter("observations_total") == 0


def test_concurrent_increments():
    """Test that counters do not lose updates across threads."""
    telemetry = InMemoryTelemetry()

    def worker():
        for _ in range(1000):
            telemetry.increment("observations_total")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert telemetry.counter("observations_total") == 8000


def test_noop_accepts_everything():
    sink = NoOpTelemetry()
    assert sink.increment("observations_total", pool="x") is None
    assert sink.observe("phase_duration", 1.0) is None


# ============================================================================
# Prometheus sink
# ============================================================================


@pytest.fixture
def registry():
    return CollectorRegistry()


class TestPrometheusTelemetry:
    """Test the prometheus_client backed sink."""

    def test_counters_exported_per_label(self, registry):
        sink = PrometheusTelemetry(registry=registry)
        sink.increment("anomalies_total", severity="emergency")
        sink.increment("anomalies_total", severity="emergency")
        sink.increment("anomalies_total", severity="warning")

        assert registry.get_sample_value("pool_analytics_anomalies_total", {"severity": "emergency"}) == 2
        assert registry.get_sample_value("pool_analytics_anomalies_total", {"severity": "warning"}) == 1

    def test_unlabelled_counter(self, registry):
        sink = PrometheusTelemetry(registry=registry)
        sink.increment("observations_rejected", 3)

        assert registry.get_sample_value("pool_analytics_observations_rejected_total") == 3

    def test_histogram_count_and_sum(self, registry):
        sink = PrometheusTelemetry(registry=registry)
        sink.observe("phase_duration", 0.25, phase="features")
        sink.observe("phase_duration", 0.5, phase="features")

        labels = {"phase": "features"}
        assert registry.get_sample_value("pool_analytics_phase_duration_count", labels) == 2
        assert registry.get_sample_value("pool_analytics_phase_duration_sum", labels) == 0.75

    def test_render_text_exposition(self, registry):
        sink = PrometheusTelemetry(registry=registry, namespace="vault")
        sink.increment("observations_total")

        assert b"vault_observations_total 1.0" in sink.render()

    def test_separate_registries_do_not_collide(self):
        """Test that two sinks can register the same metric names."""
        first = PrometheusTelemetry()
        second = PrometheusTelemetry()
        first.increment("observations_total")
        second.increment("observations_total")

        assert first.registry.get_sample_value("pool_analytics_observations_total") == 1
        assert second.registry.get_sample_value("pool_analytics_observations_total") == 1
