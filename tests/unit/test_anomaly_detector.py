"""
Unit tests for the rolling z-score anomaly detector.
"""

from decimal import Decimal

import pytest

from pool_analytics.monitoring.anomaly_detector import AnomalyDetector

D = Decimal


def test_constant_input_never_anomalous():
    """Test that a flat window (std 0) never flags an anomaly."""
    detector = AnomalyDetector(window_size=10, threshold=D(3))
    readings = [detector.update(D(100)) for _ in range(30)]

    assert not any(reading.is_anomaly for reading in readings)
    assert detector.std_dev == 0
    assert detector.mean == D(100)


def test_first_sample_never_anomalous():
    detector = AnomalyDetector(window_size=5, threshold=D("0.1"))
    assert detector.update(D(1_000_000)).is_anomaly is False


def test_spike_after_flat_window():
    """Test 23 samples of 100 followed by 250 with W=24, k=3."""
    detector = AnomalyDetector(window_size=24, threshold=D(3))
    for _ in range(23):
        detector.update(D(100))

    reading = detector.update(D(250))

    assert reading.is_anomaly
    assert reading.window_size == 24
    assert reading.mean == D("106.25")
    assert D("4.6") < reading.z_score < D("4.7")


def test_injected_outlier_detected_among_noise():
    detector = AnomalyDetector(window_size=50, threshold=D(3))
    for index in range(49):
        detector.update(D(100) + D(index % 5 - 2))

    assert detector.update(D(200)).is_anomaly
    assert not detector.update(D(101)).is_anomaly


def test_window_evicts_oldest():
    detector = AnomalyDetector(window_size=3, threshold=D(3))
    for value in (1, 2, 3, 4, 5):
        detector.update(D(value))

    assert len(detector) == 3
    assert detector.values == (D(3), D(4), D(5))
    assert detector.mean == D(4)


def test_copy_is_independent():
    detector = AnomalyDetector(window_size=5, threshold=D(3))
    detector.update(D(1))
    clone = detector.copy()
    clone.update(D(2))

    assert len(detector) == 1
    assert len(clone) == 2


def test_load_replaces_window():
    detector = AnomalyDetector(window_size=3, threshold=D(3))
    detector.load([D(1), D(2), D(3), D(4)])

    assert detector.values == (D(2), D(3), D(4))
    assert detector.mean == D(3)


@pytest.mark.parametrize("window_size,threshold", [(1, D(3)), (0, D(3)), (10, D(0)), (10, D(-1))])
def test_invalid_parameters(window_size, threshold):
    with pytest.raises(ValueError):
        AnomalyDetector(window_size=window_size, threshold=threshold)
