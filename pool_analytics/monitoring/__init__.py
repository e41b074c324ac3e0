"""
Monitoring Module - Anomaly detection and alerting

Modules:
- anomaly_detector: rolling-window z-score detector
- alert_engine: per-pool detector registry, severity ladder and callback dispatch
"""

from pool_analytics.monitoring.alert_engine import (
    AlertEngine,
    AlertEvent,
    AlertSeverity,
    DetectorState,
    MetricPolicy,
    SeverityThresholds,
    UpdateOutcome,
    classify_severity,
)
from pool_analytics.monitoring.anomaly_detector import AnomalyDetector, DetectorReading

__all__ = [
    "AlertEngine",
    "AlertEvent",
    "AlertSeverity",
    "AnomalyDetector",
    "DetectorReading",
    "DetectorState",
    "MetricPolicy",
    "SeverityThresholds",
    "UpdateOutcome",
    "classify_severity",
]
