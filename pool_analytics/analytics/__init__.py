"""
Analytics Module - Advanced risk and performance metrics

Usage:
    from pool_analytics.analytics import MetricsConfig, calculate_advanced_metrics

    metrics = calculate_advanced_metrics(pool, MetricsConfig())
"""

from pool_analytics.analytics.advanced_metrics import (
    AdvancedMetrics,
    MetricsConfig,
    PerformanceStats,
    calculate_advanced_metrics,
    calculate_performance_stats,
)

__all__ = [
    "AdvancedMetrics",
    "MetricsConfig",
    "PerformanceStats",
    "calculate_advanced_metrics",
    "calculate_performance_stats",
]
