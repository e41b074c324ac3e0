"""
Pool Analytics - Liquidity pool analytics and yield optimization core

Turns pool observations into risk-adjusted statistics, technical indicators,
ML feature vectors, position sizes, trading signals, strategy allocations and
anomaly alerts.

Usage:
    from pool_analytics import PoolAnalysisPipeline

    pipeline = PoolAnalysisPipeline()
    result = pipeline.analyze(observation)
"""

from pool_analytics.orchestrator import AnalysisResult, CancellationToken, PoolAnalysisPipeline

__version__ = "0.1.0"

__all__ = [
    "AnalysisResult",
    "CancellationToken",
    "PoolAnalysisPipeline",
    "__version__",
]
