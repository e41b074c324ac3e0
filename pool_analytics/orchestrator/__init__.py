"""
Orchestrator Module - End-to-end pool analysis

Modules:
- pipeline: PoolAnalysisPipeline, phase timing, cancellation and batch analysis
- result: JSON-compatible result bundle models
"""

from pool_analytics.orchestrator.pipeline import CancellationToken, PoolAnalysisPipeline
from pool_analytics.orchestrator.result import AnalysisResult

__all__ = [
    "AnalysisResult",
    "CancellationToken",
    "PoolAnalysisPipeline",
]
