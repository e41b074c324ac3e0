"""
Data Module - Observation contract and ingest

Modules:
- models: pydantic Observation input contract
- ingest: validation, normalization and per-pool tick ordering
"""

from pool_analytics.data.ingest import (
    NormalizedPool,
    TickLedger,
    ingest,
    normalize_observation,
    parse_observation,
    validate_observation,
)
from pool_analytics.data.models import Observation, PoolKind

__all__ = [
    "NormalizedPool",
    "Observation",
    "PoolKind",
    "TickLedger",
    "ingest",
    "normalize_observation",
    "parse_observation",
    "validate_observation",
]
