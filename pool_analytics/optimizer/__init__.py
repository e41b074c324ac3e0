"""
Optimizer Module - Position sizing, signals and strategy allocation

Modules:
- position_sizer: half-Kelly sizing bounded by TVL
- signal_generator: entry / exit / rebalance / risk-warning signals
- allocator: constrained strategy weight allocation
"""

from pool_analytics.optimizer.allocator import AllocationPlan, StrategyAllocator, StrategySpec
from pool_analytics.optimizer.position_sizer import PositionSize, PositionSizer, PositionSizeResult
from pool_analytics.optimizer.signal_generator import Signal, SignalConfig, SignalGenerator, SignalKind

__all__ = [
    "AllocationPlan",
    "PositionSize",
    "PositionSizeResult",
    "PositionSizer",
    "Signal",
    "SignalConfig",
    "SignalGenerator",
    "SignalKind",
    "StrategyAllocator",
    "StrategySpec",
]
