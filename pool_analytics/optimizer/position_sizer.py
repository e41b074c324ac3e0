"""
Position Sizer Module

Kelly-inspired position sizing for liquidity positions.

Formula:
    w = 1 - risk_score / 100        (win ratio)
    l = risk_score / 100            (loss ratio)
    kelly = w / l - 1               (l >= 1 means certain loss: size 0)
    fraction = min(max(kelly, 0) / 2, 1)       (half Kelly, at most all of TVL)
    size = TVL * fraction * (1 - daily_volatility), clamped to [0, TVL]

A pool with risk score 10 and 1% daily volatility therefore sizes at 0.99 TVL.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import IntEnum

from pool_analytics.core.numerics import HUNDRED, ONE, TWO, ZERO, clamp, fixed_point


class PositionSizeResult(IntEnum):
    """Result codes for position sizing calculations."""

    SUCCESS = 0
    NO_EDGE = 1
    CERTAIN_LOSS = 2
    CAPPED_AT_TVL = 3
    INVALID_INPUT = 4


@dataclass(frozen=True)
class PositionSize:
    """Result of a position sizing calculation."""

    size: Decimal  # Position value in USD (0 if rejected)
    kelly_fraction: Decimal  # Raw Kelly fraction w/l - 1
    win_ratio: Decimal
    loss_ratio: Decimal
    result_code: PositionSizeResult
    reason: str  # Human-readable explanation

    @classmethod
    def neutral(cls) -> "PositionSize":
        return cls(ZERO, ZERO, ZERO, ZERO, PositionSizeResult.INVALID_INPUT, "Sizing skipped")


class PositionSizer:
    """
    Half-Kelly position sizer bounded by pool TVL.

    Example:
        >>> sizer = PositionSizer()
        >>> result = sizer.calculate_position_size(Decimal(1_000_000), 10, Decimal("0.01"))
        >>> result.size
        Decimal('990000.00')
    """

    def __init__(
        self,
        kelly_divisor: Decimal = TWO,  # Half Kelly
        max_fraction: Decimal = ONE,  # Never more than the whole pool
    ):
        self.kelly_divisor = kelly_divisor
        self.max_fraction = max_fraction

    def calculate_position_size(
        self,
        tvl: Decimal,
        risk_score: int,
        daily_volatility: Decimal,
    ) -> PositionSize:
        """
        Size a position in a pool.

        Args:
            tvl: Pool TVL in USD
            risk_score: Risk score in [0, 100]
            daily_volatility: Daily volatility as a fraction

        Returns:
            PositionSize with the size and the intermediate Kelly values
        """
        if tvl <= 0 or not 0 <= risk_score <= 100:
            return PositionSize(
                size=ZERO,
                kelly_fraction=ZERO,
                win_ratio=ZERO,
                loss_ratio=ZERO,
                result_code=PositionSizeResult.INVALID_INPUT,
                reason=f"Invalid inputs: tvl={tvl}, risk_score={risk_score}",
            )

        with fixed_point():
            loss_ratio = Decimal(risk_score) / HUNDRED
            win_ratio = ONE - loss_ratio

            if loss_ratio >= 1:
                return PositionSize(
                    size=ZERO,
                    kelly_fraction=ZERO,
                    win_ratio=win_ratio,
                    loss_ratio=loss_ratio,
                    result_code=PositionSizeResult.CERTAIN_LOSS,
                    reason="Loss ratio is 100%: no position",
                )

            if loss_ratio == 0:
                # No recorded risk: the Kelly edge is unbounded, take the cap
                kelly = self.max_fraction * self.kelly_divisor
            else:
                kelly = win_ratio / loss_ratio - ONE

            if kelly <= 0:
                return PositionSize(
                    size=ZERO,
                    kelly_fraction=kelly,
                    win_ratio=win_ratio,
                    loss_ratio=loss_ratio,
                    result_code=PositionSizeResult.NO_EDGE,
                    reason=f"No edge: Kelly fraction {kelly:.4f}",
                )

            raw_fraction = kelly / self.kelly_divisor
            fraction = min(raw_fraction, self.max_fraction)
            volatility_factor = clamp(ONE - daily_volatility, ZERO, ONE)
            size = clamp(tvl * fraction * volatility_factor, ZERO, tvl)

        capped = raw_fraction > self.max_fraction
        return PositionSize(
            size=size,
            kelly_fraction=kelly,
            win_ratio=win_ratio,
            loss_ratio=loss_ratio,
            result_code=PositionSizeResult.CAPPED_AT_TVL if capped else PositionSizeResult.SUCCESS,
            reason=(
                f"Half Kelly {raw_fraction:.4f} capped at {self.max_fraction}"
                if capped
                else f"Half Kelly fraction {raw_fraction:.4f}"
            ),
        )
