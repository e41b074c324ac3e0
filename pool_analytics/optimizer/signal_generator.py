"""
Signal Generator for Pool Positions

Derives entry, exit, rebalance and risk-warning signals from a normalized pool.

Rules (r = daily return, walked pairwise over the return history):
- Momentum entry: r_curr > r_prev and r_curr > threshold (5%)
  strength = r_curr / threshold, confidence 0.85, tags {momentum, trend-following}
- Momentum exit: r_curr < r_prev and r_curr < -threshold
  strength = |r_curr| / threshold, confidence 0.85, tags {momentum, trend-following}
- Value entry: r_curr < 0 and price stability > floor (70)
  strength = 1 - |r_curr|, confidence 0.75, tags {mean-reversion, value}
- Rebalance: token composition drift (or vault allocation drift against a plan)
  above the drift threshold (10%), strength = drift / threshold, confidence 0.80
- Risk warning: emitted by the orchestrator for rejected observations, phase
  timeouts and overflows
"""

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from pool_analytics.core.numerics import BPS_SCALE, ONE, ZERO, fixed_point
from pool_analytics.data.ingest import NormalizedPool
from pool_analytics.optimizer.allocator import AllocationPlan

MOMENTUM_CONFIDENCE = Decimal("0.85")
VALUE_CONFIDENCE = Decimal("0.75")
REBALANCE_CONFIDENCE = Decimal("0.80")


class SignalKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    REBALANCE = "rebalance"
    RISK_WARNING = "risk_warning"


@dataclass(frozen=True)
class Signal:
    """
    A single signal.

    Attributes
    ----------
    timestamp : int
        Time the signal refers to (seconds since epoch)
    kind : SignalKind
        Entry, exit, rebalance or risk warning
    strength : Decimal
        Non-negative signal strength
    confidence : Decimal
        Confidence in [0, 1]
    indicators : tuple of str
        Tags of the indicators that produced the signal
    reason : str
        Human-readable explanation
    """

    timestamp: int
    kind: SignalKind
    strength: Decimal
    confidence: Decimal
    indicators: tuple[str, ...]
    reason: str = ""


@dataclass(frozen=True)
class SignalConfig:
    momentum_threshold: Decimal = Decimal("0.05")
    price_stability_floor: int = 70
    rebalance_drift_threshold: Decimal = Decimal("0.10")

    @classmethod
    def from_settings(cls, settings) -> "SignalConfig":
        return cls(
            momentum_threshold=settings.momentum_threshold,
            price_stability_floor=settings.price_stability_floor,
            rebalance_drift_threshold=settings.rebalance_drift_threshold,
        )


def allocation_drift(current_bps: Mapping[str, int], plan: AllocationPlan) -> Decimal:
    """
    Half the L1 distance between a vault's current allocation and a plan,
    as a fraction of the 10 000 bps budget.
    """
    target = dict(plan.weights)
    names = set(current_bps) | set(target)
    total = sum(abs(current_bps.get(name, 0) - target.get(name, 0)) for name in names)
    with fixed_point():
        return Decimal(total) / 2 / BPS_SCALE


def risk_warning(timestamp: int, reason: str, indicators: tuple[str, ...]) -> Signal:
    """Build a full-strength risk-warning signal."""
    return Signal(
        timestamp=timestamp,
        kind=SignalKind.RISK_WARNING,
        strength=ONE,
        confidence=ONE,
        indicators=indicators,
        reason=reason,
    )


class SignalGenerator:
    """
    Stateless signal generator.

    Example:
        >>> generator = SignalGenerator()
        >>> signals = generator.generate(pool)
        >>> [signal.kind for signal in signals]
        [<SignalKind.ENTRY: 'entry'>]
    """

    def __init__(self, config: SignalConfig | None = None):
        self.config = config or SignalConfig()

    def generate(
        self,
        pool: NormalizedPool,
        current_allocation: Mapping[str, int] | None = None,
        plan: AllocationPlan | None = None,
    ) -> list[Signal]:
        """
        Generate all signals for a pool.

        Args:
            pool: Normalized observation
            current_allocation: Vault's current weights in bps per strategy
            plan: Target allocation plan to compare the vault against

        Returns:
            Return-driven signals in time order, followed by rebalance signals
        """
        signals = self.return_signals(pool)

        drift_signal = self.composition_rebalance(pool)
        if drift_signal is not None:
            signals.append(drift_signal)

        if current_allocation is not None and plan is not None:
            vault_signal = self.allocation_rebalance(pool.observed_at, current_allocation, plan)
            if vault_signal is not None:
                signals.append(vault_signal)

        return signals

    def return_signals(self, pool: NormalizedPool) -> list[Signal]:
        threshold = self.config.momentum_threshold
        stability = pool.observation.volatility.price_stability_score
        series = pool.return_series
        signals: list[Signal] = []

        with fixed_point():
            for (_, previous), (timestamp, current) in zip(series, series[1:]):
                if current > previous and current > threshold:
                    signals.append(
                        Signal(
                            timestamp=timestamp,
                            kind=SignalKind.ENTRY,
                            strength=current / threshold,
                            confidence=MOMENTUM_CONFIDENCE,
                            indicators=("momentum", "trend-following"),
                            reason=f"Return {current} accelerating above {threshold}",
                        )
                    )
                elif current < previous and current < -threshold:
                    signals.append(
                        Signal(
                            timestamp=timestamp,
                            kind=SignalKind.EXIT,
                            strength=abs(current) / threshold,
                            confidence=MOMENTUM_CONFIDENCE,
                            indicators=("momentum", "trend-following"),
                            reason=f"Return {current} falling below -{threshold}",
                        )
                    )
                elif current < 0 and stability > self.config.price_stability_floor:
                    signals.append(
                        Signal(
                            timestamp=timestamp,
                            kind=SignalKind.ENTRY,
                            strength=max(ONE - abs(current), ZERO),
                            confidence=VALUE_CONFIDENCE,
                            indicators=("mean-reversion", "value"),
                            reason=f"Dip of {current} in a stable pool (stability {stability})",
                        )
                    )
        return signals

    def composition_rebalance(self, pool: NormalizedPool) -> Signal | None:
        """Rebalance when token value shares drift from the target weights."""
        drift = pool.composition_drift()
        return self._rebalance(pool.observed_at, drift, ("portfolio-drift",), "Token composition drift")

    def allocation_rebalance(
        self, timestamp: int, current_allocation: Mapping[str, int], plan: AllocationPlan
    ) -> Signal | None:
        """Rebalance when the vault's allocation drifts from the plan."""
        drift = allocation_drift(current_allocation, plan)
        return self._rebalance(timestamp, drift, ("allocation-drift",), "Vault allocation drift")

    def _rebalance(self, timestamp: int, drift: Decimal, indicators: tuple[str, ...], label: str) -> Signal | None:
        threshold = self.config.rebalance_drift_threshold
        if drift <= threshold:
            return None
        with fixed_point():
            strength = drift / threshold
        return Signal(
            timestamp=timestamp,
            kind=SignalKind.REBALANCE,
            strength=strength,
            confidence=REBALANCE_CONFIDENCE,
            indicators=indicators,
            reason=f"{label} {drift:.4f} exceeds {threshold}",
        )
