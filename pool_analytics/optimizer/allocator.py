"""
Strategy Weight Allocator

Splits a 10 000 bps budget across a vault's strategies.

Algorithm:
1. Keep active strategies only; inactive ones receive 0.
2. Rank by Sharpe (annualized return / annualized volatility of the period
   returns of each strategy's balance history), best first, ties broken by name.
   At most max_strategies ranked strategies take part.
3. base = budget / N rounded down to the allocation step, clamped to each
   strategy's [min_weight, min(max_weight, max_allocation)]; strategies without
   explicit bounds use the allocator defaults.
4. Each strategy except the last takes the largest weight within its bounds
   that still leaves every lower-ranked strategy its base.
5. Leftover budget tops up strategies with headroom in rank order. The last
   participant receives whatever still remains, even past its upper bound, so
   the weights always sum to the budget when any strategy is active.

With three strategies bounded to [1000, 4000] this yields 4000 / 3000 / 3000.

The allocator never mutates the strategies it receives.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from pool_analytics.computation import timeseries as ts
from pool_analytics.core.numerics import dsqrt, fixed_point, safe_div

logger = logging.getLogger(__name__)

TOTAL_BUDGET_BPS = 10_000


@dataclass(frozen=True)
class StrategySpec:
    """
    A vault strategy as provided by the vault.

    Attributes
    ----------
    name : str
        Unique strategy name
    is_active : bool
        Inactive strategies receive no allocation
    performance_history : tuple of (int, Decimal)
        (timestamp, balance) samples, oldest first
    max_allocation_bps : int
        Hard cap set by the vault
    min_weight : int or None
        Lower weight bound in bps (allocator default when None)
    max_weight : int or None
        Upper weight bound in bps (allocator default when None)
    """

    name: str
    is_active: bool
    performance_history: tuple[tuple[int, Decimal], ...]
    max_allocation_bps: int = TOTAL_BUDGET_BPS
    min_weight: int | None = None
    max_weight: int | None = None


@dataclass(frozen=True)
class StrategyMetrics:
    name: str
    annualized_return: Decimal
    volatility: Decimal
    sharpe: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    """
    Attributes:
        weights: (strategy name, weight bps) in rank order, inactive strategies last
    """

    weights: tuple[tuple[str, int], ...]

    @property
    def total_bps(self) -> int:
        return sum(weight for _, weight in self.weights)

    def weight_of(self, name: str) -> int:
        return dict(self.weights).get(name, 0)


def calculate_strategy_metrics(strategy: StrategySpec, periods_per_year: int = 365) -> StrategyMetrics:
    """
    Annualized return and volatility of a strategy's balance history.

    Returns:
        StrategyMetrics; Sharpe is 0 when volatility is 0
    """
    balances = ts.values(strategy.performance_history)
    returns = ts.pct_changes(balances)
    with fixed_point():
        annual_return = ts.mean(returns) * periods_per_year
        volatility = ts.std_dev(returns) * dsqrt(Decimal(periods_per_year))
    return StrategyMetrics(
        name=strategy.name,
        annualized_return=annual_return,
        volatility=volatility,
        sharpe=safe_div(annual_return, volatility),
    )


class StrategyAllocator:
    """
    Greedy constrained allocator.

    Example:
        >>> allocator = StrategyAllocator()
        >>> plan = allocator.allocate([a, b, c])
        >>> plan.weights
        (('A', 4000), ('B', 3000), ('C', 3000))
    """

    def __init__(
        self,
        total_budget_bps: int = TOTAL_BUDGET_BPS,
        step_bps: int = 500,
        max_strategies: int = 10,
        periods_per_year: int = 365,
        min_weight: int = 1000,
        max_weight: int = 4000,
    ):
        if step_bps < 1:
            raise ValueError("step_bps must be at least 1")
        if min_weight > max_weight:
            raise ValueError("min_weight exceeds max_weight")
        self.total_budget_bps = total_budget_bps
        self.step_bps = step_bps
        self.max_strategies = max_strategies
        self.periods_per_year = periods_per_year
        self.min_weight = min_weight
        self.max_weight = max_weight

    @classmethod
    def from_settings(cls, settings) -> "StrategyAllocator":
        return cls(
            step_bps=settings.allocation_step_bps,
            max_strategies=settings.max_strategies,
            periods_per_year=settings.periods_per_year,
            min_weight=settings.min_strategy_weight_bps,
            max_weight=settings.max_strategy_weight_bps,
        )

    def rank(self, strategies: Sequence[StrategySpec]) -> list[tuple[StrategySpec, StrategyMetrics]]:
        """Active strategies sorted by Sharpe descending, then by name."""
        scored = [
            (strategy, calculate_strategy_metrics(strategy, self.periods_per_year))
            for strategy in strategies
            if strategy.is_active
        ]
        scored.sort(key=lambda item: (-item[1].sharpe, item[0].name))
        return scored

    def ceiling(self, strategy: StrategySpec) -> int:
        max_weight = self.max_weight if strategy.max_weight is None else strategy.max_weight
        return max(0, min(max_weight, strategy.max_allocation_bps, self.total_budget_bps))

    def floor(self, strategy: StrategySpec) -> int:
        min_weight = self.min_weight if strategy.min_weight is None else strategy.min_weight
        return max(0, min(min_weight, self.ceiling(strategy)))

    def _base(self, strategy: StrategySpec, count: int) -> int:
        even_share = self.total_budget_bps // count
        stepped = (even_share // self.step_bps) * self.step_bps
        return min(max(stepped, self.floor(strategy)), self.ceiling(strategy))

    def allocate(self, strategies: Sequence[StrategySpec]) -> AllocationPlan:
        """
        Allocate the budget across strategies.

        Args:
            strategies: Immutable strategy descriptions from the vault

        Returns:
            AllocationPlan whose weights sum to the budget whenever any active
            strategy exists
        """
        ranked = [strategy for strategy, _ in self.rank(strategies)]
        participants = ranked[: self.max_strategies]
        participant_names = {strategy.name for strategy in participants}
        excluded = sorted(
            (strategy.name for strategy in strategies if strategy.name not in participant_names),
        )

        if not participants:
            return AllocationPlan(weights=tuple((name, 0) for name in excluded))

        count = len(participants)
        bases = [self._base(strategy, count) for strategy in participants]
        weights: list[int] = []
        remaining = self.total_budget_bps

        for index, strategy in enumerate(participants):
            if index == count - 1:
                weight = min(remaining, self.ceiling(strategy))
            else:
                reserve = sum(bases[index + 1 :])
                weight = min(max(remaining - reserve, self.floor(strategy)), self.ceiling(strategy))
                weight = max(min(weight, remaining), 0)
            weights.append(weight)
            remaining -= weight

        # Top up strategies that still have headroom
        for index, strategy in enumerate(participants):
            if remaining <= 0:
                break
            extra = min(self.ceiling(strategy) - weights[index], remaining)
            if extra > 0:
                weights[index] += extra
                remaining -= extra

        if remaining > 0:
            logger.warning(
                "Strategy bounds cannot absorb the full budget, last strategy takes the remainder",
                extra={"remainder_bps": remaining, "strategies": count},
            )
            weights[-1] += remaining

        plan_weights = tuple((strategy.name, weight) for strategy, weight in zip(participants, weights))
        plan_weights += tuple((name, 0) for name in excluded)
        return AllocationPlan(weights=plan_weights)
