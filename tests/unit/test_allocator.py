"""
Unit tests for the strategy allocator.

Tests cover:
- The three-strategy constrained scenario (4000 / 3000 / 3000)
- Ranking by Sharpe with name tie-break
- Inactive strategies, strategy limits and infeasible bounds
- Determinism and immutability of inputs
"""

from decimal import Decimal

import pytest

from pool_analytics.optimizer.allocator import (
    TOTAL_BUDGET_BPS,
    AllocationPlan,
    StrategyAllocator,
    StrategySpec,
    calculate_strategy_metrics,
)


def strategy(name, balances, active=True, **bounds):
    history = tuple((index + 1, Decimal(str(balance))) for index, balance in enumerate(balances))
    return StrategySpec(name=name, is_active=active, performance_history=history, **bounds)


# Returns (0.1, 0.05), (0.1, 0.0) and (0.1, -0.05): Sharpe strictly decreasing
STRONG = (100, 110, "115.5")
MEDIUM = (100, 110, 110)
WEAK = (100, 110, "104.5")


@pytest.fixture
def allocator():
    return StrategyAllocator()


@pytest.fixture
def ranked_strategies():
    return [
        strategy("C", WEAK, max_allocation_bps=4000),
        strategy("A", STRONG, max_allocation_bps=4000),
        strategy("B", MEDIUM, max_allocation_bps=4000),
    ]


def test_three_strategy_scenario(allocator, ranked_strategies):
    """Test A=4000, B=3000, C=3000 for Sharpe-ordered A > B > C."""
    plan = allocator.allocate(ranked_strategies)

    assert plan.weights == (("A", 4000), ("B", 3000), ("C", 3000))
    assert plan.total_bps == TOTAL_BUDGET_BPS


def test_rank_by_sharpe(allocator, ranked_strategies):
    ranked = allocator.rank(ranked_strategies)
    assert [spec.name for spec, _ in ranked] == ["A", "B", "C"]
    assert ranked[0][1].sharpe > ranked[1][1].sharpe > ranked[2][1].sharpe


def test_ties_broken_by_name(allocator):
    strategies = [strategy("beta", MEDIUM, max_weight=6000), strategy("alpha", MEDIUM, max_weight=6000)]

    plan = allocator.allocate(strategies)

    assert plan.weights == (("alpha", 5000), ("beta", 5000))


def test_inactive_strategies_receive_zero(allocator):
    strategies = [
        strategy("A", STRONG, max_weight=10_000),
        strategy("Z", STRONG, active=False),
        strategy("B", MEDIUM, max_weight=10_000),
    ]

    plan = allocator.allocate(strategies)

    assert plan.weight_of("Z") == 0
    assert plan.weights[-1] == ("Z", 0)
    assert plan.total_bps == TOTAL_BUDGET_BPS


def test_no_active_strategies(allocator):
    plan = allocator.allocate([strategy("A", STRONG, active=False)])
    assert plan.weights == (("A", 0),)
    assert plan.total_bps == 0


def test_last_strategy_absorbs_what_bounds_cannot(allocator):
    """Test that two strategies capped at 4000 still use the whole budget."""
    plan = allocator.allocate([strategy("A", STRONG), strategy("B", MEDIUM)])

    assert plan.weights == (("A", 4000), ("B", 6000))
    assert plan.total_bps == TOTAL_BUDGET_BPS


def test_single_active_strategy_takes_full_budget(allocator):
    plan = allocator.allocate([strategy("A", STRONG), strategy("B", MEDIUM, active=False)])

    assert plan.weights == (("A", TOTAL_BUDGET_BPS), ("B", 0))


def test_max_strategies_limit():
    allocator = StrategyAllocator(max_strategies=2)
    strategies = [
        strategy("A", STRONG, max_weight=10_000),
        strategy("B", MEDIUM, max_weight=10_000),
        strategy("C", WEAK, max_weight=10_000),
    ]

    plan = allocator.allocate(strategies)

    assert plan.weight_of("C") == 0
    assert plan.weight_of("A") + plan.weight_of("B") == TOTAL_BUDGET_BPS


def test_weights_respect_bounds(allocator, ranked_strategies):
    plan = allocator.allocate(ranked_strategies)
    for name, weight in plan.weights:
        assert 1000 <= weight <= 4000, name


def test_deterministic_and_inputs_unchanged(allocator, ranked_strategies):
    before = list(ranked_strategies)

    first = allocator.allocate(ranked_strategies)
    second = allocator.allocate(list(reversed(ranked_strategies)))

    assert first == second
    assert ranked_strategies == before


def test_flat_history_has_zero_sharpe():
    metrics = calculate_strategy_metrics(strategy("A", (100, 100, 100)))
    assert metrics.sharpe == 0
    assert metrics.volatility == 0


def test_invalid_step():
    with pytest.raises(ValueError):
        StrategyAllocator(step_bps=0)


def test_plan_helpers():
    plan = AllocationPlan(weights=(("A", 6000), ("B", 4000)))
    assert plan.total_bps == 10_000
    assert plan.weight_of("missing") == 0


def test_allocator_default_bounds_apply_to_unbounded_strategies():
    """Test that strategies without explicit bounds use the allocator defaults."""
    allocator = StrategyAllocator(min_weight=0, max_weight=10_000)

    plan = allocator.allocate([strategy("A", STRONG), strategy("B", MEDIUM)])

    assert plan.weights == (("A", 5000), ("B", 5000))


def test_explicit_bounds_override_defaults():
    allocator = StrategyAllocator(min_weight=0, max_weight=10_000)
    strategies = [strategy("A", STRONG, max_weight=2000), strategy("B", MEDIUM)]

    plan = allocator.allocate(strategies)

    assert plan.weights == (("A", 2000), ("B", 8000))


def test_from_settings_uses_weight_defaults(settings):
    allocator = StrategyAllocator.from_settings(settings)
    spec = strategy("A", STRONG)

    assert allocator.floor(spec) == 1000
    assert allocator.ceiling(spec) == 4000


def test_inverted_default_bounds_rejected():
    with pytest.raises(ValueError):
        StrategyAllocator(min_weight=5000, max_weight=4000)
