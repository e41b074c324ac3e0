"""
Pool Metrics Ingest

Validates raw observation records and normalizes them into NormalizedPool
instances consumed by every later phase.

Validation:
- Structural: pydantic parsing of the Observation contract
- Semantic: token weights sum to 1 +/- 1e-6, non-negative amounts and rates,
  correlation in [-1, 1], projected IL <= 0, scores in 0..100, peak hours in
  0..23, finite decimals, strictly increasing performance-history timestamps
- Tick order: TickLedger accepts at most one observation per pool per tick and
  rejects ticks older than the last accepted one

Normalization:
- Secondary histories (APY, IL risk, gas, benchmark) sorted ascending and
  deduplicated by timestamp, keeping the latest occurrence
- Every history truncated to the most recent max_history_length points
- Peak hours sorted and deduplicated

Normalization is idempotent: ingesting an already-normalized observation yields
an identical record.
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from pool_analytics.core.errors import InvalidObservation
from pool_analytics.core.numerics import fixed_point
from pool_analytics.data.models import Observation, TimeSeries

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY_LENGTH = 365
WEIGHT_TOLERANCE = Decimal("0.000001")


@dataclass(frozen=True)
class NormalizedPool:
    """
    An accepted, normalized observation.

    Attributes:
        observation: Normalized Observation (immutable)
    """

    observation: Observation

    @property
    def pool_id(self) -> str:
        return self.observation.pool_id

    @property
    def observed_at(self) -> int:
        return self.observation.observed_at

    @property
    def return_series(self) -> TimeSeries:
        return self.observation.performance_history.daily_returns

    @property
    def returns(self) -> tuple[Decimal, ...]:
        return tuple(value for _, value in self.return_series)

    @property
    def tvl_series(self) -> TimeSeries:
        return self.observation.performance_history.tvl_history

    @property
    def tvl_values(self) -> tuple[Decimal, ...]:
        return tuple(value for _, value in self.tvl_series)

    @property
    def volume_series(self) -> TimeSeries:
        return self.observation.performance_history.volume_history

    @property
    def volume_values(self) -> tuple[Decimal, ...]:
        return tuple(value for _, value in self.volume_series)

    @property
    def il_series(self) -> TimeSeries:
        return self.observation.performance_history.il_history

    @property
    def apy_series(self) -> TimeSeries:
        return self.observation.apy.historical_apy

    def value_shares(self) -> tuple[Decimal, ...]:
        """Each token's share of the pool's USD value (0 when the pool is empty)."""
        tokens = self.observation.tokens
        total = sum((token.value_usd for token in tokens), Decimal(0))
        if total == 0:
            return tuple(Decimal(0) for _ in tokens)
        with fixed_point():
            return tuple(token.value_usd / total for token in tokens)

    def composition_drift(self) -> Decimal:
        """
        Distance between actual value shares and target weights.

        Half the L1 distance, so 0 means perfectly balanced and 1 means the
        value sits entirely outside the target weights.
        """
        shares = self.value_shares()
        if not any(shares):
            return Decimal(0)
        total = sum(
            (abs(share - token.weight) for share, token in zip(shares, self.observation.tokens)),
            Decimal(0),
        )
        with fixed_point():
            return total / 2


# ============================================================================
# Validation
# ============================================================================


def _check_range(issues: list[str], name: str, value: Decimal | int, lower=None, upper=None) -> None:
    if isinstance(value, Decimal) and not value.is_finite():
        issues.append(f"{name} is not finite")
        return
    if lower is not None and value < lower:
        issues.append(f"{name} must be >= {lower}, got {value}")
    if upper is not None and value > upper:
        issues.append(f"{name} must be <= {upper}, got {value}")


def _check_series(issues: list[str], name: str, series: TimeSeries, strictly_increasing: bool) -> None:
    for timestamp, value in series:
        if not value.is_finite():
            issues.append(f"{name} contains a non-finite value at t={timestamp}")
            return
    if strictly_increasing:
        for (previous, _), (current, _) in zip(series, series[1:]):
            if current <= previous:
                issues.append(f"{name} timestamps must be strictly increasing ({previous} -> {current})")
                return


def validate_observation(observation: Observation) -> list[str]:
    """
    Run semantic checks on a parsed observation.

    Args:
        observation: Parsed Observation

    Returns:
        List of issue descriptions (empty when the observation is valid)
    """
    issues: list[str] = []

    if observation.observed_at < 0:
        issues.append("observed_at must be non-negative")

    for name in ("tvl", "volume_24h", "volume_7d", "liquidity"):
        _check_range(issues, name, getattr(observation, name), lower=0)

    fees = observation.fee_structure
    for name in ("swap_fee", "protocol_fee", "lp_fee", "withdrawal_fee", "performance_fee"):
        _check_range(issues, f"fee_structure.{name}", getattr(fees, name), lower=0)

    if not observation.tokens:
        issues.append("tokens must not be empty")
    else:
        weight_sum = Decimal(0)
        for token in observation.tokens:
            _check_range(issues, f"tokens[{token.symbol}].weight", token.weight, lower=0)
            _check_range(issues, f"tokens[{token.symbol}].amount", token.amount, lower=0)
            _check_range(issues, f"tokens[{token.symbol}].value_usd", token.value_usd, lower=0)
            if token.weight.is_finite():
                weight_sum += token.weight
        if abs(weight_sum - 1) > WEIGHT_TOLERANCE:
            issues.append(f"token weights must sum to 1, got {weight_sum}")

    apy = observation.apy
    for name in ("total_apy", "base_apy", "reward_apy", "farming_apy", "projected_apy"):
        _check_range(issues, f"apy.{name}", getattr(apy, name), lower=0)
    _check_range(issues, "apy.apy_stability_score", apy.apy_stability_score, lower=0, upper=100)
    _check_series(issues, "apy.historical_apy", apy.historical_apy, strictly_increasing=False)

    risk = observation.risk
    _check_range(issues, "risk.score", risk.score, lower=0, upper=100)
    _check_range(issues, "risk.price_correlation", risk.price_correlation, lower=-1, upper=1)
    _check_range(issues, "risk.max_il_projected", risk.max_il_projected, upper=0)
    _check_series(issues, "risk.historical_il", risk.historical_il, strictly_increasing=False)

    volatility = observation.volatility
    for name in (
        "daily_volatility",
        "weekly_volatility",
        "monthly_volatility",
        "price_impact_1k",
        "price_impact_10k",
    ):
        _check_range(issues, f"volatility.{name}", getattr(volatility, name), lower=0)
    _check_range(issues, "volatility.volatility_rank", volatility.volatility_rank, lower=0, upper=100)
    _check_range(
        issues, "volatility.price_stability_score", volatility.price_stability_score, lower=0, upper=100
    )

    security = observation.security
    for name in ("audit_score", "contract_risk", "centralization_risk"):
        _check_range(issues, f"security.{name}", getattr(security, name), lower=0, upper=100)

    for chain, gas in observation.gas.items():
        for name in ("avg_gas_cost", "gas_token_price", "cost_usd"):
            _check_range(issues, f"gas[{chain}].{name}", getattr(gas, name), lower=0)
        _check_range(issues, f"gas[{chain}].gas_efficiency_score", gas.gas_efficiency_score, lower=0, upper=100)
        if any(hour < 0 or hour > 23 for hour in gas.peak_hours):
            issues.append(f"gas[{chain}].peak_hours must be within 0..23")
        _check_series(issues, f"gas[{chain}].historical_gas", gas.historical_gas, strictly_increasing=False)

    users = observation.users
    _check_range(issues, "users.total_users", users.total_users, lower=0)
    _check_range(issues, "users.active_users_24h", users.active_users_24h, lower=0)
    _check_range(issues, "users.avg_position_size", users.avg_position_size, lower=0)
    _check_range(issues, "users.avg_holding_period", users.avg_holding_period, lower=0)
    _check_range(issues, "users.user_concentration", users.user_concentration, lower=0, upper=1)

    history = observation.performance_history
    for name in ("daily_returns", "volume_history", "tvl_history", "il_history"):
        _check_series(issues, f"performance_history.{name}", getattr(history, name), strictly_increasing=True)

    _check_series(issues, "market_returns", observation.market_returns, strictly_increasing=False)

    return issues


# ============================================================================
# Normalization
# ============================================================================


def _dedup_sorted(series: TimeSeries, max_length: int) -> TimeSeries:
    latest: dict[int, Decimal] = {}
    for timestamp, value in series:
        latest[timestamp] = value
    ordered = sorted(latest.items())
    return tuple(ordered[-max_length:])


def _truncate(series: TimeSeries, max_length: int) -> TimeSeries:
    return tuple(series[-max_length:])


def normalize_observation(observation: Observation, max_history_length: int = DEFAULT_MAX_HISTORY_LENGTH) -> Observation:
    """
    Sort, deduplicate and bound every history of a validated observation.

    Args:
        observation: Observation that passed validate_observation()
        max_history_length: Maximum points kept per history

    Returns:
        New normalized Observation
    """
    history = observation.performance_history
    gas = {
        chain: metrics.model_copy(
            update={
                "peak_hours": tuple(sorted(set(metrics.peak_hours))),
                "historical_gas": _dedup_sorted(metrics.historical_gas, max_history_length),
            }
        )
        for chain, metrics in sorted(observation.gas.items())
    }

    return observation.model_copy(
        update={
            "performance_history": history.model_copy(
                update={
                    "daily_returns": _truncate(history.daily_returns, max_history_length),
                    "volume_history": _truncate(history.volume_history, max_history_length),
                    "tvl_history": _truncate(history.tvl_history, max_history_length),
                    "il_history": _truncate(history.il_history, max_history_length),
                }
            ),
            "apy": observation.apy.model_copy(
                update={"historical_apy": _dedup_sorted(observation.apy.historical_apy, max_history_length)}
            ),
            "risk": observation.risk.model_copy(
                update={"historical_il": _dedup_sorted(observation.risk.historical_il, max_history_length)}
            ),
            "security": observation.security.model_copy(
                update={
                    "exploit_history": tuple(
                        sorted(observation.security.exploit_history, key=lambda event: event.timestamp)
                    )
                }
            ),
            "gas": gas,
            "market_returns": _dedup_sorted(observation.market_returns, max_history_length),
        }
    )


def _pool_id_of(payload: Any) -> str:
    if isinstance(payload, Mapping):
        return str(payload.get("pool_id", ""))
    return ""


def _format_validation_error(exc: ValidationError) -> list[str]:
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        issues.append(f"{location}: {error.get('msg', 'invalid')}" if location else error.get("msg", "invalid"))
    return issues


def parse_observation(payload: Observation | Mapping[str, Any] | str | bytes) -> Observation:
    """
    Parse a payload into an Observation.

    Raises:
        InvalidObservation: If the payload does not match the contract.
    """
    if isinstance(payload, Observation):
        return payload
    try:
        if isinstance(payload, (str, bytes)):
            return Observation.model_validate_json(payload)
        return Observation.model_validate(payload)
    except ValidationError as exc:
        raise InvalidObservation(_pool_id_of(payload), _format_validation_error(exc)) from exc


def ingest(
    payload: Observation | Mapping[str, Any] | str | bytes,
    max_history_length: int = DEFAULT_MAX_HISTORY_LENGTH,
) -> NormalizedPool:
    """
    Validate and normalize one observation.

    Args:
        payload: Observation, mapping or JSON document
        max_history_length: Maximum points kept per history

    Returns:
        NormalizedPool

    Raises:
        InvalidObservation: On any structural or semantic violation.
    """
    observation = parse_observation(payload)
    issues = validate_observation(observation)
    if issues:
        logger.debug("Observation failed validation", extra={"pool_id": observation.pool_id, "issues": len(issues)})
        raise InvalidObservation(observation.pool_id, issues)
    return NormalizedPool(normalize_observation(observation, max_history_length))


class TickLedger:
    """
    Tracks the last accepted tick per pool.

    Thread-safe; one lock guards the small pool -> tick map.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_tick: dict[str, int] = {}

    def admit(self, pool_id: str, observed_at: int) -> None:
        """
        Record a tick for a pool.

        Raises:
            InvalidObservation: If the pool already has an observation at this
                tick or at a later one.
        """
        with self._lock:
            last = self._last_tick.get(pool_id)
            if last is not None and observed_at <= last:
                reason = "duplicate tick" if observed_at == last else "out-of-order tick"
                raise InvalidObservation(pool_id, [f"{reason}: {observed_at} (last accepted {last})"])
            self._last_tick[pool_id] = observed_at

    def last_tick(self, pool_id: str) -> int | None:
        with self._lock:
            return self._last_tick.get(pool_id)
