"""
Observation Input Contract

Pydantic models describing a single pool snapshot as delivered by the ingestion
layer. Fractions are Decimals (JSON strings preferred, numbers accepted) and
timestamps are integer seconds since the Unix epoch. Time series are tuples of
(timestamp, value) pairs so a parsed Observation is immutable end to end.

Structural problems (missing fields, wrong types, unknown pool kind) are caught
here; semantic checks live in pool_analytics.data.ingest.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

TimePoint = tuple[int, Decimal]
TimeSeries = tuple[TimePoint, ...]


class PoolKind(str, Enum):
    """Supported pool designs."""

    STABLE = "stable"
    VOLATILE = "volatile"
    WEIGHTED = "weighted"
    CONCENTRATED = "concentrated"
    HYBRID = "hybrid"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class FeeStructure(_Frozen):
    swap_fee: Decimal = Field(default=Decimal(0), description="Swap fee fraction")
    protocol_fee: Decimal = Field(default=Decimal(0), description="Protocol fee fraction")
    lp_fee: Decimal = Field(default=Decimal(0), description="LP fee fraction")
    withdrawal_fee: Decimal = Field(default=Decimal(0), description="Withdrawal fee fraction")
    performance_fee: Decimal = Field(default=Decimal(0), description="Performance fee fraction")


class TokenShare(_Frozen):
    symbol: str = Field(..., min_length=1)
    weight: Decimal = Field(..., description="Target weight; all weights sum to 1")
    amount: Decimal = Field(..., description="Token amount held by the pool")
    value_usd: Decimal = Field(..., description="USD value of the holding")
    token_address: str = Field(default="")


class APYBreakdown(_Frozen):
    total_apy: Decimal = Decimal(0)
    base_apy: Decimal = Decimal(0)
    reward_apy: Decimal = Decimal(0)
    farming_apy: Decimal = Decimal(0)
    historical_apy: TimeSeries = ()
    apy_stability_score: int = Field(default=0, description="0..100")
    projected_apy: Decimal = Decimal(0)


class RiskInputs(_Frozen):
    score: int = Field(default=0, description="Impermanent-loss risk score 0..100")
    historical_il: TimeSeries = ()
    price_correlation: Decimal = Field(default=Decimal(0), description="-1..1")
    max_il_projected: Decimal = Field(default=Decimal(0), description="Non-positive")


class VolatilityInputs(_Frozen):
    daily_volatility: Decimal = Decimal(0)
    weekly_volatility: Decimal = Decimal(0)
    monthly_volatility: Decimal = Decimal(0)
    price_impact_1k: Decimal = Field(default=Decimal(0), description="Price impact of a $1k trade")
    price_impact_10k: Decimal = Field(default=Decimal(0), description="Price impact of a $10k trade")
    volatility_rank: int = Field(default=0, description="0..100")
    price_stability_score: int = Field(default=0, description="0..100")


class SecurityEvent(_Frozen):
    timestamp: int
    event_type: str = ""
    severity: str = Field(..., description="low, medium, high or critical")
    description: str = ""
    resolution: str | None = None


class SecurityInputs(_Frozen):
    audit_score: int = Field(default=0, description="0..100")
    contract_risk: int = Field(default=0, description="0..100")
    centralization_risk: int = Field(default=0, description="0..100")
    exploit_history: tuple[SecurityEvent, ...] = ()
    insurance_coverage: bool = False


class GasMetrics(_Frozen):
    avg_gas_cost: Decimal = Decimal(0)
    gas_token_price: Decimal = Decimal(0)
    cost_usd: Decimal = Decimal(0)
    gas_efficiency_score: int = Field(default=0, description="0..100")
    peak_hours: tuple[int, ...] = ()
    historical_gas: TimeSeries = ()


class UserMetrics(_Frozen):
    total_users: int = 0
    active_users_24h: int = 0
    avg_position_size: Decimal = Decimal(0)
    avg_holding_period: Decimal = Field(default=Decimal(0), description="Days")
    user_concentration: Decimal = Field(default=Decimal(0), description="Herfindahl-like, 0..1")


class PerformanceHistory(_Frozen):
    daily_returns: TimeSeries = ()
    volume_history: TimeSeries = ()
    tvl_history: TimeSeries = ()
    il_history: TimeSeries = ()


class Observation(_Frozen):
    """A snapshot of one pool at ingestion time."""

    observation_id: str = Field(..., min_length=1)
    observed_at: int = Field(..., description="Ingestion tick, seconds since epoch")
    pool_id: str = Field(..., min_length=1)
    pool_name: str = ""
    platform: str = Field(..., description="Platform tag, e.g. ref-finance")
    chain: str = Field(..., description="Chain tag, e.g. near")
    pool_kind: PoolKind
    creation_timestamp: int = 0

    tvl: Decimal
    volume_24h: Decimal = Decimal(0)
    volume_7d: Decimal = Decimal(0)
    liquidity: Decimal = Decimal(0)
    fee_structure: FeeStructure = FeeStructure()
    tokens: tuple[TokenShare, ...]

    apy: APYBreakdown = APYBreakdown()
    risk: RiskInputs = RiskInputs()
    volatility: VolatilityInputs = VolatilityInputs()
    security: SecurityInputs = SecurityInputs()
    gas: dict[str, GasMetrics] = Field(default_factory=dict, description="Gas metrics per chain")
    users: UserMetrics = UserMetrics()
    performance_history: PerformanceHistory = PerformanceHistory()
    market_returns: TimeSeries = Field(default=(), description="Optional benchmark returns")
