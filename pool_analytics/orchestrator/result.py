"""
Result Bundle

JSON-compatible output of one pool analysis. Decimals are serialized as strings
(pydantic's JSON mode) so downstream consumers never see a float round-trip;
the feature vector is a float64 list tagged with its schema id.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from pool_analytics.analytics.advanced_metrics import AdvancedMetrics
from pool_analytics.computation.indicators import TechnicalIndicators
from pool_analytics.features.synthesizer import FeatureVector
from pool_analytics.monitoring.alert_engine import AlertEvent
from pool_analytics.optimizer.allocator import AllocationPlan
from pool_analytics.optimizer.position_sizer import PositionSize
from pool_analytics.optimizer.signal_generator import Signal


# ============================================================================
# Section Models
# ============================================================================


class AdvancedMetricsModel(BaseModel):
    """Risk-adjusted statistics"""

    alpha: Decimal
    beta: Decimal
    sharpe: Decimal
    sortino: Decimal
    max_drawdown: Decimal
    value_at_risk: Decimal
    calmar: Decimal
    omega: Decimal
    annualized_return: Decimal

    @classmethod
    def from_metrics(cls, metrics: AdvancedMetrics) -> "AdvancedMetricsModel":
        return cls(**metrics.as_dict())


class TechnicalIndicatorsModel(BaseModel):
    """Latest technical indicator values"""

    rsi_14: Decimal
    macd: Decimal
    macd_signal: Decimal
    macd_histogram: Decimal
    bollinger_upper: Decimal
    bollinger_middle: Decimal
    bollinger_lower: Decimal
    atr: Decimal
    volatility_regime: str

    @classmethod
    def from_indicators(cls, indicators: TechnicalIndicators) -> "TechnicalIndicatorsModel":
        return cls(
            rsi_14=indicators.rsi_14,
            macd=indicators.macd,
            macd_signal=indicators.macd_signal,
            macd_histogram=indicators.macd_histogram,
            bollinger_upper=indicators.bollinger_upper,
            bollinger_middle=indicators.bollinger_middle,
            bollinger_lower=indicators.bollinger_lower,
            atr=indicators.atr,
            volatility_regime=indicators.volatility_regime.value,
        )


class FeatureVectorModel(BaseModel):
    """Feature vector plus the layout it was built against"""

    schema_id: str
    schema_version: int
    values: list[float]

    @classmethod
    def from_vector(cls, vector: FeatureVector) -> "FeatureVectorModel":
        return cls(schema_id=vector.schema_id, schema_version=vector.schema_version, values=vector.to_list())


class SignalModel(BaseModel):
    timestamp: int
    kind: str  # entry, exit, rebalance, risk_warning
    strength: Decimal
    confidence: Decimal
    indicators: list[str]
    reason: str = ""

    @classmethod
    def from_signal(cls, signal: Signal) -> "SignalModel":
        return cls(
            timestamp=signal.timestamp,
            kind=signal.kind.value,
            strength=signal.strength,
            confidence=signal.confidence,
            indicators=list(signal.indicators),
            reason=signal.reason,
        )


class StrategyWeightModel(BaseModel):
    name: str
    weight_bps: int


class AllocationPlanModel(BaseModel):
    """Strategy weights in rank order"""

    weights: list[StrategyWeightModel]
    total_bps: int

    @classmethod
    def from_plan(cls, plan: AllocationPlan) -> "AllocationPlanModel":
        return cls(
            weights=[StrategyWeightModel(name=name, weight_bps=weight) for name, weight in plan.weights],
            total_bps=plan.total_bps,
        )


class PositionSizeModel(BaseModel):
    size: Decimal
    kelly_fraction: Decimal
    result_code: str
    reason: str

    @classmethod
    def from_position(cls, position: PositionSize) -> "PositionSizeModel":
        return cls(
            size=position.size,
            kelly_fraction=position.kelly_fraction,
            result_code=position.result_code.name,
            reason=position.reason,
        )


class AlertModel(BaseModel):
    """Structured alert event"""

    metric: str
    severity: str  # normal, warning, critical, emergency
    old_value: Decimal | None = None
    new_value: Decimal
    change_bps: Decimal
    volatility_bps: Decimal
    z_score: Decimal
    mean: Decimal
    std_dev: Decimal
    window_size: int
    threshold: Decimal
    is_anomaly: bool
    timestamp: int

    @classmethod
    def from_event(cls, event: AlertEvent) -> "AlertModel":
        return cls(
            metric=event.metric,
            severity=event.severity.name.lower(),
            old_value=event.old_value,
            new_value=event.new_value,
            change_bps=event.change_bps,
            volatility_bps=event.volatility_bps,
            z_score=event.z_score,
            mean=event.mean,
            std_dev=event.std_dev,
            window_size=event.window_size,
            threshold=event.threshold,
            is_anomaly=event.is_anomaly,
            timestamp=event.timestamp,
        )


# ============================================================================
# Result Bundle
# ============================================================================


class AnalysisResult(BaseModel):
    """
    Output of one pool analysis.

    Sections of phases that did not run (rejected observation, timeout) are
    None and their phase names are listed in missing_phases. flags carries
    insufficient-history, overflow, timeout and poisoned-detector markers.
    """

    observation_id: str
    pool_id: str
    observed_at: int | None = None
    schema_version: int
    advanced_metrics: AdvancedMetricsModel | None = None
    technical_indicators: TechnicalIndicatorsModel | None = None
    feature_vector: FeatureVectorModel | None = None
    position_size: PositionSizeModel | None = None
    signals: list[SignalModel] = Field(default_factory=list)
    allocation_plan: AllocationPlanModel | None = None
    alerts: list[AlertModel] = Field(default_factory=list)
    pool_health: str = "normal"
    flags: list[str] = Field(default_factory=list)
    missing_phases: list[str] = Field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return "invalid_observation" not in self.flags

    def to_json(self) -> str:
        return self.model_dump_json()
