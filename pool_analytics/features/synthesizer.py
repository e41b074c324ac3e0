"""
Feature Synthesizer

Turns a normalized pool plus its derived statistics into a flat, deterministic
float64 feature vector. This is the only place where fixed-point values are
converted to floats; every value passes through to_float() and the final vector
is sanitized so it never contains NaN or infinity.

The layout is declared by FeatureSchema; the synthesizer writes features in
exactly that order and refuses to emit a vector whose names drift from it.

Market depth uses a square-root impact model anchored on the observed $10k
price impact: a trade of size Q moves the price by impact_10k * sqrt(Q / 10k),
so the trade size that moves the price by x is 10k * (x / impact_10k)^2.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

import numpy as np

from pool_analytics.analytics.advanced_metrics import (
    AdvancedMetrics,
    MetricsConfig,
    PerformanceStats,
    aligned_market_returns,
)
from pool_analytics.computation import indicators as ind
from pool_analytics.computation import timeseries as ts
from pool_analytics.core.numerics import (
    HUNDRED,
    ONE,
    ZERO,
    clamp,
    dln,
    dsqrt,
    fixed_point,
    safe_div,
    to_float,
)
from pool_analytics.data.ingest import NormalizedPool
from pool_analytics.features import kernels
from pool_analytics.features.schema import (
    INSUFFICIENT_FLAGS,
    MAX_TOKENS,
    SEVERITY_CLASSES,
    SUPPORT_RESISTANCE_LEVELS,
    TIME_SERIES_FIELDS,
    TIME_SERIES_POINTS,
    TREND_REGIMES,
    VOLATILITY_REGIMES,
    FeatureSchema,
)
from pool_analytics.features.vocabulary import Vocabulary, VocabularyRegistry

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = Decimal(86400)
TVL_LOG_SCALE = Decimal(25)
VOLUME_TREND_BOUND = Decimal(5)
DEPTH_REFERENCE_USD = Decimal(10_000)
SLIPPAGE_REFERENCE_USD = Decimal(1_000)
DEPTH_LEVELS = (Decimal("0.02"), Decimal("0.05"), Decimal("0.10"))
SHORT_TREND_WINDOW = 7
UNRESOLVED_EVENT_PENALTY = Decimal("0.1")


@dataclass(frozen=True)
class FeatureConfig:
    """
    Attributes:
        default_platform_tvl: Platform TVL used for protocol dominance
        platform_tvl: Per-platform TVL overrides
        market_efficiency_coefficient: Multiplier for capital efficiency
        security_lookback_days: Window for the security event history vector
        metrics: Metric constants, used for benchmark alignment
    """

    default_platform_tvl: Decimal = Decimal("1000000000")
    platform_tvl: dict[str, Decimal] = field(default_factory=dict)
    market_efficiency_coefficient: Decimal = ONE
    security_lookback_days: int = 365
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    @classmethod
    def from_settings(cls, settings) -> "FeatureConfig":
        return cls(
            default_platform_tvl=settings.default_platform_tvl,
            platform_tvl=dict(settings.platform_tvl),
            market_efficiency_coefficient=settings.market_efficiency_coefficient,
            security_lookback_days=settings.security_lookback_days,
            metrics=MetricsConfig.from_settings(settings),
        )

    def platform_tvl_for(self, platform: str) -> Decimal:
        return self.platform_tvl.get(platform.strip().lower(), self.default_platform_tvl)


@dataclass(frozen=True)
class FeatureVector:
    """
    Attributes:
        values: Read-only float64 array
        names: Feature names in vector order
        schema_id: Layout + vocabulary identifier
        schema_version: Layout version
    """

    values: np.ndarray
    names: tuple[str, ...]
    schema_id: str
    schema_version: int

    @classmethod
    def neutral(cls, schema: FeatureSchema) -> "FeatureVector":
        """All-zero vector for a schema, used when synthesis overflowed."""
        values = np.zeros(schema.cardinality, dtype=np.float64)
        values.setflags(write=False)
        return cls(values=values, names=schema.names, schema_id=schema.schema_id, schema_version=schema.version)

    def __len__(self) -> int:
        return len(self.values)

    def to_list(self) -> list[float]:
        return [float(value) for value in self.values]

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.names, self.to_list()))


class _FeatureWriter:
    def __init__(self):
        self.names: list[str] = []
        self.values: list[float] = []

    def add(self, name: str, value) -> None:
        self.names.append(name)
        self.values.append(to_float(value))

    def extend(self, prefix: str, labels: Iterable, values: Iterable) -> None:
        for label, value in zip(labels, values, strict=True):
            self.add(f"{prefix}.{label}", value)


def _floats(values: Sequence[Decimal]) -> np.ndarray:
    return np.array([to_float(value) for value in values], dtype=np.float64)


def _one_hot(options: Sequence[str], selected: str) -> list[float]:
    return [1.0 if option == selected else 0.0 for option in options]


class FeatureSynthesizer:
    """
    Builds feature vectors against the registry's current vocabulary.

    The vocabulary snapshot is taken once per build, so a concurrent version
    bump never produces a vector that mixes two layouts.
    """

    def __init__(self, registry: VocabularyRegistry | None = None, config: FeatureConfig | None = None):
        self._registry = registry or VocabularyRegistry()
        self._config = config or FeatureConfig()

    def schema(self) -> FeatureSchema:
        return FeatureSchema.for_vocabulary(self._registry.current())

    def build(
        self,
        pool: NormalizedPool,
        metrics: AdvancedMetrics,
        indicators: ind.TechnicalIndicators,
        performance: PerformanceStats,
    ) -> FeatureVector:
        """
        Synthesize the feature vector for one pool.

        Args:
            pool: Normalized observation
            metrics: Advanced metrics for the pool
            indicators: Technical indicators for the pool
            performance: Supplementary performance statistics

        Returns:
            FeatureVector matching the current schema

        Raises:
            NumericOverflow: If a fixed-point intermediate overflows.
        """
        vocabulary = self._registry.current()
        schema = FeatureSchema.for_vocabulary(vocabulary)
        writer = _FeatureWriter()

        self._pool_section(writer, pool, vocabulary)
        self._market_section(writer, pool, indicators)
        self._technical_section(writer, pool, indicators)
        self._risk_section(writer, pool)
        self._temporal_section(writer, pool)
        self._performance_section(writer, metrics, performance)

        flags = metrics.insufficient | indicators.insufficient
        writer.extend("flags.insufficient", INSUFFICIENT_FLAGS, (1.0 if f in flags else 0.0 for f in INSUFFICIENT_FLAGS))

        if tuple(writer.names) != schema.names:
            raise RuntimeError(f"Feature layout drifted from schema {schema.schema_id}")

        values = kernels.sanitize(np.array(writer.values, dtype=np.float64))
        values.setflags(write=False)
        logger.debug(
            "Feature vector built",
            extra={"pool_id": pool.pool_id, "schema_id": schema.schema_id, "flags": sorted(flags)},
        )
        return FeatureVector(
            values=values,
            names=schema.names,
            schema_id=schema.schema_id,
            schema_version=schema.version,
        )

    # ------------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------------

    def _pool_section(self, writer: _FeatureWriter, pool: NormalizedPool, vocabulary: Vocabulary) -> None:
        obs = pool.observation
        tvl = obs.tvl

        with fixed_point():
            tvl_normalized = clamp(dln(tvl) / TVL_LOG_SCALE, ZERO, ONE) if tvl > 0 else ZERO
            liquidity_depth = ONE / (ONE + obs.volatility.price_impact_10k)
            age_days = Decimal(abs(obs.observed_at - obs.creation_timestamp)) / SECONDS_PER_DAY
            dominance = clamp(safe_div(tvl, self._config.platform_tvl_for(obs.platform)), ZERO, ONE)
            efficiency = min(ONE, safe_div(obs.volume_24h, tvl) * self._config.market_efficiency_coefficient)

        writer.add("pool.tvl_normalized", tvl_normalized)
        writer.add("pool.volume_tvl_ratio", safe_div(obs.volume_24h, tvl))
        writer.add("pool.liquidity_depth", liquidity_depth)
        writer.add("pool.price_correlation", obs.risk.price_correlation)
        writer.add("pool.age_days", age_days)

        for prefix, category, value in (
            ("pool.kind", "pool_kind", obs.pool_kind.value),
            ("pool.platform", "platform", obs.platform),
            ("pool.chain", "chain", obs.chain),
        ):
            labels = list(vocabulary.values_for(category)) + ["unknown"]
            writer.extend(prefix, labels, vocabulary.one_hot(category, value))

        weights = _floats([token.weight for token in obs.tokens])
        writer.extend("pool.token_weight", range(MAX_TOKENS), kernels.pad_or_truncate(weights, MAX_TOKENS))
        writer.add("pool.composition_score", kernels.composition_entropy(weights))
        writer.add("pool.protocol_dominance", dominance)
        writer.add("pool.capital_efficiency", efficiency)

    def _market_section(
        self, writer: _FeatureWriter, pool: NormalizedPool, indicators: ind.TechnicalIndicators
    ) -> None:
        obs = pool.observation
        volatility = obs.volatility
        tvl = obs.tvl

        writer.add("market.volatility_1d", volatility.daily_volatility)
        writer.add("market.volatility_7d", volatility.weekly_volatility)
        writer.add("market.volatility_30d", volatility.monthly_volatility)

        volumes = pool.volume_values
        volume_trend = ZERO
        if len(volumes) >= 2 and volumes[0] != 0:
            with fixed_point():
                volume_trend = clamp((volumes[-1] - volumes[0]) / volumes[0], -VOLUME_TREND_BOUND, VOLUME_TREND_BOUND)
        writer.add("market.volume_trend", volume_trend)
        writer.add("market.tvl_trend", ts.relative_slope(ts.window(pool.tvl_values, SHORT_TREND_WINDOW)))

        paired, market = aligned_market_returns(pool, self._config.metrics)
        writer.add("market.correlation", ts.correlation(paired, market))

        dominance = _floats(pool.value_shares())
        writer.extend("market.token_dominance", range(MAX_TOKENS), kernels.pad_or_truncate(dominance, MAX_TOKENS))
        writer.extend("market.regime", VOLATILITY_REGIMES, _one_hot(VOLATILITY_REGIMES, indicators.volatility_regime.value))

        impact = volatility.price_impact_10k
        with fixed_point():
            liquidity_score = clamp(safe_div(obs.liquidity, tvl), ZERO, ONE)
            spread = obs.fee_structure.swap_fee * 2
            depths = [self._depth_at(level, impact, tvl) for level in DEPTH_LEVELS]
            slippage = volatility.price_impact_1k * dsqrt(obs.users.avg_position_size / SLIPPAGE_REFERENCE_USD)

        writer.add("market.liquidity_score", liquidity_score)
        writer.add("market.impact", impact)
        writer.add("market.bid_ask_spread", spread)
        writer.extend("market", ("depth_2pct", "depth_5pct", "depth_10pct"), depths)
        writer.add("market.slippage_impact", slippage)
        writer.add("market.order_book_imbalance", pool.composition_drift())

    @staticmethod
    def _depth_at(level: Decimal, impact_10k: Decimal, tvl: Decimal) -> Decimal:
        """Depth at a price move, as a fraction of TVL in [0, 1]."""
        if tvl <= 0:
            return ZERO
        if impact_10k <= 0:
            return ONE
        size = DEPTH_REFERENCE_USD * (level / impact_10k) ** 2
        return clamp(size / tvl, ZERO, ONE)

    def _technical_section(
        self, writer: _FeatureWriter, pool: NormalizedPool, indicators: ind.TechnicalIndicators
    ) -> None:
        prices = ts.value_index(pool.returns)

        writer.add("technical.rsi_14", indicators.rsi_14)
        writer.add("technical.macd", indicators.macd)
        writer.add("technical.macd_signal", indicators.macd_signal)
        writer.add("technical.bollinger_upper", indicators.bollinger_upper)
        writer.add("technical.bollinger_middle", indicators.bollinger_middle)
        writer.add("technical.bollinger_lower", indicators.bollinger_lower)
        writer.add("technical.atr", indicators.atr)
        writer.add("technical.momentum", ind.calculate_momentum(prices))
        writer.add("technical.trend_strength", ind.calculate_trend_strength(pool.returns))

        price_array = _floats(prices)
        levels = range(SUPPORT_RESISTANCE_LEVELS)
        writer.extend("technical.support", levels, kernels.local_extrema(price_array, SUPPORT_RESISTANCE_LEVELS, False))
        writer.extend("technical.resistance", levels, kernels.local_extrema(price_array, SUPPORT_RESISTANCE_LEVELS, True))

        trend = ind.classify_trend(prices)
        writer.extend("technical.trend", TREND_REGIMES, _one_hot(TREND_REGIMES, trend.value))

    def _risk_section(self, writer: _FeatureWriter, pool: NormalizedPool) -> None:
        obs = pool.observation
        security = obs.security
        events = security.exploit_history

        unresolved = sum(1 for event in events if event.resolution is None)
        with fixed_point():
            composite = (
                Decimal(security.contract_risk + security.centralization_risk + (100 - security.audit_score))
                / Decimal(300)
                + UNRESOLVED_EVENT_PENALTY * unresolved
            )

        writer.add("risk.il_risk", Decimal(obs.risk.score) / HUNDRED)
        writer.add("risk.volatility_rank", Decimal(obs.volatility.volatility_rank) / HUNDRED)
        writer.add("risk.contract_risk", Decimal(security.contract_risk) / HUNDRED)
        writer.add("risk.concentration", obs.users.user_concentration)
        writer.add("risk.smart_contract", clamp(composite, ZERO, ONE))

        lookback = self._config.security_lookback_days * 86400
        seen = set()
        for event in events:
            age = obs.observed_at - event.timestamp
            if 0 <= age <= lookback:
                seen.add(event.severity.strip().lower())
        writer.extend("risk.events", SEVERITY_CLASSES, (1.0 if severity in seen else 0.0 for severity in SEVERITY_CLASSES))

    def _temporal_section(self, writer: _FeatureWriter, pool: NormalizedPool) -> None:
        obs = pool.observation
        tvl = dict(pool.tvl_series)
        volume = dict(pool.volume_series)
        returns = dict(pool.return_series)
        il = dict(pool.il_series)

        timestamps = sorted(set(tvl) | set(volume) | set(returns) | set(il))[-TIME_SERIES_POINTS:]
        cube = np.zeros((TIME_SERIES_POINTS, len(TIME_SERIES_FIELDS)), dtype=np.float64)
        # Left-pad so the newest point is always the last row
        offset = TIME_SERIES_POINTS - len(timestamps)
        for row, timestamp in enumerate(timestamps, start=offset):
            cube[row] = (
                to_float(Decimal(obs.observed_at - timestamp) / SECONDS_PER_DAY),
                to_float(tvl.get(timestamp, ZERO)),
                to_float(volume.get(timestamp, ZERO)),
                to_float(returns.get(timestamp, ZERO)),
                to_float(il.get(timestamp, ZERO)),
            )
        for point in range(TIME_SERIES_POINTS):
            writer.extend(f"temporal.series.{point}", TIME_SERIES_FIELDS, cube[point])

        volume_series = pool.volume_series
        profile = kernels.seasonality_profile(
            np.array([timestamp for timestamp, _ in volume_series], dtype=np.int64),
            _floats([value for _, value in volume_series]),
        )
        writer.extend("temporal.seasonality.hour", range(24), profile[:24])
        writer.extend("temporal.seasonality.weekday", range(7), profile[24:])

        writer.add("temporal.tvl_slope", ts.relative_slope(pool.tvl_values))
        writer.add("temporal.volume_slope", ts.relative_slope(pool.volume_values))
        writer.add("temporal.apy_stability", Decimal(obs.apy.apy_stability_score) / HUNDRED)

    @staticmethod
    def _performance_section(writer: _FeatureWriter, metrics: AdvancedMetrics, performance: PerformanceStats) -> None:
        writer.add("performance.realized_apy", performance.realized_apy)
        writer.add("performance.sharpe", metrics.sharpe)
        writer.add("performance.sortino", metrics.sortino)
        writer.add("performance.max_drawdown", metrics.max_drawdown)
        writer.add("performance.recovery_factor", performance.recovery_factor)
        writer.add("performance.win_loss_ratio", performance.win_loss_ratio)
        writer.add("performance.profit_factor", performance.profit_factor)
        writer.add("performance.calmar", metrics.calmar)
        writer.add("performance.omega", metrics.omega)
        writer.add("performance.value_at_risk", metrics.value_at_risk)
        writer.add("performance.expected_shortfall", performance.expected_shortfall)
