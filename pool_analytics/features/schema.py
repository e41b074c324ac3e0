"""
Feature Vector Schema

Declares the ordered feature names for a vocabulary. The schema id combines the
layout version with the vocabulary version, so downstream models can detect any
change in cardinality or ordering.

Sections (in order): pool, market, technical, risk, temporal, performance,
flags.
"""

from dataclasses import dataclass

from pool_analytics.features.vocabulary import Vocabulary

FEATURE_SCHEMA_VERSION = 1

MAX_TOKENS = 8
TIME_SERIES_POINTS = 30
TIME_SERIES_FIELDS = ("age_days", "tvl", "volume", "apy", "il")
SUPPORT_RESISTANCE_LEVELS = 3
SEVERITY_CLASSES = ("low", "medium", "high", "critical")
VOLATILITY_REGIMES = ("low", "medium", "high", "extreme")
TREND_REGIMES = ("downtrend", "sideways", "uptrend")
INSUFFICIENT_FLAGS = ("returns", "var", "rsi", "macd", "bollinger", "atr")

PERFORMANCE_TARGETS = (
    "realized_apy",
    "sharpe",
    "sortino",
    "max_drawdown",
    "recovery_factor",
    "win_loss_ratio",
    "profit_factor",
    "calmar",
    "omega",
    "value_at_risk",
    "expected_shortfall",
)


def _one_hot_names(prefix: str, values: tuple[str, ...]) -> list[str]:
    return [f"{prefix}.{value}" for value in values] + [f"{prefix}.unknown"]


def _indexed(prefix: str, count: int) -> list[str]:
    return [f"{prefix}.{i}" for i in range(count)]


def build_feature_names(vocabulary: Vocabulary) -> tuple[str, ...]:
    names: list[str] = []

    # Pool
    names += [
        "pool.tvl_normalized",
        "pool.volume_tvl_ratio",
        "pool.liquidity_depth",
        "pool.price_correlation",
        "pool.age_days",
    ]
    names += _one_hot_names("pool.kind", vocabulary.pool_kinds)
    names += _one_hot_names("pool.platform", vocabulary.platforms)
    names += _one_hot_names("pool.chain", vocabulary.chains)
    names += _indexed("pool.token_weight", MAX_TOKENS)
    names += ["pool.composition_score", "pool.protocol_dominance", "pool.capital_efficiency"]

    # Market
    names += [
        "market.volatility_1d",
        "market.volatility_7d",
        "market.volatility_30d",
        "market.volume_trend",
        "market.tvl_trend",
        "market.correlation",
    ]
    names += _indexed("market.token_dominance", MAX_TOKENS)
    names += [f"market.regime.{regime}" for regime in VOLATILITY_REGIMES]
    names += [
        "market.liquidity_score",
        "market.impact",
        "market.bid_ask_spread",
        "market.depth_2pct",
        "market.depth_5pct",
        "market.depth_10pct",
        "market.slippage_impact",
        "market.order_book_imbalance",
    ]

    # Technical
    names += [
        "technical.rsi_14",
        "technical.macd",
        "technical.macd_signal",
        "technical.bollinger_upper",
        "technical.bollinger_middle",
        "technical.bollinger_lower",
        "technical.atr",
        "technical.momentum",
        "technical.trend_strength",
    ]
    names += _indexed("technical.support", SUPPORT_RESISTANCE_LEVELS)
    names += _indexed("technical.resistance", SUPPORT_RESISTANCE_LEVELS)
    names += [f"technical.trend.{regime}" for regime in TREND_REGIMES]

    # Risk
    names += [
        "risk.il_risk",
        "risk.volatility_rank",
        "risk.contract_risk",
        "risk.concentration",
        "risk.smart_contract",
    ]
    names += [f"risk.events.{severity}" for severity in SEVERITY_CLASSES]

    # Temporal
    for point in range(TIME_SERIES_POINTS):
        names += [f"temporal.series.{point}.{field}" for field in TIME_SERIES_FIELDS]
    names += _indexed("temporal.seasonality.hour", 24)
    names += _indexed("temporal.seasonality.weekday", 7)
    names += ["temporal.tvl_slope", "temporal.volume_slope", "temporal.apy_stability"]

    # Performance targets
    names += [f"performance.{target}" for target in PERFORMANCE_TARGETS]

    # Insufficient-history flags
    names += [f"flags.insufficient.{flag}" for flag in INSUFFICIENT_FLAGS]

    return tuple(names)


@dataclass(frozen=True)
class FeatureSchema:
    """Ordered feature layout for one vocabulary version."""

    version: int
    vocabulary_version: int
    names: tuple[str, ...]

    @classmethod
    def for_vocabulary(cls, vocabulary: Vocabulary) -> "FeatureSchema":
        return cls(
            version=FEATURE_SCHEMA_VERSION,
            vocabulary_version=vocabulary.version,
            names=build_feature_names(vocabulary),
        )

    @property
    def cardinality(self) -> int:
        return len(self.names)

    @property
    def schema_id(self) -> str:
        return f"pool-features.v{self.version}/vocab.v{self.vocabulary_version}"
