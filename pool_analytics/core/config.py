"""
Centralized Configuration for the Pool Analytics Core

This module provides configuration management using pydantic-settings.
Every knob of the analysis pipeline is defined here with its default and can be
overridden from environment variables or a .env file.

Usage:
    from pool_analytics.core.config import get_settings, validate_settings

    settings = get_settings()
    validate_settings(settings)
    print(settings.risk_free_rate)

Environment Variables:
    All settings use the POOL_ANALYTICS_ prefix, e.g.
    POOL_ANALYTICS_RISK_FREE_RATE=0.03
    POOL_ANALYTICS_DETECTOR_WINDOW_SIZES='{"tvl": 48, "apy": 168, "gas": 100}'
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pool_analytics.core.errors import ConfigurationError


class Settings(BaseSettings):
    """
    Pool analytics settings.

    All settings are loaded from environment variables with the POOL_ANALYTICS_
    prefix or from a .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="POOL_ANALYTICS_",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Derived Statistics
    # ========================================================================

    risk_free_rate: Decimal = Field(
        default=Decimal("0.02"),
        ge=0,
        le=1,
        description="Annualized risk-free rate (2%), converted to per-period",
    )

    market_return: Decimal = Field(
        default=Decimal("0.08"),
        ge=-1,
        le=10,
        description="Annualized market return (8%) used by alpha and the synthetic benchmark",
    )

    periods_per_year: int = Field(
        default=365,
        ge=1,
        description="Observation periods per year (daily history)",
    )

    var_confidence: Decimal = Field(
        default=Decimal("0.95"),
        gt=0,
        lt=1,
        description="Confidence level for Value at Risk and expected shortfall",
    )

    market_returns: list[tuple[int, Decimal]] = Field(
        default_factory=list,
        description="Optional benchmark return series; empty means synthetic benchmark",
    )

    # ========================================================================
    # Ingest Settings
    # ========================================================================

    max_history_length: int = Field(
        default=365,
        ge=1,
        description="Maximum number of points kept per history after normalization",
    )

    # ========================================================================
    # Technical Indicator Settings
    # ========================================================================

    volatility_regime_cutoffs: tuple[Decimal, Decimal, Decimal] = Field(
        default=(Decimal("0.01"), Decimal("0.03"), Decimal("0.06")),
        description="Daily volatility cutoffs for low / medium / high regimes",
    )

    # ========================================================================
    # Feature Synthesizer Settings
    # ========================================================================

    vocabulary_version: int = Field(
        default=1,
        ge=1,
        description="Version of the categorical vocabulary used for one-hot encoding",
    )

    strict_vocabulary: bool = Field(
        default=True,
        description="Refuse to start when any vocabulary category is empty",
    )

    default_platform_tvl: Decimal = Field(
        default=Decimal("1000000000"),
        gt=0,
        description="Platform TVL used for protocol dominance when no override exists",
    )

    platform_tvl: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Per-platform TVL overrides for protocol dominance",
    )

    market_efficiency_coefficient: Decimal = Field(
        default=Decimal("1.0"),
        ge=0,
        description="Multiplier applied to volume/TVL for capital efficiency",
    )

    security_lookback_days: int = Field(
        default=365,
        ge=1,
        description="Lookback for security events in the risk history vector",
    )

    # ========================================================================
    # Optimizer Settings
    # ========================================================================

    momentum_threshold: Decimal = Field(
        default=Decimal("0.05"),
        gt=0,
        description="Daily return above which momentum entry/exit signals fire (5%)",
    )

    price_stability_floor: int = Field(
        default=70,
        ge=0,
        le=100,
        description="Price stability score above which value entries are considered",
    )

    rebalance_drift_threshold: Decimal = Field(
        default=Decimal("0.10"),
        gt=0,
        le=1,
        description="Portfolio drift that triggers a rebalance signal (10%)",
    )

    max_strategies: int = Field(
        default=10,
        ge=1,
        description="Maximum number of ranked strategies receiving an allocation",
    )

    min_strategy_weight_bps: int = Field(
        default=1000,
        ge=0,
        le=10_000,
        description="Default minimum weight per strategy (10%)",
    )

    max_strategy_weight_bps: int = Field(
        default=4000,
        ge=0,
        le=10_000,
        description="Default maximum weight per strategy (40%)",
    )

    allocation_step_bps: int = Field(
        default=500,
        ge=1,
        le=10_000,
        description="Granularity of the base weight handed to each strategy",
    )

    # ========================================================================
    # Alert & Anomaly Settings
    # ========================================================================

    detector_window_sizes: dict[str, int] = Field(
        default_factory=lambda: {"tvl": 24, "apy": 168, "gas": 100},
        description="Rolling window size per monitored metric",
    )

    detector_thresholds: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "tvl": Decimal("3.0"),
            "apy": Decimal("2.5"),
            "gas": Decimal("4.0"),
        },
        description="Z-score threshold per monitored metric",
    )

    warning_volatility_bps: int = Field(
        default=500,
        ge=0,
        description="Average change (bps) above which an alert is a warning",
    )

    critical_change_bps: int = Field(
        default=1000,
        ge=0,
        description="Single-sample change (bps) at which an alert is critical",
    )

    emergency_change_bps: int = Field(
        default=2000,
        ge=0,
        description="Single-sample change (bps) at which an alert is an emergency",
    )

    volatility_window: int = Field(
        default=12,
        ge=1,
        description="Number of recent changes averaged into the volatility score",
    )

    alert_history_size: int = Field(
        default=24,
        ge=1,
        description="Alerts retained per pool and metric",
    )

    # ========================================================================
    # Orchestrator Settings
    # ========================================================================

    statistics_timeout_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Wall-clock limit for advanced metrics and technical indicators",
    )

    features_timeout_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Wall-clock limit for the feature synthesizer",
    )

    optimizer_timeout_seconds: float = Field(
        default=0.5,
        gt=0,
        description="Wall-clock limit for sizing, signals and allocation",
    )

    max_workers: int | None = Field(
        default=None,
        ge=1,
        description="Worker threads for batch analysis (default: CPU count)",
    )

    # ========================================================================
    # Logging Settings
    # ========================================================================

    log_level: str = Field(
        default="INFO",
        description="Minimum log level",
    )

    json_logs: bool = Field(
        default=False,
        description="Emit structured JSON logs to the log file",
    )


def validate_settings(settings: Settings) -> None:
    """
    Refuse fatal misconfiguration at startup.

    Checks that threshold ladders are monotone, detector windows can produce a
    standard deviation and every monitored metric has both a window and a
    threshold.

    Raises:
        ConfigurationError: Describing every problem found.
    """
    problems: list[str] = []

    cutoffs = settings.volatility_regime_cutoffs
    if not all(cutoffs[i] < cutoffs[i + 1] for i in range(len(cutoffs) - 1)):
        problems.append(f"volatility_regime_cutoffs must be strictly increasing, got {cutoffs}")
    if cutoffs[0] <= 0:
        problems.append("volatility_regime_cutoffs must be positive")

    if not settings.critical_change_bps < settings.emergency_change_bps:
        problems.append(
            f"critical_change_bps ({settings.critical_change_bps}) must be below "
            f"emergency_change_bps ({settings.emergency_change_bps})"
        )

    if settings.min_strategy_weight_bps > settings.max_strategy_weight_bps:
        problems.append("min_strategy_weight_bps exceeds max_strategy_weight_bps")

    windows = settings.detector_window_sizes
    thresholds = settings.detector_thresholds
    if set(windows) != set(thresholds):
        problems.append(
            f"detector_window_sizes and detector_thresholds cover different metrics: "
            f"{sorted(windows)} vs {sorted(thresholds)}"
        )
    for metric, size in windows.items():
        if size < 2:
            problems.append(f"detector window for {metric} must be at least 2, got {size}")
    for metric, threshold in thresholds.items():
        if threshold <= 0:
            problems.append(f"detector threshold for {metric} must be positive, got {threshold}")

    if problems:
        raise ConfigurationError("Invalid configuration: " + "; ".join(problems))


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance with configuration loaded from environment
    """
    return Settings()
