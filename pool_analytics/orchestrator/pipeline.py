"""
Pool Analysis Pipeline

Drives one observation through every phase and assembles the result bundle:

    ingest -> statistics (metrics + indicators) -> features -> optimizer -> alerts

Behavior:
- Invalid observations (structural, semantic, duplicate or out-of-order tick)
  are dropped: the bundle carries a risk-warning signal and the
  invalid_observation flag, and observations_rejected is incremented
- A cancellation checkpoint runs before every phase and after every detector
  update; a cancelled analysis raises AnalysisCancelled and leaves detector
  state untouched
- Phase durations are measured with a monotonic clock and checked at phase end;
  exceeding a limit adds a risk-warning signal and skips the remaining phases
- NumericOverflow inside a phase replaces that phase's output with its neutral
  element and adds a numeric_overflow flag
- Batch analysis runs pools in parallel on a thread pool; observations of the
  same pool are analyzed one after another in observed_at order

Usage:
    pipeline = PoolAnalysisPipeline(get_settings())
    result = pipeline.analyze(payload, strategies=vault_strategies)
    print(result.to_json())
"""

import logging
import os
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pool_analytics.analytics.advanced_metrics import (
    AdvancedMetrics,
    MetricsConfig,
    PerformanceStats,
    calculate_advanced_metrics,
    calculate_performance_stats,
)
from pool_analytics.computation.indicators import TechnicalIndicators, calculate_technical_indicators
from pool_analytics.core.config import Settings, get_settings, validate_settings
from pool_analytics.core.errors import AnalysisCancelled, InvalidObservation, NumericOverflow, PhaseTimeout
from pool_analytics.core.numerics import fixed_point
from pool_analytics.core.telemetry import NoOpTelemetry, TelemetrySink
from pool_analytics.data.ingest import NormalizedPool, TickLedger, ingest, parse_observation
from pool_analytics.data.models import Observation
from pool_analytics.features.schema import FEATURE_SCHEMA_VERSION
from pool_analytics.features.synthesizer import FeatureConfig, FeatureSynthesizer, FeatureVector
from pool_analytics.features.vocabulary import VocabularyRegistry, builtin_vocabulary
from pool_analytics.monitoring.alert_engine import AlertEngine, AlertEvent, AlertSeverity
from pool_analytics.optimizer.allocator import AllocationPlan, StrategyAllocator, StrategySpec
from pool_analytics.optimizer.position_sizer import PositionSize, PositionSizer
from pool_analytics.optimizer.signal_generator import Signal, SignalConfig, SignalGenerator, risk_warning
from pool_analytics.orchestrator.result import (
    AdvancedMetricsModel,
    AlertModel,
    AllocationPlanModel,
    AnalysisResult,
    FeatureVectorModel,
    PositionSizeModel,
    SignalModel,
    TechnicalIndicatorsModel,
)

logger = logging.getLogger(__name__)

PHASES = ("statistics", "features", "optimizer", "alerts")


class CancellationToken:
    """Cooperative cancellation flag checked at every pipeline checkpoint."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, pool_id: str, phase: str = "") -> None:
        if self._event.is_set():
            raise AnalysisCancelled(pool_id, phase)


@dataclass
class _PartialResult:
    """Mutable accumulator for one analysis."""

    pool: NormalizedPool
    metrics: AdvancedMetrics | None = None
    performance: PerformanceStats | None = None
    indicators: TechnicalIndicators | None = None
    features: FeatureVector | None = None
    position: PositionSize | None = None
    plan: AllocationPlan | None = None
    signals: list[Signal] = field(default_factory=list)
    alerts: list[AlertEvent] = field(default_factory=list)
    health: AlertSeverity = AlertSeverity.NORMAL
    flags: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)

    def flag(self, name: str) -> None:
        if name not in self.flags:
            self.flags.append(name)


def _observation_id_of(payload: Any) -> str:
    if isinstance(payload, Observation):
        return payload.observation_id
    if isinstance(payload, Mapping):
        return str(payload.get("observation_id", ""))
    return ""


def _observed_at_of(payload: Any) -> int | None:
    if isinstance(payload, Observation):
        return payload.observed_at
    if isinstance(payload, Mapping):
        value = payload.get("observed_at")
        return value if isinstance(value, int) else None
    return None


class PoolAnalysisPipeline:
    """
    Orchestrates the analysis of pool observations.

    The pipeline owns no mutable state besides the alert engine's detectors
    and the per-pool tick ledger; all phase computations are pure.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        alert_engine: AlertEngine | None = None,
        registry: VocabularyRegistry | None = None,
        telemetry: TelemetrySink | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Args:
            settings: Configuration (cached environment settings when omitted)
            alert_engine: Detector registry (built from settings when omitted)
            registry: Vocabulary registry (built from settings when omitted)
            telemetry: Metrics sink (no-op when omitted)
            clock: Monotonic clock in seconds used for phase timing

        Raises:
            ConfigurationError: On fatal misconfiguration.
        """
        self.settings = settings or get_settings()
        validate_settings(self.settings)

        self.telemetry = telemetry or NoOpTelemetry()
        self.registry = registry or VocabularyRegistry(
            builtin_vocabulary(self.settings.vocabulary_version),
            strict=self.settings.strict_vocabulary,
        )
        self.alert_engine = alert_engine or AlertEngine.from_settings(self.settings, telemetry=self.telemetry)
        self._clock = clock

        self.metrics_config = MetricsConfig.from_settings(self.settings)
        self.synthesizer = FeatureSynthesizer(self.registry, FeatureConfig.from_settings(self.settings))
        self.sizer = PositionSizer()
        self.signal_generator = SignalGenerator(SignalConfig.from_settings(self.settings))
        self.allocator = StrategyAllocator.from_settings(self.settings)

        self._ledger = TickLedger()
        self._tokens_lock = threading.Lock()
        self._tokens: dict[str, CancellationToken] = {}

        self._limits = {
            "statistics": self.settings.statistics_timeout_seconds,
            "features": self.settings.features_timeout_seconds,
            "optimizer": self.settings.optimizer_timeout_seconds,
        }

        logger.info(
            "Pool analysis pipeline ready",
            extra={
                "vocabulary_version": self.registry.current().version,
                "monitored_metrics": list(self.alert_engine.monitored_metrics),
            },
        )

    # ========================================================================
    # Cancellation
    # ========================================================================

    def cancel(self, pool_id: str) -> bool:
        """
        Cancel the in-flight analysis of a pool.

        Returns:
            True if an analysis was running and has been signalled
        """
        with self._tokens_lock:
            token = self._tokens.get(pool_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested", extra={"pool_id": pool_id})
        return True

    def _register_token(self, pool_id: str, token: CancellationToken | None) -> CancellationToken:
        token = token or CancellationToken()
        with self._tokens_lock:
            self._tokens[pool_id] = token
        return token

    def _release_token(self, pool_id: str, token: CancellationToken) -> None:
        with self._tokens_lock:
            if self._tokens.get(pool_id) is token:
                del self._tokens[pool_id]

    # ========================================================================
    # Analysis
    # ========================================================================

    def analyze(
        self,
        payload: Observation | Mapping[str, Any] | str | bytes,
        strategies: Sequence[StrategySpec] | None = None,
        current_allocation: Mapping[str, int] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> AnalysisResult:
        """
        Analyze one observation end to end.

        Args:
            payload: Observation, mapping or JSON document
            strategies: Vault strategies to allocate across (optional)
            current_allocation: Vault's current weights in bps, compared against
                the new plan for allocation-drift rebalancing (optional)
            cancel_token: Token checked at every checkpoint (optional)

        Returns:
            AnalysisResult (a rejection bundle for invalid observations)

        Raises:
            AnalysisCancelled: If the analysis was cancelled; partial results
                are discarded.
        """
        self.telemetry.increment("observations_total")
        try:
            pool = ingest(payload, self.settings.max_history_length)
            self._ledger.admit(pool.pool_id, pool.observed_at)
        except InvalidObservation as exc:
            return self._rejected(payload, exc)

        token = self._register_token(pool.pool_id, cancel_token)
        try:
            partial = self._run_phases(pool, strategies, current_allocation, token)
        finally:
            self._release_token(pool.pool_id, token)
        return self._assemble(partial)

    def _run_phases(
        self,
        pool: NormalizedPool,
        strategies: Sequence[StrategySpec] | None,
        current_allocation: Mapping[str, int] | None,
        token: CancellationToken,
    ) -> _PartialResult:
        partial = _PartialResult(pool=pool)
        runners = {
            "statistics": lambda: self._statistics_phase(partial),
            "features": lambda: self._features_phase(partial),
            "optimizer": lambda: self._optimizer_phase(partial, strategies, current_allocation),
            "alerts": lambda: self._alerts_phase(partial, token),
        }

        try:
            for phase in PHASES:
                token.raise_if_cancelled(pool.pool_id, phase)
                started = self._clock()
                runners[phase]()
                elapsed = self._clock() - started
                partial.completed.append(phase)
                self.telemetry.observe("phase_duration", elapsed, phase=phase)

                limit = self._limits.get(phase)
                if limit is not None and elapsed > limit:
                    raise PhaseTimeout(phase, elapsed, limit)
        except PhaseTimeout as exc:
            logger.warning(
                str(exc),
                extra={"pool_id": pool.pool_id, "phase": exc.phase, "elapsed": exc.elapsed, "limit": exc.limit},
            )
            partial.signals.append(
                risk_warning(pool.observed_at, str(exc), ("phase-timeout", exc.phase))
            )
            partial.flag(f"phase_timeout:{exc.phase}")
        except AnalysisCancelled:
            logger.info("Analysis cancelled", extra={"pool_id": pool.pool_id})
            raise

        return partial

    # ------------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------------

    def _statistics_phase(self, partial: _PartialResult) -> None:
        pool = partial.pool
        try:
            metrics = calculate_advanced_metrics(pool, self.metrics_config)
            performance = calculate_performance_stats(pool, metrics, self.metrics_config)
        except NumericOverflow as exc:
            self._overflowed(partial, "advanced_metrics", exc)
            metrics, performance = AdvancedMetrics.neutral(), PerformanceStats()

        try:
            indicators = calculate_technical_indicators(pool, self.settings.volatility_regime_cutoffs)
        except NumericOverflow as exc:
            self._overflowed(partial, "technical_indicators", exc)
            indicators = TechnicalIndicators.neutral()

        for name in sorted(metrics.insufficient | indicators.insufficient):
            partial.flag(f"insufficient_history:{name}")

        partial.metrics = metrics
        partial.performance = performance
        partial.indicators = indicators

    def _features_phase(self, partial: _PartialResult) -> None:
        started = self._clock()
        try:
            partial.features = self.synthesizer.build(
                partial.pool, partial.metrics, partial.indicators, partial.performance
            )
        except NumericOverflow as exc:
            self._overflowed(partial, "feature_vector", exc)
            partial.features = FeatureVector.neutral(self.synthesizer.schema())
        self.telemetry.observe("feature_vector_build_duration", self._clock() - started)

    def _optimizer_phase(
        self,
        partial: _PartialResult,
        strategies: Sequence[StrategySpec] | None,
        current_allocation: Mapping[str, int] | None,
    ) -> None:
        pool = partial.pool
        obs = pool.observation
        try:
            partial.position = self.sizer.calculate_position_size(
                obs.tvl, obs.risk.score, obs.volatility.daily_volatility
            )
            plan = self.allocator.allocate(strategies) if strategies else None
            partial.signals.extend(self.signal_generator.generate(pool, current_allocation, plan))
            partial.plan = plan
        except NumericOverflow as exc:
            self._overflowed(partial, "optimizer", exc)
            partial.position = PositionSize.neutral()

    def _alerts_phase(self, partial: _PartialResult, token: CancellationToken) -> None:
        pool = partial.pool
        outcome = self.alert_engine.update_metrics(
            pool.pool_id,
            self.metric_samples(pool),
            pool.observed_at,
            checkpoint=lambda: token.raise_if_cancelled(pool.pool_id, "alerts"),
        )
        partial.alerts.extend(outcome.events)
        for metric in outcome.poisoned:
            partial.flag(f"detector_poisoned:{metric}")
        partial.health = self.alert_engine.get_pool_health(pool.pool_id)

    def metric_samples(self, pool: NormalizedPool) -> dict[str, Decimal]:
        """Scalar metrics of a pool fed into the alert engine."""
        obs = pool.observation
        samples: dict[str, Decimal] = {"tvl": obs.tvl, "apy": obs.apy.total_apy}
        if obs.gas:
            with fixed_point():
                samples["gas"] = sum((gas.cost_usd for gas in obs.gas.values()), Decimal(0)) / len(obs.gas)
        monitored = set(self.alert_engine.monitored_metrics)
        return {metric: value for metric, value in samples.items() if metric in monitored}

    def _overflowed(self, partial: _PartialResult, section: str, exc: NumericOverflow) -> None:
        logger.warning(
            "Numeric overflow, using neutral result",
            extra={"pool_id": partial.pool.pool_id, "section": section, "error": str(exc)},
        )
        partial.flag(f"numeric_overflow:{section}")

    # ------------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------------

    def _assemble(self, partial: _PartialResult) -> AnalysisResult:
        pool = partial.pool
        return AnalysisResult(
            observation_id=pool.observation.observation_id,
            pool_id=pool.pool_id,
            observed_at=pool.observed_at,
            schema_version=FEATURE_SCHEMA_VERSION,
            advanced_metrics=(
                AdvancedMetricsModel.from_metrics(partial.metrics) if partial.metrics is not None else None
            ),
            technical_indicators=(
                TechnicalIndicatorsModel.from_indicators(partial.indicators)
                if partial.indicators is not None
                else None
            ),
            feature_vector=FeatureVectorModel.from_vector(partial.features) if partial.features is not None else None,
            position_size=PositionSizeModel.from_position(partial.position) if partial.position is not None else None,
            signals=[SignalModel.from_signal(signal) for signal in partial.signals],
            allocation_plan=AllocationPlanModel.from_plan(partial.plan) if partial.plan is not None else None,
            alerts=[AlertModel.from_event(event) for event in partial.alerts],
            pool_health=partial.health.name.lower(),
            flags=list(partial.flags),
            missing_phases=[phase for phase in PHASES if phase not in partial.completed],
        )

    def _rejected(self, payload: Any, exc: InvalidObservation) -> AnalysisResult:
        self.telemetry.increment("observations_rejected")
        logger.warning(
            "Observation rejected",
            extra={"pool_id": exc.pool_id, "issues": exc.issues},
        )
        observed_at = _observed_at_of(payload)
        warning = risk_warning(
            observed_at if observed_at is not None else int(time.time()),
            str(exc),
            ("invalid-observation",),
        )
        return AnalysisResult(
            observation_id=_observation_id_of(payload),
            pool_id=exc.pool_id,
            observed_at=observed_at,
            schema_version=FEATURE_SCHEMA_VERSION,
            signals=[SignalModel.from_signal(warning)],
            flags=["invalid_observation"],
            missing_phases=list(PHASES),
        )

    # ========================================================================
    # Batch
    # ========================================================================

    def analyze_batch(
        self,
        payloads: Sequence[Observation | Mapping[str, Any] | str | bytes],
        strategies: Sequence[StrategySpec] | None = None,
        max_workers: int | None = None,
    ) -> list[AnalysisResult | None]:
        """
        Analyze many observations in parallel.

        Pools are distributed over a thread pool; the observations of one pool
        run sequentially in observed_at order on a single worker.

        Args:
            payloads: Observations of any number of pools
            strategies: Vault strategies passed to every analysis
            max_workers: Worker threads (settings.max_workers, then CPU count)

        Returns:
            Results aligned with payloads; None where the analysis was cancelled
        """
        groups: dict[str, list[tuple[int, int, Any]]] = {}
        for index, payload in enumerate(payloads):
            try:
                observation = parse_observation(payload)
                key, order, item = observation.pool_id, observation.observed_at, observation
            except InvalidObservation:
                # Unparseable payloads are rejected on their own worker slot
                key, order, item = f"<unparsed:{index}>", 0, payload
            groups.setdefault(key, []).append((order, index, item))

        results: list[AnalysisResult | None] = [None] * len(payloads)

        def run_pool(items: list[tuple[int, int, Any]]) -> None:
            for _, index, item in sorted(items, key=lambda entry: (entry[0], entry[1])):
                try:
                    results[index] = self.analyze(item, strategies=strategies)
                except AnalysisCancelled:
                    results[index] = None

        workers = max_workers or self.settings.max_workers or os.cpu_count() or 1
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(run_pool, items) for items in groups.values()]
            for future in futures:
                future.result()

        logger.info(
            "Batch analyzed",
            extra={"observations": len(payloads), "pools": len(groups), "workers": workers},
        )
        return results
