"""
Error Hierarchy for the Pool Analytics Core

Every failure raised by an analysis phase derives from PoolAnalyticsError and
carries an ErrorKind tag. The orchestrator uses the tag (never the message text)
to decide how a failure is surfaced in the result bundle.

Recovery policy:
- INVALID_OBSERVATION: observation dropped, risk-warning signal emitted
- NUMERIC_OVERFLOW: phase result replaced by its neutral element
- INSUFFICIENT_HISTORY: statistic reported as 0 with a flag
- PHASE_TIMEOUT: remaining phases skipped, partial bundle returned
- DETECTOR_POISONED: detector rolled back, detection paused for the pool
- ANALYSIS_CANCELLED: partial results discarded
- CONFIGURATION: refused at startup
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Tag attached to every core exception."""

    INVALID_OBSERVATION = "invalid_observation"
    NUMERIC_OVERFLOW = "numeric_overflow"
    INSUFFICIENT_HISTORY = "insufficient_history"
    PHASE_TIMEOUT = "phase_timeout"
    DETECTOR_POISONED = "detector_poisoned"
    ANALYSIS_CANCELLED = "analysis_cancelled"
    CONFIGURATION = "configuration"


class PoolAnalyticsError(Exception):
    """Base exception for the analytics core."""

    kind: ErrorKind = ErrorKind.CONFIGURATION


class InvalidObservation(PoolAnalyticsError):
    """Raised when an observation fails structural or semantic validation."""

    kind = ErrorKind.INVALID_OBSERVATION

    def __init__(self, pool_id: str, issues: list[str]):
        self.pool_id = pool_id
        self.issues = list(issues)
        super().__init__(f"Invalid observation for {pool_id or '<unknown>'}: {'; '.join(issues)}")


class NumericOverflow(PoolAnalyticsError, ArithmeticError):
    """Raised when a fixed-point operation leaves the representable exponent range."""

    kind = ErrorKind.NUMERIC_OVERFLOW


class InsufficientHistory(PoolAnalyticsError):
    """Raised when a statistic needs more points than the series provides."""

    kind = ErrorKind.INSUFFICIENT_HISTORY

    def __init__(self, statistic: str, required: int, available: int):
        self.statistic = statistic
        self.required = required
        self.available = available
        super().__init__(f"{statistic} requires {required} points, got {available}")


class PhaseTimeout(PoolAnalyticsError):
    """Raised when an analysis phase exceeds its wall-clock limit."""

    kind = ErrorKind.PHASE_TIMEOUT

    def __init__(self, phase: str, elapsed: float, limit: float):
        self.phase = phase
        self.elapsed = elapsed
        self.limit = limit
        super().__init__(f"Phase {phase} took {elapsed:.3f}s (limit {limit:.3f}s)")


class DetectorPoisoned(PoolAnalyticsError):
    """Raised when a detector update fails and its state had to be rolled back."""

    kind = ErrorKind.DETECTOR_POISONED

    def __init__(self, pool_id: str, metric: str, cause: str = ""):
        self.pool_id = pool_id
        self.metric = metric
        message = f"Detector {pool_id}/{metric} poisoned"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)


class AnalysisCancelled(PoolAnalyticsError):
    """Raised at an orchestrator checkpoint once cancellation was requested."""

    kind = ErrorKind.ANALYSIS_CANCELLED

    def __init__(self, pool_id: str, phase: str = ""):
        self.pool_id = pool_id
        self.phase = phase
        suffix = f" before {phase}" if phase else ""
        super().__init__(f"Analysis of {pool_id} cancelled{suffix}")


class ConfigurationError(PoolAnalyticsError):
    """Raised at startup for fatal misconfiguration."""

    kind = ErrorKind.CONFIGURATION
