"""
Telemetry Sinks

The core reports counters and histograms through a TelemetrySink. The default
sink discards everything; InMemoryTelemetry keeps thread-safe aggregates for
tests and batch reports; PrometheusTelemetry exports to a prometheus_client
registry for scraping.

Emitted names:
- observations_total, observations_rejected (counters)
- anomalies_total{severity} (counter)
- phase_duration{phase}, feature_vector_build_duration (histograms, seconds)
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, object]) -> LabelKey:
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


class TelemetrySink(ABC):
    """Abstract telemetry interface."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, **labels: object) -> None:
        """Add `value` to a counter."""
        pass

    @abstractmethod
    def observe(self, name: str, value: float, **labels: object) -> None:
        """Record one sample of a histogram."""
        pass


class NoOpTelemetry(TelemetrySink):
    """Sink that drops every measurement."""

    def increment(self, name: str, value: int = 1, **labels: object) -> None:
        return None

    def observe(self, name: str, value: float, **labels: object) -> None:
        return None


class InMemoryTelemetry(TelemetrySink):
    """
    Thread-safe in-memory sink.

    Counters are summed per (name, labels); histograms keep every sample.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, LabelKey], int] = defaultdict(int)
        self._histograms: dict[tuple[str, LabelKey], list[float]] = defaultdict(list)

    def increment(self, name: str, value: int = 1, **labels: object) -> None:
        with self._lock:
            self._counters[(name, _label_key(labels))] += value

    def observe(self, name: str, value: float, **labels: object) -> None:
        with self._lock:
            self._histograms[(name, _label_key(labels))].append(float(value))

    def counter(self, name: str, **labels: object) -> int:
        """Current value of a counter for the exact label set."""
        with self._lock:
            return self._counters.get((name, _label_key(labels)), 0)

    def counter_total(self, name: str) -> int:
        """Sum of a counter across all label sets."""
        with self._lock:
            return sum(value for (key, _), value in self._counters.items() if key == name)

    def samples(self, name: str, **labels: object) -> list[float]:
        with self._lock:
            return list(self._histograms.get((name, _label_key(labels)), []))

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


class PrometheusTelemetry(TelemetrySink):
    """
    Sink backed by prometheus_client collectors.

    Collectors are created on first use under `namespace`, and a metric keeps the
    label names of its first measurement. Pass prometheus_client.REGISTRY to
    expose the metrics on the process-wide registry.

    Example:
        >>> telemetry = PrometheusTelemetry()
        >>> pipeline = PoolAnalysisPipeline(settings, telemetry=telemetry)
        >>> telemetry.render()  # text exposition format
    """

    DURATION_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)

    def __init__(self, registry: CollectorRegistry | None = None, namespace: str = "pool_analytics"):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.namespace = namespace
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

    def _counter(self, name: str, labels: dict[str, object]) -> Counter:
        with self._lock:
            counter = self._counters.get(name)
            if counter is None:
                counter = Counter(
                    name,
                    f"Pool analytics {name.replace('_', ' ')}",
                    sorted(labels),
                    namespace=self.namespace,
                    registry=self.registry,
                )
                self._counters[name] = counter
        return counter.labels(**_label_values(labels)) if labels else counter

    def _histogram(self, name: str, labels: dict[str, object]) -> Histogram:
        with self._lock:
            histogram = self._histograms.get(name)
            if histogram is None:
                histogram = Histogram(
                    name,
                    f"Pool analytics {name.replace('_', ' ')} in seconds",
                    sorted(labels),
                    namespace=self.namespace,
                    registry=self.registry,
                    buckets=self.DURATION_BUCKETS,
                )
                self._histograms[name] = histogram
        return histogram.labels(**_label_values(labels)) if labels else histogram

    def increment(self, name: str, value: int = 1, **labels: object) -> None:
        self._counter(name, labels).inc(value)

    def observe(self, name: str, value: float, **labels: object) -> None:
        self._histogram(name, labels).observe(float(value))

    def render(self) -> bytes:
        """Registry contents in the Prometheus text exposition format."""
        return generate_latest(self.registry)


def _label_values(labels: dict[str, object]) -> dict[str, str]:
    return {key: str(value) for key, value in labels.items()}
