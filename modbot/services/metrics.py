"""
MetricsRegistry - In-process counters, histograms and cache stats.

The snapshot shape maps directly onto Prometheus-style exporters, but no
exporter is bundled; collaborators read ``get_snapshot()``.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from loguru import logger

Labels = dict[str, str | int | float | None]
CacheStatsProvider = Callable[[], Any]


def _serialize_labels(labels: Labels) -> str:
    return "|".join(f"{key}={labels[key]}" for key in sorted(labels))


@dataclass
class CounterEntry:
    name: str
    labels: Labels
    value: float = 0


@dataclass
class HistogramEntry:
    name: str
    labels: Labels
    count: int = 0
    sum: float = 0.0
    min: float = float("inf")
    max: float = float("-inf")

    def observe(self, value: float) -> None:
        self.count += 1
        self.sum += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)


@dataclass
class MetricsSnapshot:
    timestamp: str
    counters: list[CounterEntry] = field(default_factory=list)
    histograms: list[HistogramEntry] = field(default_factory=list)
    caches: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RequestMetric:
    """One completed API call."""

    method: str
    endpoint: str
    status: int
    duration_ms: float


class MetricsRegistry:
    """
    Lightweight metrics registry.

    Usage:
        metrics = MetricsRegistry()
        metrics.record_api_request(RequestMetric("GET", "/ping", 200, 12.5))
        metrics.register_cache_provider("case_by_id", cache.get_stats)
    """

    def __init__(self) -> None:
        self._counters: dict[str, CounterEntry] = {}
        self._histograms: dict[str, HistogramEntry] = {}
        self._cache_providers: dict[str, CacheStatsProvider] = {}

    def increment_counter(
        self, name: str, labels: Labels | None = None, value: float = 1
    ) -> None:
        labels = labels or {}
        key = f"{name}|{_serialize_labels(labels)}"
        entry = self._counters.get(key)
        if entry is None:
            entry = self._counters[key] = CounterEntry(name=name, labels=labels)
        entry.value += value

    def observe_histogram(
        self, name: str, value: float, labels: Labels | None = None
    ) -> None:
        labels = labels or {}
        key = f"{name}|{_serialize_labels(labels)}"
        entry = self._histograms.get(key)
        if entry is None:
            entry = self._histograms[key] = HistogramEntry(name=name, labels=labels)
        entry.observe(value)

    def register_cache_provider(self, name: str, provider: CacheStatsProvider) -> None:
        self._cache_providers[name] = provider

    def record_api_request(self, metric: RequestMetric) -> None:
        """Record one API call. Never raises."""
        try:
            self.increment_counter(
                "api_requests_total",
                {
                    "method": metric.method,
                    "endpoint": metric.endpoint,
                    "status": metric.status,
                },
            )
            self.observe_histogram(
                "api_request_duration_ms",
                metric.duration_ms,
                {"method": metric.method, "endpoint": metric.endpoint},
            )
        except Exception as e:
            logger.warning(f"Failed to record API request metric: {e}")

    def get_counter(self, name: str, labels: Labels | None = None) -> float:
        key = f"{name}|{_serialize_labels(labels or {})}"
        entry = self._counters.get(key)
        return entry.value if entry else 0

    def get_snapshot(self) -> MetricsSnapshot:
        caches: dict[str, Any] = {}
        for name, provider in self._cache_providers.items():
            try:
                stats = provider()
                caches[name] = stats.to_dict() if hasattr(stats, "to_dict") else stats
            except Exception as e:
                logger.warning(f"Cache stats provider '{name}' failed: {e}")
                caches[name] = {"error": str(e)}

        return MetricsSnapshot(
            timestamp=datetime.now(timezone.utc).isoformat(),
            counters=list(self._counters.values()),
            histograms=list(self._histograms.values()),
            caches=caches,
        )
