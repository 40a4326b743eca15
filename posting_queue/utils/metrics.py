"""
Prometheus Metrics Collector

Lightweight in-process metrics for the posting queue.
Generates Prometheus text exposition format (text/plain; version=0.0.4).
"""
import time
import threading
from typing import Dict, List, Optional
from dataclasses import dataclass, field


@dataclass
class MetricValue:
    """Single metric value with optional labels."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


class _LabeledMetric:
    """Shared label bookkeeping for all metric types."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[List[str]] = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: Dict[tuple, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _label_key(labels: Dict[str, str]) -> tuple:
        return tuple(sorted(labels.items()))

    def collect(self) -> List[MetricValue]:
        """Collect all metric values."""
        with self._lock:
            return [
                MetricValue(value=v, labels=dict(k))
                for k, v in self._values.items()
            ]


class Counter(_LabeledMetric):
    """
    Prometheus Counter metric.

    Cumulative, only goes up. Used for deliveries, enqueues, claim conflicts.
    """

    kind = "counter"

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        """Increment counter by amount."""
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount


class Gauge(_LabeledMetric):
    """
    Prometheus Gauge metric.

    Can go up and down. Used for queue depth per status.
    """

    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        """Set gauge to value."""
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = value

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def dec(self, amount: float = 1.0, **labels: str) -> None:
        self.inc(-amount, **labels)


class Histogram(_LabeledMetric):
    """
    Prometheus Histogram metric.

    Samples observations into cumulative buckets.
    """

    kind = "histogram"

    # Poster calls are network bound; buckets in seconds
    DEFAULT_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ):
        super().__init__(name, description, labels)
        self.buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        self._series: Dict[tuple, Dict] = {}

    def observe(self, value: float, **labels: str) -> None:
        """Record an observation."""
        key = self._label_key(labels)
        with self._lock:
            series = self._series.setdefault(
                key, {"buckets": {b: 0 for b in self.buckets}, "sum": 0.0, "count": 0}
            )
            series["sum"] += value
            series["count"] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    series["buckets"][bucket] += 1

    def collect(self) -> List[MetricValue]:
        """Collect bucket, sum and count values for every label set."""
        result = []
        with self._lock:
            for key, series in self._series.items():
                base_labels = dict(key)
                for bucket in self.buckets:
                    result.append(MetricValue(
                        value=series["buckets"][bucket],
                        labels={**base_labels, "le": str(bucket)}
                    ))
                result.append(MetricValue(value=series["count"], labels={**base_labels, "le": "+Inf"}))
                result.append(MetricValue(value=series["sum"], labels={**base_labels, "_metric": "sum"}))
                result.append(MetricValue(value=series["count"], labels={**base_labels, "_metric": "count"}))
        return result


class Timer:
    """Context manager for timing code blocks into a histogram."""

    def __init__(self, histogram: Histogram, **labels: str):
        self.histogram = histogram
        self.labels = labels
        self.start_time: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        if self.start_time is not None:
            self.histogram.observe(time.perf_counter() - self.start_time, **self.labels)


class MetricsRegistry:
    """
    Central registry for all application metrics.

    Provides singleton access and Prometheus text format export.
    """

    _instance: Optional["MetricsRegistry"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "MetricsRegistry":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._metrics: Dict[str, _LabeledMetric] = {}
        self._initialized = True
        self._setup_metrics()

    def _setup_metrics(self) -> None:
        """Initialize all application metrics."""

        # ============================================
        # REQUEST METRICS
        # ============================================
        self.requests_total = self.counter(
            "pq_requests_total",
            "Total HTTP requests by endpoint and status",
            ["endpoint", "status"]
        )

        # ============================================
        # QUEUE METRICS
        # ============================================
        self.queue_items = self.gauge(
            "pq_queue_items",
            "Posting queue rows by status",
            ["status"]
        )

        self.enqueued_total = self.counter(
            "pq_enqueued_total",
            "Total enqueue calls (new and idempotent repeats)"
        )

        self.deliveries_total = self.counter(
            "pq_deliveries_total",
            "Delivery attempts by outcome",
            ["outcome"]
        )

        self.claim_conflicts_total = self.counter(
            "pq_claim_conflicts_total",
            "Claims that found the item already claimed or not due"
        )

        self.stale_claims_released = self.counter(
            "pq_stale_claims_released_total",
            "PROCESSING rows released by stale-claim recovery"
        )

        # ============================================
        # POSTER METRICS
        # ============================================
        self.poster_duration = self.histogram(
            "pq_poster_duration_seconds",
            "Poster call duration by integration type",
            ["integration_type"]
        )

    def counter(self, name: str, description: str, labels: Optional[List[str]] = None) -> Counter:
        """Create and register a counter."""
        metric = Counter(name, description, labels)
        self._metrics[name] = metric
        return metric

    def gauge(self, name: str, description: str, labels: Optional[List[str]] = None) -> Gauge:
        """Create and register a gauge."""
        metric = Gauge(name, description, labels)
        self._metrics[name] = metric
        return metric

    def histogram(
        self,
        name: str,
        description: str,
        labels: Optional[List[str]] = None,
        buckets: Optional[tuple] = None
    ) -> Histogram:
        """Create and register a histogram."""
        metric = Histogram(name, description, labels, buckets)
        self._metrics[name] = metric
        return metric

    def update_queue_depth(self, counts: Dict[str, int]) -> None:
        """Refresh the per-status gauge from a status -> count mapping."""
        for status, count in counts.items():
            self.queue_items.set(count, status=status)

    def export(self) -> str:
        """
        Export all metrics in Prometheus text exposition format.

        Format specification:
        https://prometheus.io/docs/instrumenting/exposition_formats/
        """
        lines = []

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")

            for mv in metric.collect():
                metric_name = name
                if isinstance(metric, Histogram):
                    if "_metric" in mv.labels:
                        metric_name = f"{name}_{mv.labels.pop('_metric')}"
                    elif "le" in mv.labels:
                        metric_name = f"{name}_bucket"

                lines.append(f"{metric_name}{self._format_labels(mv.labels)} {mv.value}")

            lines.append("")

        return "\n".join(lines)

    def _format_labels(self, labels: Dict[str, str]) -> str:
        """Format labels as Prometheus label string."""
        if not labels:
            return ""

        parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(parts) + "}"

    def reset(self) -> None:
        """Reset all metrics. Useful for testing."""
        self._metrics.clear()
        self._setup_metrics()


# Global metrics instance
metrics = MetricsRegistry()
