"""
Pipeline Metrics

In-process counters, gauges and histograms for the webhook pipeline, exported
in Prometheus text exposition format (text/plain; version=0.0.4).
"""
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

LabelKey = Tuple[Tuple[str, str], ...]


@dataclass
class Sample:
    """One exported line: optional name suffix, labels and value."""
    value: float
    labels: Dict[str, str] = field(default_factory=dict)
    suffix: str = ""


def _label_key(labels: Dict[str, str]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description
        self._lock = threading.Lock()

    def samples(self) -> List[Sample]:
        raise NotImplementedError


class Counter(_Metric):
    """Monotonic count, e.g. items completed per queue type."""

    kind = "counter"

    def __init__(self, name: str, description: str):
        super().__init__(name, description)
        self._values: Dict[LabelKey, float] = {}

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = _label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, **labels: str) -> float:
        with self._lock:
            return self._values.get(_label_key(labels), 0.0)

    def samples(self) -> List[Sample]:
        with self._lock:
            return [Sample(v, dict(k)) for k, v in self._values.items()]


class Gauge(Counter):
    """Point-in-time value, e.g. pending items in a queue."""

    kind = "gauge"

    def set(self, value: float, **labels: str) -> None:
        with self._lock:
            self._values[_label_key(labels)] = value

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        key = _label_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount


class Histogram(_Metric):
    """Bucketed observations with running sum and count."""

    kind = "histogram"

    def __init__(self, name: str, description: str, buckets: Iterable[float]):
        super().__init__(name, description)
        self.buckets = tuple(sorted(buckets))
        self._counts: Dict[LabelKey, List[int]] = {}
        self._sums: Dict[LabelKey, float] = {}
        self._totals: Dict[LabelKey, int] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = _label_key(labels)
        with self._lock:
            counts = self._counts.setdefault(key, [0] * len(self.buckets))
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[i] += 1
            self._sums[key] = self._sums.get(key, 0.0) + value
            self._totals[key] = self._totals.get(key, 0) + 1

    def count(self, **labels: str) -> int:
        with self._lock:
            return self._totals.get(_label_key(labels), 0)

    def samples(self) -> List[Sample]:
        result = []
        with self._lock:
            for key, counts in self._counts.items():
                labels = dict(key)
                for bound, n in zip(self.buckets, counts):
                    result.append(Sample(n, {**labels, "le": str(bound)}, "_bucket"))
                result.append(Sample(self._totals[key], {**labels, "le": "+Inf"}, "_bucket"))
                result.append(Sample(self._sums[key], labels, "_sum"))
                result.append(Sample(self._totals[key], labels, "_count"))
        return result


class PipelineMetrics:
    """Registry of the pipeline's metrics with Prometheus export."""

    def __init__(self, prefix: str = "crm_webhooks"):
        self.prefix = prefix
        self._metrics: Dict[str, _Metric] = {}

        # ============================================
        # ITEMS
        # ============================================
        self.items_completed = self._register(Counter(
            f"{prefix}_items_completed_total", "Work items applied and acknowledged, by queue type"
        ))
        self.items_failed = self._register(Counter(
            f"{prefix}_items_failed_total", "Work item attempts that failed, by queue type and error type"
        ))
        self.item_duration = self._register(Histogram(
            f"{prefix}_item_duration_seconds", "Handler duration per work item, by queue type",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        ))

        # ============================================
        # QUEUES
        # ============================================
        self.queue_pending = self._register(Gauge(
            f"{prefix}_queue_pending", "Pending work items, by queue type"
        ))
        self.queue_processing = self._register(Gauge(
            f"{prefix}_queue_processing", "Leased work items, by queue type"
        ))
        self.queue_dead = self._register(Gauge(
            f"{prefix}_queue_dead", "Dead-lettered work items, by queue type"
        ))

        # ============================================
        # PROCESSORS
        # ============================================
        self.processor_runs = self._register(Counter(
            f"{prefix}_processor_runs_total", "Processor passes, by processor and outcome"
        ))

    def _register(self, metric):
        self._metrics[metric.name] = metric
        return metric

    def record_depths(self, depths) -> None:
        """Refresh queue gauges from `QueueDepth` rows."""
        for depth in depths:
            self.queue_pending.set(depth.pending, queue_type=depth.queue_type)
            self.queue_processing.set(depth.processing, queue_type=depth.queue_type)
            self.queue_dead.set(depth.dead, queue_type=depth.queue_type)

    def export(self) -> str:
        lines = []
        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")
            for sample in metric.samples():
                lines.append(f"{name}{sample.suffix}{_format_labels(sample.labels)} {sample.value}")
            lines.append("")
        return "\n".join(lines)

    def reset(self) -> None:
        """Drop all recorded values. Useful for testing."""
        self.__init__(self.prefix)


def _format_labels(labels: Optional[Dict[str, str]]) -> str:
    if not labels:
        return ""
    parts = [f'{k}="{v}"' for k, v in sorted(labels.items())]
    return "{" + ",".join(parts) + "}"


# Global metrics instance
metrics = PipelineMetrics()
