"""
Metrics — Per-run metrics in Prometheus text format.

run-puppet is a short-lived process, so metrics are not scraped from it.
Instead the registry is written to a file picked up by node_exporter's
textfile collector.

## Usage

    from run_puppet.observability.metrics import MetricsRegistry

    metrics = MetricsRegistry()
    metrics.increment("runs_total")
    metrics.timing("step_duration_seconds", 12.5, labels={"step": "clone"})
    metrics.write_textfile(Path("/var/lib/node_exporter/run_puppet.prom"))
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class MetricPoint:
    """A single metric data point."""

    name: str
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


def _labels_key(labels: Optional[Dict[str, str]]) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _labels_from_key(key: str) -> Dict[str, str]:
    if not key:
        return {}
    return dict(pair.split("=", 1) for pair in key.split(","))


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._lock = Lock()

    def export(self) -> List[MetricPoint]:
        raise NotImplementedError


class Counter(_Metric):
    """A monotonically increasing counter."""

    kind = "counter"

    def __init__(self, name: str, help_text: str = ""):
        super().__init__(name, help_text)
        self._values: Dict[str, float] = defaultdict(float)

    def inc(self, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        if value < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._values[_labels_key(labels)] += value

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        return self._values.get(_labels_key(labels), 0)

    def export(self) -> List[MetricPoint]:
        return [
            MetricPoint(self.name, value, _labels_from_key(key))
            for key, value in self._values.items()
        ]


class Gauge(_Metric):
    """A value that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, help_text: str = ""):
        super().__init__(name, help_text)
        self._values: Dict[str, float] = {}

    def set(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] = value

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        return self._values.get(_labels_key(labels), 0)

    def export(self) -> List[MetricPoint]:
        return [
            MetricPoint(self.name, value, _labels_from_key(key))
            for key, value in self._values.items()
        ]


class Histogram(_Metric):
    """Duration distribution with cumulative buckets."""

    kind = "histogram"

    # Seconds; a puppet run routinely takes minutes
    DEFAULT_BUCKETS = (0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600, 1800, float("inf"))

    def __init__(self, name: str, help_text: str = "", buckets: Optional[tuple] = None):
        super().__init__(name, help_text)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[str, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[str, float] = defaultdict(float)
        self._totals: Dict[str, int] = defaultdict(int)

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1

    def count(self, labels: Optional[Dict[str, str]] = None) -> int:
        return self._totals.get(_labels_key(labels), 0)

    def sum(self, labels: Optional[Dict[str, str]] = None) -> float:
        return self._sums.get(_labels_key(labels), 0.0)

    def export(self) -> List[MetricPoint]:
        points = []
        for key in self._totals:
            labels = _labels_from_key(key)
            for bucket in self.buckets:
                le = "+Inf" if bucket == float("inf") else str(bucket)
                points.append(
                    MetricPoint(f"{self.name}_bucket", self._counts[key].get(bucket, 0), {**labels, "le": le})
                )
            points.append(MetricPoint(f"{self.name}_sum", self._sums[key], labels))
            points.append(MetricPoint(f"{self.name}_count", self._totals[key], labels))
        return points


class MetricsRegistry:
    """All metrics of one run, keyed by prefixed name."""

    def __init__(self, prefix: str = "run_puppet"):
        self.prefix = prefix
        self._metrics: Dict[str, _Metric] = {}
        self._lock = Lock()
        self._register_common_metrics()

    def _register_common_metrics(self) -> None:
        self.counter("runs_total", "Puppet runs started")
        self.counter("errors_total", "Runs aborted by an error, by step")
        self.gauge("last_exit_code", "Exit code of the last run")
        self.gauge("last_run_timestamp_seconds", "Unix time the last run finished")
        self.gauge("noop", "1 if the last run was a dry-run")
        self.gauge("delay_seconds", "Random delay applied before the last run")
        self.histogram("step_duration_seconds", "Duration of each run step")

    def _get_or_create(self, cls, name: str, help_text: str) -> _Metric:
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            metric = self._metrics.get(full_name)
            if metric is None:
                metric = cls(full_name, help_text)
                self._metrics[full_name] = metric
            elif not isinstance(metric, cls):
                raise TypeError(f"{full_name} is already registered as a {metric.kind}")
            return metric

    def counter(self, name: str, help_text: str = "") -> Counter:
        return self._get_or_create(Counter, name, help_text)

    def gauge(self, name: str, help_text: str = "") -> Gauge:
        return self._get_or_create(Gauge, name, help_text)

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        return self._get_or_create(Histogram, name, help_text)

    # Convenience methods
    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        self.counter(name).inc(value, labels)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.gauge(name).set(value, labels)

    def timing(self, name: str, seconds: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.histogram(name).observe(seconds, labels)

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        for metric in self._metrics.values():
            points = metric.export()
            if not points:
                continue
            lines.append(f"# HELP {metric.name} {metric.help_text}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            for point in points:
                lines.append(
                    f"{point.name}{self._format_labels(point.labels)} {self._format_value(point.value)}"
                )
        return "\n".join(lines) + "\n"

    def write_textfile(self, path: Path) -> None:
        """
        Write the Prometheus export to path.

        Uses atomic write (temp file, then rename) so the collector never
        reads a half-written file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        temp_path.write_text(self.export_prometheus(), encoding="utf-8")
        os.replace(temp_path, path)
        logger.debug(f"Metrics written to {path}")

    def _format_value(self, value: float) -> str:
        value = float(value)
        if value.is_integer():
            return str(int(value))
        return repr(value)

    def _format_labels(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"
