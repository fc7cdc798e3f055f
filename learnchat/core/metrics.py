"""
In-process metrics for the learnchat backend.

Counters and gauges keyed by label tuples, rendered as Prometheus text on
GET /metrics. State lives in the worker process; scrape each worker.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

LabelKey = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace("\"", "\\\"")


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None, description: str = ""):
        self.name = name
        self.label_names = tuple(label_names or ())
        self.description = description
        self._values: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelKey:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def _render_labels(self, key: LabelKey) -> str:
        if not self.label_names:
            return ""
        pairs = ",".join(f'{name}="{_escape(val)}"' for name, val in zip(self.label_names, key))
        return "{" + pairs + "}"

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def export(self) -> List[str]:
        lines = []
        if self.description:
            lines.append(f"# HELP {self.name} {self.description}")
        lines.append(f"# TYPE {self.name} {self.kind}")
        with self._lock:
            samples = sorted(self._values.items())
        lines.extend(f"{self.name}{self._render_labels(key)} {val}" for key, val in samples)
        return lines

    def reset(self):
        with self._lock:
            self._values.clear()


class Counter(_Metric):
    kind = "counter"

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0):
        if amount < 0:
            raise ValueError("counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)


class Gauge(_Metric):
    kind = "gauge"

    def set(self, value: float, labels: Optional[Dict[str, str]] = None):
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)


class MetricsRegistry:
    def __init__(self):
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _register(self, cls, name: str, label_names, description: str):
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = cls(name, label_names, description)
                self._metrics[name] = metric
            elif not isinstance(metric, cls):
                raise ValueError(f"metric {name} already registered as {metric.kind}")
            return metric

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None, description: str = "") -> Counter:
        return self._register(Counter, name, label_names, description)

    def gauge(self, name: str, label_names: Optional[Iterable[str]] = None, description: str = "") -> Gauge:
        return self._register(Gauge, name, label_names, description)

    def export_prometheus(self) -> str:
        with self._lock:
            metrics = list(self._metrics.values())
        lines: List[str] = []
        for metric in metrics:
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self):
        with self._lock:
            metrics = list(self._metrics.values())
        for metric in metrics:
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", ["method", "path", "status"], "HTTP requests by route and status"
)
ratelimit_block_total = METRICS.counter("ratelimit_block_total", ["scope"], "Requests rejected by the rate limiter")
admission_denied_total = METRICS.counter("admission_denied_total", ["plan"], "Turns refused before generation")
credits_debited_total = METRICS.counter("credits_debited_total", ["category"], "Points debited by balance category")
compaction_decisions_total = METRICS.counter(
    "compaction_decisions_total", ["decision"], "History compaction decisions"
)
quiz_answers_total = METRICS.counter("quiz_answers_total", ["correct"], "Recorded quiz answers")
llm_failures_total = METRICS.counter("llm_failures_total", ["purpose"], "Failed provider calls")

ratelimit_tracked_keys = METRICS.gauge("ratelimit_tracked_keys", description="Keys held by the in-memory limiter")


_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-fA-F-]{8,})$")


def normalize_path(path: str) -> str:
    """Collapse id-like segments to :id so route labels stay bounded."""
    segments = [":id" if _ID_SEGMENT.match(s) else s for s in path.split("/") if s]
    return "/" + "/".join(segments)
