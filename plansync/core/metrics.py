"""
In-process counters rendered in Prometheus text format at /metrics.

Plan counters:
- plan_reconcile_total{outcome}: verdicts, "success" or "failed"
- plan_strategy_failures_total{strategy}: failed cascade steps
- plan_bypass_total{outcome}: emergency bypass runs by outcome status
- plan_audit_failures_total: change log writes that were dropped
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

LabelKey = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


class Counter:
    """Monotonic counter keyed by an ordered tuple of label values."""

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._samples: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelKey:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        key = self._key(labels)
        with self._lock:
            self._samples[key] = self._samples.get(key, 0.0) + amount

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._samples.get(self._key(labels), 0.0)

    def render(self) -> List[str]:
        with self._lock:
            samples = sorted(self._samples.items())
        lines = [f"# TYPE {self.name} counter"]
        for key, value in samples:
            label_str = ""
            if self.label_names:
                pairs = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, key))
                label_str = "{" + pairs + "}"
            lines.append(f"{self.name}{label_str} {float(value)}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        with self._lock:
            return self._counters.setdefault(name, Counter(name, label_names))

    def export_prometheus(self) -> str:
        with self._lock:
            counters = list(self._counters.values())
        lines: List[str] = []
        for counter in counters:
            lines.extend(counter.render())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            counters = list(self._counters.values())
        for counter in counters:
            counter.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter("http_requests_total", ["method", "path", "status"])
plan_reconcile_total = METRICS.counter("plan_reconcile_total", ["outcome"])
plan_strategy_failures_total = METRICS.counter("plan_strategy_failures_total", ["strategy"])
plan_bypass_total = METRICS.counter("plan_bypass_total", ["outcome"])
plan_audit_failures_total = METRICS.counter("plan_audit_failures_total")

# Clerk ids (user_...), UUIDs and numeric ids collapse to :id in the path label
_ID_SEGMENT = re.compile(r"^(\d+|user_[A-Za-z0-9]+|[0-9a-fA-F-]{8,})$")


def normalize_path(path: str) -> str:
    segments = [":id" if _ID_SEGMENT.match(seg) else seg for seg in path.split("/") if seg]
    return "/" + "/".join(segments)
