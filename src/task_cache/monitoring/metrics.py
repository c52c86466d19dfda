from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

LabelKey = Tuple[Tuple[str, Any], ...]


def _label_key(labels: Dict[str, Any]) -> LabelKey:
    return tuple(sorted(labels.items()))


@dataclass
class Counter:
    name: str
    help: str
    values: Dict[LabelKey, float] = field(default_factory=dict)

    def inc(self, amount: float = 1.0, **labels: Any) -> None:
        series = _label_key(labels)
        self.values[series] = self.values.get(series, 0.0) + amount

    def get(self, **labels: Any) -> float:
        return self.values.get(_label_key(labels), 0.0)

    def total(self) -> float:
        return sum(self.values.values())

    def reset(self) -> None:
        self.values.clear()


@dataclass
class Histogram:
    """Bucketed observations; the last slot counts values above every bound."""

    name: str
    help: str
    buckets: List[float]
    counts: Dict[LabelKey, List[int]] = field(default_factory=dict)

    def observe(self, seconds: float, **labels: Any) -> None:
        slots = self.counts.setdefault(_label_key(labels), [0] * (len(self.buckets) + 1))
        index = next((i for i, bound in enumerate(self.buckets) if seconds <= bound), len(self.buckets))
        slots[index] += 1

    def bucket_counts(self, **labels: Any) -> Dict[float, int]:
        slots = self.counts.get(_label_key(labels), [0] * (len(self.buckets) + 1))
        return dict(zip([*self.buckets, math.inf], slots))

    def total(self, **labels: Any) -> int:
        return sum(self.counts.get(_label_key(labels), []))

    def reset(self) -> None:
        self.counts.clear()


# Predefined metrics
task_cache_requests_total = Counter("task_cache_requests_total", "Cached reads by outcome (hit/miss/stale/error)")
task_cache_fetch_latency_seconds = Histogram(
    "task_cache_fetch_latency_seconds",
    "Network fetch latency including retries",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0],
)
task_cache_retries_total = Counter("task_cache_retries_total", "Retry attempts after a failed call")
task_cache_persist_failures_total = Counter("task_cache_persist_failures_total", "Persistent tier write failures")
task_cache_invalidations_total = Counter("task_cache_invalidations_total", "Cache invalidations by scope")

ALL_METRICS = (
    task_cache_requests_total,
    task_cache_fetch_latency_seconds,
    task_cache_retries_total,
    task_cache_persist_failures_total,
    task_cache_invalidations_total,
)


def reset_all() -> None:
    for metric in ALL_METRICS:
        metric.reset()
