"""In-process counters and gauges for the snapshot job."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Type, TypeVar


@dataclass
class _Metric:
    name: str
    _value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def snapshot(self) -> float:
        with self._lock:
            return float(self._value)


class Counter(_Metric):
    """Monotonic counter."""

    def inc(self, amount: float = 1.0) -> None:
        if amount <= 0:
            return
        with self._lock:
            self._value += amount


class Gauge(_Metric):
    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)


_M = TypeVar("_M", bound=_Metric)


class MetricsRegistry:
    """Named metrics shared between the HTTP layer and the job thread."""

    def __init__(self) -> None:
        self._metrics: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, kind: Type[_M]) -> _M:
        with self._lock:
            metric = self._metrics.get(name)
            if isinstance(metric, kind):
                return metric
            created = kind(name=name)
            self._metrics[name] = created
            return created

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)

    def gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, Gauge)

    def get(self, name: str) -> Optional[_Metric]:
        with self._lock:
            return self._metrics.get(name)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {metric.name: metric.snapshot() for metric in metrics}


_DEFAULT_REGISTRY = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    return _DEFAULT_REGISTRY


__all__ = [
    "Counter",
    "Gauge",
    "MetricsRegistry",
    "get_registry",
]
