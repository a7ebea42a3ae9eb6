"""
Metrics context shared by the scheduled jobs.

Each application owns one MetricsContext backed by its own prometheus
CollectorRegistry, so counters never leak between instances (or tests).
"""
import re
import threading
from typing import Dict

from prometheus_client import CollectorRegistry, Counter as PrometheusCounter, generate_latest

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_:]")


def metric_name(name: str) -> str:
    """Turn a dotted counter name into a valid prometheus metric name."""
    name = _INVALID_CHARS.sub("_", name)
    if name.endswith("_total"):
        name = name[: -len("_total")]
    return name


class Counter:
    """Monotonic counter with atomic increments and a readable value."""

    def __init__(self, name: str, registry: CollectorRegistry, documentation: str = ""):
        self.name = metric_name(name)
        self._registry = registry
        self._counter = PrometheusCounter(self.name, documentation or name, registry=registry)

    def inc(self, amount: int = 1) -> None:
        self._counter.inc(amount)

    @property
    def count(self) -> int:
        value = self._registry.get_sample_value(f"{self.name}_total")
        return int(value or 0)

    def __repr__(self) -> str:
        return f"Counter({self.name}={self.count})"


class MetricsContext:
    """
    Owner of every counter used by the pipeline.

    Counters are created on first use and returned on every later request
    for the same name, which lets a job and its health check share state.
    """

    def __init__(self, prefix: str = "querymart"):
        self.prefix = prefix
        self.registry = CollectorRegistry()
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, documentation: str = "") -> Counter:
        full_name = metric_name(f"{self.prefix}.{name}" if self.prefix else name)
        with self._lock:
            counter = self._counters.get(full_name)
            if counter is None:
                counter = Counter(full_name, self.registry, documentation)
                self._counters[full_name] = counter
            return counter

    def snapshot(self) -> Dict[str, int]:
        """Current value of every counter, keyed by metric name."""
        with self._lock:
            counters = list(self._counters.values())
        return {c.name: c.count for c in counters}

    def render(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry)
