"""Prometheus-style metrics collector. Thread-safe, in-memory. No real Prometheus dependency."""

import threading
from typing import Any


class MetricsCollector:
    """
    In-memory registry of counters and latency histograms.
    Labels are reference-only (action, outcome, rule); never resource content.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._counters_by_label: dict[str, dict[str, float]] = {}
        self._histograms: dict[str, list[float]] = {}

    def increment(
        self,
        name: str,
        value: float = 1.0,
        *,
        category: str | None = None,
    ) -> None:
        """Increment a counter, optionally under a single category label."""
        with self._lock:
            if category is None:
                self._counters[name] = self._counters.get(name, 0) + value
                return
            series = self._counters_by_label.setdefault(name, {})
            series[category] = series.get(category, 0) + value

    def observe_latency(self, name: str, latency_ms: float, *, operation: str | None = None) -> None:
        with self._lock:
            bucket = name if operation is None else f"{name}:operation={operation}"
            self._histograms.setdefault(bucket, []).append(latency_ms)

    def count(self, name: str, category: str | None = None) -> float:
        """Current counter value; 0 when never incremented."""
        with self._lock:
            if category is None:
                return self._counters.get(name, 0)
            return self._counters_by_label.get(name, {}).get(category, 0)

    def export_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "counters_by_label": {k: dict(v) for k, v in self._counters_by_label.items()},
                "histograms": {
                    k: {"count": len(v), "sum": sum(v), "max": max(v) if v else 0.0}
                    for k, v in self._histograms.items()
                },
            }

    def reset(self) -> None:
        """Reset all metrics (for tests)."""
        with self._lock:
            self._counters.clear()
            self._counters_by_label.clear()
            self._histograms.clear()
