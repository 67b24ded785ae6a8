"""In-memory metrics for command dispatch."""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any

logger = logging.getLogger(__name__)

HISTOGRAM_WINDOW = 100


class MetricsCollector:
    """Thread-safe counters and latency histograms."""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._lock = threading.RLock()
        self._counters: dict[str, float] = defaultdict(float)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._window = window

    def increment(self, name: str, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def histogram(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """Record a value, keeping only the most recent window per series."""
        key = self._make_key(name, labels)
        with self._lock:
            values = self._histograms[key]
            values.append(value)
            if len(values) > self._window:
                del values[: len(values) - self._window]

    def _make_key(self, name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    @staticmethod
    def _stats(values: list[float]) -> dict[str, float]:
        if not values:
            return {}
        ordered = sorted(values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p95": ordered[int(count * 0.95)] if count > 1 else ordered[-1],
        }

    def get_all_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {key: self._stats(values) for key, values in self._histograms.items()},
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


# Global metrics instance
metrics = MetricsCollector()


def record_command(command: str, duration_ms: float, success: bool = True) -> None:
    """Record one dispatched command."""
    labels = {"command": command, "success": str(success).lower()}
    metrics.histogram("command_duration_ms", duration_ms, labels)
    metrics.increment("commands_total", labels=labels)


def record_error(component: str, error_type: str) -> None:
    metrics.increment("errors_total", labels={"component": component, "type": error_type})


def record_extraction(count: int) -> None:
    metrics.increment("messages_scanned_total")
    if count:
        metrics.increment("inline_commands_extracted", value=float(count))


def format_metrics_text(limit: int = 10) -> str:
    """Format metrics as a short plain-text report."""
    data = metrics.get_all_metrics()
    lines = ["Metrics:"]

    if data["counters"]:
        for name, value in sorted(data["counters"].items())[:limit]:
            lines.append(f"  {name}: {value:.0f}")

    histograms = [(name, stats) for name, stats in sorted(data["histograms"].items()) if stats]
    if histograms:
        lines.append("Latencies (ms):")
        for name, stats in histograms[:limit]:
            lines.append(f"  {name}: avg={stats['avg']:.1f} p95={stats['p95']:.1f} (n={stats['count']:.0f})")

    if len(lines) == 1:
        lines.append("  (no data yet)")
    return "\n".join(lines)
