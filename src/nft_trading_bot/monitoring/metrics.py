"""Process-wide counters, gauges and latency histograms for the trading bot."""

from __future__ import annotations

import math
import re
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator, List, MutableMapping, Sequence

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_:]")
_QUANTILES = (0.5, 0.9, 0.99)


def _sanitize_metric_name(name: str) -> str:
    """Return a Prometheus-safe metric name."""

    sanitized = _INVALID_CHARS.sub("_", name) or "_"
    return f"_{sanitized}" if sanitized[0].isdigit() else sanitized


def _quantile(ordered: Sequence[float], q: float) -> float:
    # nearest-rank on an already sorted sample
    index = max(math.ceil(q * len(ordered)) - 1, 0)
    return float(ordered[min(index, len(ordered) - 1)])


def summarize_samples(values: Sequence[float]) -> Dict[str, float]:
    ordered = sorted(values)
    if not ordered:
        return {}
    stats = {
        "count": float(len(ordered)),
        "sum": float(sum(ordered)),
        "avg": sum(ordered) / len(ordered),
        "max": ordered[-1],
    }
    for q in _QUANTILES:
        stats[f"p{int(q * 100)}"] = _quantile(ordered, q)
    return stats


class MetricsRegistry:
    """In-memory metrics behind ``/api/metrics`` and the Prometheus endpoint.

    Names use dotted keys (``trades.buy.completed``); the exporter rewrites them
    and prefixes ``namespace`` when one is set.
    """

    def __init__(self, *, namespace: str = "", max_hist_samples: int = 1024) -> None:
        self._namespace = namespace
        self._lock = threading.RLock()
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: MutableMapping[str, float] = {}
        self._histograms: MutableMapping[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_hist_samples)
        )

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(float(value))

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Record the block's wall time under ``<name>.duration_seconds`` and count the call."""

        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(f"{name}.duration_seconds", time.perf_counter() - started)
            self.increment(f"{name}.calls_total")

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {key: summarize_samples(list(values)) for key, values in self._histograms.items()},
            }

    def export_prometheus(self) -> str:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {key: summarize_samples(list(values)) for key, values in self._histograms.items()}
        lines: List[str] = []
        for name, value in sorted(counters.items()):
            lines.extend(self._simple(name, "counter", value))
        for name, value in sorted(gauges.items()):
            lines.extend(self._simple(name, "gauge", value))
        for name, stats in sorted(histograms.items()):
            if not stats:
                continue
            metric = self._metric_name(name)
            lines.append(f"# TYPE {metric} summary")
            for q in _QUANTILES:
                lines.append(f'{metric}{{quantile="{q}"}} {stats[f"p{int(q * 100)}"]}')
            lines.append(f"{metric}_sum {stats['sum']}")
            lines.append(f"{metric}_count {int(stats['count'])}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    def _metric_name(self, name: str) -> str:
        sanitized = _sanitize_metric_name(name)
        return f"{self._namespace}_{sanitized}" if self._namespace else sanitized

    def _simple(self, name: str, kind: str, value: float) -> List[str]:
        metric = self._metric_name(name)
        return [f"# TYPE {metric} {kind}", f"{metric} {value}"]


METRICS_NAMESPACE = "nft_trading_bot"
METRICS = MetricsRegistry(namespace=METRICS_NAMESPACE)


__all__ = ["METRICS", "METRICS_NAMESPACE", "MetricsRegistry", "summarize_samples"]
