# interactbot/infra/metrics.py
"""
In-process operational metrics, served as JSON on ``GET /metrics``.

Counters are lifetime totals. Durations keep a bounded window of recent
samples per series, so a long-running process holds at most
``DURATION_WINDOW`` floats per command.
"""
from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Deque

from interactbot.infra.logging_config import get_logger

logger = get_logger(__name__)

# Recent samples kept per duration series
DURATION_WINDOW = 1000


class DurationWindow:
    """Lifetime sample count plus summary stats over the most recent samples."""

    def __init__(self, maxlen: int = DURATION_WINDOW):
        self._samples: Deque[float] = deque(maxlen=maxlen)
        self.total = 0

    def add(self, seconds: float) -> None:
        self._samples.append(seconds)
        self.total += 1

    def __len__(self) -> int:
        return len(self._samples)

    def summary(self) -> dict:
        if not self._samples:
            return {"count": self.total, "window": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        ordered = sorted(self._samples)
        n = len(ordered)
        return {
            "count": self.total,
            "window": n,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / n,
            "p95": ordered[min(int(n * 0.95), n - 1)],
        }


class MetricsCollector:
    """Thread-safe counters and duration windows keyed by ``name{label=value,...}``."""

    def __init__(self, window: int = DURATION_WINDOW):
        self._window = window
        self._counters: dict[str, int] = {}
        self._durations: dict[str, DurationWindow] = {}
        self._lock = Lock()

    @staticmethod
    def series(name: str, labels: dict | None = None) -> str:
        if not labels:
            return name
        inner = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{inner}}}"

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self.series(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def observe_duration(self, name: str, seconds: float, labels: dict | None = None) -> None:
        key = self.series(name, labels)
        with self._lock:
            window = self._durations.get(key)
            if window is None:
                window = self._durations[key] = DurationWindow(self._window)
            window.add(seconds)

    def get_counter(self, name: str, **labels) -> int:
        with self._lock:
            return self._counters.get(self.series(name, labels or None), 0)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "durations": {k: w.summary() for k, w in self._durations.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._durations.clear()
        logger.info("Metrics reset")


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _collector


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _collector.inc_counter(name, amount, labels or None)


class timed:
    """``with timed("handler_duration_seconds", command="generate"): ...``"""

    def __init__(self, name: str, **labels):
        self.name = name
        self.labels = labels
        self._started: float | None = None

    def __enter__(self) -> "timed":
        self._started = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._started is not None:
            _collector.observe_duration(
                self.name, time.monotonic() - self._started, self.labels or None,
            )


class BotMetrics:
    """Named metric helpers used across the dispatcher"""

    @staticmethod
    def interaction_received(kind: str) -> None:
        inc_counter("interactions_received", kind=kind)

    @staticmethod
    def signature_rejected() -> None:
        inc_counter("interactions_rejected", reason="signature")

    @staticmethod
    def protocol_rejected() -> None:
        inc_counter("interactions_rejected", reason="protocol")

    @staticmethod
    def handler_outcome(command: str, outcome: str) -> None:
        inc_counter("handler_outcomes", command=command, outcome=outcome)

    @staticmethod
    def alert_emitted(error_type: str) -> None:
        inc_counter("alerts_emitted", error_type=error_type)

    @staticmethod
    def track_handler_time(command: str) -> timed:
        return timed("handler_duration_seconds", command=command)
