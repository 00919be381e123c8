from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Mapping


class MetricRegistry:
    """Process-local counters and latency summaries, keyed by name and labels."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._sums: dict[str, float] = defaultdict(float)
        self._counts: dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def inc(self, name: str, labels: Mapping[str, str] | None = None, value: int = 1) -> None:
        key = _format_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def observe(self, name: str, value: float, labels: Mapping[str, str] | None = None) -> None:
        key = _format_key(name, labels)
        with self._lock:
            self._sums[f"{key}_sum"] += float(value)
            self._counts[f"{key}_count"] += 1

    def get(self, name: str, labels: Mapping[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get(_format_key(name, labels), 0)

    def snapshot(self) -> dict[str, float | int]:
        with self._lock:
            merged: dict[str, float | int] = dict(self._counters)
            merged.update(self._sums)
            merged.update(self._counts)
            return merged

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._sums.clear()
            self._counts.clear()


def _format_key(name: str, labels: Mapping[str, str] | None) -> str:
    if not labels:
        return name
    parts = [f"{k}={labels[k]}" for k in sorted(labels.keys())]
    return f"{name}{{{','.join(parts)}}}"


metrics = MetricRegistry()
