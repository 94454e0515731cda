"""
In-process metrics registry exported in Prometheus text format at /metrics.

Series are module-level singletons so callers import exactly what they bump.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple

LabelValues = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


class _Series:
    kind = "untyped"

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._samples: Dict[LabelValues, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelValues:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._samples.get(self._key(labels), 0.0)

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()

    def render(self) -> List[str]:
        lines = []
        if self.help_text:
            lines.append(f"# HELP {self.name} {self.help_text}")
        lines.append(f"# TYPE {self.name} {self.kind}")
        with self._lock:
            samples = sorted(self._samples.items())
        for values, sample in samples:
            if self.label_names:
                rendered = ",".join(f'{name}="{_escape(value)}"' for name, value in zip(self.label_names, values))
                lines.append(f"{self.name}{{{rendered}}} {sample}")
            else:
                lines.append(f"{self.name} {sample}")
        return lines


class Counter(_Series):
    kind = "counter"

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("Counters only go up")
        key = self._key(labels)
        with self._lock:
            self._samples[key] = self._samples.get(key, 0.0) + float(amount)


class Gauge(_Series):
    kind = "gauge"

    def set(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._samples[key] = float(value)


class MetricsRegistry:
    def __init__(self):
        self._series: Dict[str, _Series] = {}
        self._lock = threading.Lock()

    def _register(self, cls, name: str, label_names, help_text: str):
        with self._lock:
            existing = self._series.get(name)
            if existing is None:
                existing = self._series[name] = cls(name, label_names, help_text)
            elif not isinstance(existing, cls):
                raise ValueError(f"Metric {name} already registered as {existing.kind}")
            return existing

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = "") -> Counter:
        return self._register(Counter, name, label_names, help_text)

    def gauge(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = "") -> Gauge:
        return self._register(Gauge, name, label_names, help_text)

    def export_prometheus(self) -> str:
        with self._lock:
            series = list(self._series.values())
        lines: List[str] = []
        for item in series:
            lines.extend(item.render())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            series = list(self._series.values())
        for item in series:
            item.reset()


METRICS = MetricsRegistry()

# HTTP
http_requests_total = METRICS.counter("http_requests_total", ["method", "path", "status"], "HTTP requests served")
ratelimit_block_total = METRICS.counter("ratelimit_block_total", ["scope"], "Requests rejected by the rate limiter")

# Ranking pipeline
metric_updates_total = METRICS.counter("metric_updates_total", ["outcome"], "Metric updates accepted or rejected")
recalculations_total = METRICS.counter(
    "ranking_recalculations_total", ["cohort", "outcome"], "Leaderboard recalculations by outcome"
)
snapshot_publishes_total = METRICS.counter(
    "leaderboard_publishes_total", ["cohort", "outcome"], "Snapshot publish attempts (published or stale)"
)
weight_updates_total = METRICS.counter("ranking_weight_updates_total", help_text="Accepted weight changes")
leaderboard_size = METRICS.gauge("leaderboard_size", ["cohort"], "Users in the current snapshot")
weights_version = METRICS.gauge("ranking_weights_version", help_text="Active WeightConfig version")

# Live updates
ws_connections_total = METRICS.counter("ws_connections_total", help_text="Leaderboard sockets opened")
ws_messages_sent_total = METRICS.counter("ws_messages_sent_total", ["cohort"], "Snapshots pushed to sockets")
ws_active_connections = METRICS.gauge("ws_active_connections", help_text="Open leaderboard sockets")


# Segments that look like user ids, uuids or numbers collapse to :id
_ID_SEGMENT_RE = re.compile(r"^(\d+|[0-9a-fA-F-]{8,}|user_[A-Za-z0-9_-]+|seed_user_\d+)$")


def normalize_path(path: str) -> str:
    """Keep the path label low-cardinality: /api/user-ranking/user_42 -> /api/user-ranking/:id."""
    segments = [":id" if _ID_SEGMENT_RE.match(part) else part for part in path.split("/") if part]
    return "/" + "/".join(segments)
