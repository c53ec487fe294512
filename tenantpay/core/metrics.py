"""Process-local counters rendered in the Prometheus text exposition format."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple

LabelValues = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class Counter:
    """Monotonic counter keyed by an ordered set of label values."""

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names or ())
        self._series: Dict[LabelValues, float] = {}
        self._guard = threading.Lock()

    def _series_key(self, labels: Optional[Dict[str, str]]) -> LabelValues:
        given = labels or {}
        return tuple(str(given.get(label, "")) for label in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0):
        key = self._series_key(labels)
        with self._guard:
            self._series[key] = self._series.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._series_key(labels)
        with self._guard:
            return self._series.get(key, 0.0)

    def render(self) -> List[str]:
        out = []
        if self.help_text:
            out.append(f"# HELP {self.name} {self.help_text}")
        out.append(f"# TYPE {self.name} counter")
        with self._guard:
            series = sorted(self._series.items())
        for values, total in series:
            if self.label_names:
                pairs = ",".join(f'{label}="{_escape(v)}"' for label, v in zip(self.label_names, values))
                out.append(f"{self.name}{{{pairs}}} {total}")
            else:
                out.append(f"{self.name} {total}")
        return out

    def reset(self):
        with self._guard:
            self._series.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._guard = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = "") -> Counter:
        with self._guard:
            existing = self._counters.get(name)
            if existing is None:
                existing = self._counters[name] = Counter(name, label_names, help_text)
            return existing

    def export_prometheus(self) -> str:
        with self._guard:
            counters = list(self._counters.values())
        body: List[str] = []
        for counter in counters:
            body.extend(counter.render())
        return "\n".join(body) + "\n"

    def reset(self):
        with self._guard:
            counters = list(self._counters.values())
        for counter in counters:
            counter.reset()


METRICS = MetricsRegistry()

subscription_transitions_total = METRICS.counter(
    "subscription_transitions_total", ["event"], "Lifecycle events accepted by the state machine"
)
subscription_settlements_total = METRICS.counter(
    "subscription_settlements_total", ["result"], "Settlement outcomes, including duplicates that were skipped"
)
owner_overrides_total = METRICS.counter(
    "owner_overrides_total", ["action"], "Owner force-activate and suspend actions"
)
notification_deliveries_total = METRICS.counter(
    "notification_deliveries_total", ["result"], "Owner inbox deliveries by outcome"
)
