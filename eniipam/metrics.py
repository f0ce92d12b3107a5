"""Minimal Prometheus-style counters and gauges with a text exposition registry."""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Mapping

LabelValues = tuple[str, ...]


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


class _Metric:
    """Shared storage for labelled metric series."""

    kind = "untyped"

    def __init__(self, name: str, help: str, label_names: Iterable[str] = ()) -> None:
        if not name:
            raise ValueError("metric name must not be empty")
        self.name = name
        self.help = help
        self.label_names: tuple[str, ...] = tuple(label_names)
        if len(set(self.label_names)) != len(self.label_names):
            raise ValueError(f"duplicate label names for metric {name}")
        self._lock = threading.Lock()
        self._values: dict[LabelValues, float] = {}
        if not self.label_names:
            self._values[()] = 0.0

    def _key(self, labels: Mapping[str, str] | None) -> LabelValues:
        given = dict(labels or {})
        if set(given) != set(self.label_names):
            raise ValueError(
                f"metric {self.name} expects labels {sorted(self.label_names)}, "
                f"got {sorted(given)}"
            )
        return tuple(str(given[name]) for name in self.label_names)

    def _read(self, labels: Mapping[str, str] | None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def samples(self) -> list[tuple[dict[str, str], float]]:
        """Return all series as (labels, value) pairs, ordered by label values."""
        with self._lock:
            items = sorted(self._values.items())
        return [(dict(zip(self.label_names, key)), value) for key, value in items]

    def render(self) -> str:
        lines = [
            f"# HELP {self.name} {_escape_help(self.help)}",
            f"# TYPE {self.name} {self.kind}",
        ]
        for labels, value in self.samples():
            if labels:
                rendered = ",".join(
                    f'{name}="{_escape_label(val)}"' for name, val in labels.items()
                )
                lines.append(f"{self.name}{{{rendered}}} {_format_value(value)}")
            else:
                lines.append(f"{self.name} {_format_value(value)}")
        return "\n".join(lines) + "\n"


class Counter(_Metric):
    """A monotonically increasing value, optionally split by labels."""

    kind = "counter"

    def inc(self, labels: Mapping[str, str] | None = None, amount: float = 1.0) -> None:
        """Increase the selected series by ``amount``, which must not be negative."""
        if amount < 0:
            raise ValueError("counter cannot decrease")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Mapping[str, str] | None = None) -> float:
        """Return the current value of the series selected by ``labels``."""
        return self._read(labels)


class Gauge(_Metric):
    """A value that can go up and down, optionally split by labels."""

    kind = "gauge"

    def set(self, value: float, labels: Mapping[str, str] | None = None) -> None:
        """Set the selected series to ``value``."""
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def add(self, amount: float, labels: Mapping[str, str] | None = None) -> None:
        """Add ``amount`` (possibly negative) to the selected series."""
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Mapping[str, str] | None = None) -> float:
        """Return the current value of the series selected by ``labels``."""
        return self._read(labels)


class Registry:
    """A collection of metrics rendered together in text exposition format."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics: dict[str, _Metric] = {}

    def register(self, metric: _Metric) -> _Metric:
        """Add ``metric``; a second metric with the same name is rejected."""
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(f"metric {metric.name} already registered")
            self._metrics[metric.name] = metric
        return metric

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def render(self) -> str:
        """Render every registered metric, ordered by name."""
        with self._lock:
            metrics = [self._metrics[name] for name in sorted(self._metrics)]
        return "".join(metric.render() for metric in metrics)


REGISTRY = Registry()

IPAMD_ERR = REGISTRY.register(
    Counter(
        "awscni_ipamd_error_count",
        "The number of errors encountered in ipamd",
        ("fn", "error"),
    )
)
IPAMD_ACTIONS_INPROGRESS = REGISTRY.register(
    Gauge(
        "awscni_ipamd_action_inprogress",
        "The number of ipamd actions in progress",
        ("fn",),
    )
)
ENIS_MAX = REGISTRY.register(
    Gauge(
        "awscni_eni_max",
        "The maximum number of ENIs that can be attached to the instance",
    )
)
IP_MAX = REGISTRY.register(
    Gauge(
        "awscni_ip_max",
        "The maximum number of IP addresses that can be allocated to the instance",
    )
)
RECONCILE_CNT = REGISTRY.register(
    Counter(
        "awscni_reconcile_count",
        "The number of times ipamd reconciles on ENIs and IP addresses",
        ("fn",),
    )
)
ADD_IP_CNT = REGISTRY.register(
    Counter("awscni_add_ip_req_count", "The number of add IP address request")
)
DEL_IP_CNT = REGISTRY.register(
    Counter(
        "awscni_del_ip_req_count",
        "The number of delete IP address request",
        ("reason",),
    )
)