"""Thread-safe in-memory metrics for cycles, sensors and executed actions."""

from __future__ import annotations

import json
import math
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from vigil.domain.models import JSONValue

_MetricLabels = tuple[tuple[str, str], ...]

_METRIC_NAME_MAX_LEN: Final[int] = 128


@dataclass(frozen=True, order=True, slots=True)
class _MetricKey:
    name: str
    labels: _MetricLabels


@dataclass(slots=True)
class _DistributionState:
    count: int = 0
    total: float = 0.0
    minimum: float | None = None
    maximum: float | None = None
    last: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.last = value
        if self.minimum is None or value < self.minimum:
            self.minimum = value
        if self.maximum is None or value > self.maximum:
            self.maximum = value

    def as_dict(self) -> dict[str, JSONValue]:
        return {
            "count": self.count,
            "sum": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "avg": self.total / self.count if self.count else 0.0,
            "last": self.last,
        }


class MetricsRegistry:
    """Counters, gauges and distributions keyed by name plus sorted labels."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._created_at = datetime.now(tz=UTC)
        self._counters: dict[_MetricKey, float] = {}
        self._gauges: dict[_MetricKey, float] = {}
        self._distributions: dict[_MetricKey, _DistributionState] = {}

    def inc(
        self,
        name: str,
        amount: float = 1.0,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Increment a counter by ``amount`` (>= 0)."""
        delta = _as_finite_float(amount, path="amount")
        if delta < 0:
            raise ValueError("counter increment amount must be >= 0")
        key = _metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + delta

    def set_gauge(
        self,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        key = _metric_key(name, labels)
        gauge_value = _as_finite_float(value, path="value")
        with self._lock:
            self._gauges[key] = gauge_value

    def observe(
        self,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> None:
        """Record a sample for rolling distribution statistics."""
        key = _metric_key(name, labels)
        sample = _as_finite_float(value, path="value")
        with self._lock:
            state = self._distributions.get(key)
            if state is None:
                state = _DistributionState()
                self._distributions[key] = state
            state.observe(sample)

    @contextmanager
    def timer(self, name: str, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        """Observe the wall-clock duration of the ``with`` body in seconds."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - started, labels=labels)

    def get_counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        key = _metric_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def get_gauge(self, name: str, *, labels: Mapping[str, str] | None = None) -> float | None:
        key = _metric_key(name, labels)
        with self._lock:
            return self._gauges.get(key)

    def get_distribution(
        self,
        name: str,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> dict[str, JSONValue] | None:
        key = _metric_key(name, labels)
        with self._lock:
            state = self._distributions.get(key)
            return None if state is None else state.as_dict()

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._distributions.clear()
            self._created_at = datetime.now(tz=UTC)

    def snapshot(self) -> dict[str, JSONValue]:
        """Return a deterministic snapshot with stable key ordering."""
        with self._lock:
            created_at = self._created_at
            counters = tuple(sorted(self._counters.items()))
            gauges = tuple(sorted(self._gauges.items()))
            distributions = tuple(
                (key, state.as_dict()) for key, state in sorted(self._distributions.items())
            )

        now = datetime.now(tz=UTC)
        return {
            "metadata": {
                "created_at": created_at.isoformat(timespec="seconds").replace("+00:00", "Z"),
                "snapshot_at": now.isoformat(timespec="seconds").replace("+00:00", "Z"),
                "uptime_seconds": max(0.0, (now - created_at).total_seconds()),
            },
            "counters": {_metric_identifier(key): value for key, value in counters},
            "gauges": {_metric_identifier(key): value for key, value in gauges},
            "distributions": {_metric_identifier(key): value for key, value in distributions},
        }

    def to_json(self, *, indent: int | None = None) -> str:
        payload = self.snapshot()
        if indent is None:
            return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return json.dumps(payload, sort_keys=True, indent=indent, ensure_ascii=False)


def _metric_key(name: str, labels: Mapping[str, str] | None) -> _MetricKey:
    normalized = name.strip() if isinstance(name, str) else ""
    if not normalized:
        raise ValueError("metric name must be a non-empty string")
    if len(normalized) > _METRIC_NAME_MAX_LEN:
        raise ValueError(f"metric name must be <= {_METRIC_NAME_MAX_LEN} characters")

    pairs: list[tuple[str, str]] = []
    for key, value in (labels or {}).items():
        key_name = str(key).strip()
        value_name = str(value).strip()
        if not key_name or not value_name:
            raise ValueError(f"label {key!r} must have a non-empty key and value")
        pairs.append((key_name, value_name))
    return _MetricKey(name=normalized, labels=tuple(sorted(pairs)))


def _metric_identifier(key: _MetricKey) -> str:
    if not key.labels:
        return key.name
    labels = ",".join(f"{k}={v}" for k, v in key.labels)
    return f"{key.name}{{{labels}}}"


def _as_finite_float(value: float, *, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path} must be numeric, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"{path} must be finite")
    return parsed


__all__ = ["MetricsRegistry"]
