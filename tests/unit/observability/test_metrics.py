"""Unit tests for the in-memory metrics registry."""

from __future__ import annotations

import json
import threading

import pytest

from vigil.observability.metrics import MetricsRegistry


def test_counters_are_keyed_by_sorted_labels() -> None:
    metrics = MetricsRegistry()
    metrics.inc("actions_executed", labels={"kind": "syntax_correction", "stage": "apply"})
    metrics.inc("actions_executed", 2, labels={"stage": "apply", "kind": "syntax_correction"})

    assert (
        metrics.get_counter(
            "actions_executed", labels={"kind": "syntax_correction", "stage": "apply"}
        )
        == 3.0
    )
    assert metrics.get_counter("actions_executed") == 0.0


def test_thread_safe_counter_increments() -> None:
    metrics = MetricsRegistry()

    def worker() -> None:
        for _ in range(500):
            metrics.inc("cycles_total")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert metrics.get_counter("cycles_total") == 4000.0


def test_gauges_and_distributions() -> None:
    metrics = MetricsRegistry()
    metrics.set_gauge("cycle_average_seconds", 0.5)
    for sample in (0.1, 0.3, 0.2):
        metrics.observe("cycle_duration_seconds", sample)

    assert metrics.get_gauge("cycle_average_seconds") == 0.5
    assert metrics.get_gauge("missing") is None
    distribution = metrics.get_distribution("cycle_duration_seconds")
    assert distribution is not None
    assert distribution["count"] == 3
    assert distribution["min"] == 0.1
    assert distribution["max"] == 0.3
    assert distribution["last"] == 0.2
    assert distribution["avg"] == pytest.approx(0.2)


def test_invalid_values_are_rejected() -> None:
    metrics = MetricsRegistry()
    with pytest.raises(ValueError, match=">= 0"):
        metrics.inc("cycles_total", -1)
    with pytest.raises(ValueError, match="finite"):
        metrics.observe("cycle_duration_seconds", float("nan"))
    with pytest.raises(ValueError, match="numeric"):
        metrics.set_gauge("flag", True)
    with pytest.raises(ValueError, match="non-empty"):
        metrics.inc(" ")


def test_snapshot_is_deterministic_json() -> None:
    metrics = MetricsRegistry()
    metrics.inc("rollbacks", labels={"kind": "security_hardening"})
    metrics.observe("action_duration_seconds", 1.5)

    payload = json.loads(metrics.to_json())

    assert payload["counters"] == {"rollbacks{kind=security_hardening}": 1.0}
    assert payload["distributions"]["action_duration_seconds"]["count"] == 1
    metrics.reset()
    assert json.loads(metrics.to_json())["counters"] == {}


def test_timer_observes_elapsed_time() -> None:
    metrics = MetricsRegistry()
    with metrics.timer("poll_seconds", labels={"sensor": "syntax"}):
        pass

    distribution = metrics.get_distribution("poll_seconds", labels={"sensor": "syntax"})
    assert distribution is not None
    assert distribution["count"] == 1
