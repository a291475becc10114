"""Unit tests for host snapshots and action preconditions."""

from __future__ import annotations

from collections import namedtuple
from typing import Any

import pytest

from vigil.domain.models import Action, ActionKind, RollbackKind, RollbackStrategy
from vigil.execution import system_state
from vigil.execution.system_state import (
    PreconditionPolicy,
    PreconditionSettings,
    PsutilProbe,
    SystemStateSnapshot,
)

_MB = 1024 * 1024


def _snapshot(
    *,
    memory_mb: int = 4096,
    cpu: float = 10.0,
    disk_mb: int = 20_000,
    network: bool = True,
) -> SystemStateSnapshot:
    return SystemStateSnapshot(
        memory_available_bytes=memory_mb * _MB,
        cpu_percent=cpu,
        disk_free_bytes=disk_mb * _MB,
        network_available=network,
    )


def _action(kind: ActionKind) -> Action:
    return Action(
        id="act-1",
        kind=kind,
        description="remediate",
        priority=1,
        estimated_duration_seconds=1.0,
        rollback=RollbackStrategy(kind=RollbackKind.AUTOMATIC),
    )


def test_healthy_host_meets_every_precondition() -> None:
    policy = PreconditionPolicy()

    for kind in ActionKind:
        assert policy.check(_action(kind), _snapshot()) == ()


def test_memory_and_cpu_apply_to_every_action() -> None:
    violations = PreconditionPolicy().check(
        _action(ActionKind.SYNTAX_CORRECTION), _snapshot(memory_mb=512, cpu=97.5)
    )

    assert violations == (
        "available memory 512 MB is below 1000 MB",
        "cpu usage 97.5% exceeds 90.0%",
    )


def test_network_only_matters_for_installation() -> None:
    policy = PreconditionPolicy()
    offline = _snapshot(network=False)

    assert policy.check(_action(ActionKind.DEPENDENCY_INSTALLATION), offline) == (
        "network is unavailable",
    )
    assert policy.check(_action(ActionKind.CONFIGURATION_FIX), offline) == ()


def test_disk_only_matters_for_refactoring() -> None:
    policy = PreconditionPolicy(PreconditionSettings(min_disk_free_mb=1000))
    low_disk = _snapshot(disk_mb=200)

    assert policy.check(_action(ActionKind.ARCHITECTURE_REFACTORING), low_disk) == (
        "free disk 200 MB is below 1000 MB",
    )
    assert policy.check(_action(ActionKind.SYNTAX_CORRECTION), low_disk) == ()


def test_disabled_policy_reports_nothing() -> None:
    policy = PreconditionPolicy(PreconditionSettings(enabled=False))

    assert policy.check(_action(ActionKind.SYNTAX_CORRECTION), _snapshot(memory_mb=1)) == ()


def test_snapshot_clamps_cpu_and_rejects_negative_bytes() -> None:
    assert _snapshot(cpu=140.0).cpu_percent == 100.0
    assert _snapshot(cpu=-3.0).cpu_percent == 0.0
    assert _snapshot(memory_mb=2).memory_available_mb == 2.0
    with pytest.raises(ValueError, match="byte counts"):
        SystemStateSnapshot(
            memory_available_bytes=-1, cpu_percent=0, disk_free_bytes=0, network_available=True
        )


def test_settings_from_config() -> None:
    settings = PreconditionSettings.from_config(
        {"executor": {"check_preconditions": False, "max_cpu_percent": 75, "disk_path": "/tmp"}}
    )

    assert not settings.enabled
    assert settings.max_cpu_percent == 75.0
    assert settings.min_available_memory_mb == 1000
    assert settings.disk_path == "/tmp"


def test_psutil_probe_reads_host_metrics(monkeypatch: pytest.MonkeyPatch) -> None:
    memory = namedtuple("memory", "available")
    disk = namedtuple("disk", "free")
    nic = namedtuple("nic", "isup")
    seen: dict[str, Any] = {}

    def disk_usage(path: str) -> Any:
        seen["path"] = path
        return disk(free=7 * _MB)

    monkeypatch.setattr(system_state.psutil, "virtual_memory", lambda: memory(available=3 * _MB))
    monkeypatch.setattr(system_state.psutil, "disk_usage", disk_usage)
    monkeypatch.setattr(system_state.psutil, "cpu_percent", lambda interval=None: 42.0)
    monkeypatch.setattr(
        system_state.psutil,
        "net_if_stats",
        lambda: {"lo": nic(isup=True), "eth0": nic(isup=False)},
    )

    snapshot = PsutilProbe(disk_path="/data").snapshot()

    assert snapshot.memory_available_mb == 3.0
    assert snapshot.disk_free_mb == 7.0
    assert snapshot.cpu_percent == 42.0
    assert not snapshot.network_available
    assert seen["path"] == "/data"
