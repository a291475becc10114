"""Host resource snapshots and the precondition checks run before each action."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Final, Protocol

import psutil

from vigil.config.schema import config_section
from vigil.domain.models import Action, ActionKind, utc_now

_BYTES_PER_MB: Final[int] = 1024 * 1024

# Kinds that reach the network, and kinds that rewrite many files at once.
NETWORK_BOUND_KINDS: Final[frozenset[ActionKind]] = frozenset(
    {ActionKind.DEPENDENCY_INSTALLATION}
)
DISK_HEAVY_KINDS: Final[frozenset[ActionKind]] = frozenset(
    {ActionKind.ARCHITECTURE_REFACTORING}
)


@dataclass(frozen=True, slots=True)
class SystemStateSnapshot:
    """Point-in-time host metrics used for action preconditions."""

    memory_available_bytes: int
    cpu_percent: float
    disk_free_bytes: int
    network_available: bool
    captured_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.memory_available_bytes < 0 or self.disk_free_bytes < 0:
            raise ValueError("byte counts must be >= 0")
        object.__setattr__(self, "cpu_percent", max(0.0, min(100.0, float(self.cpu_percent))))

    @property
    def memory_available_mb(self) -> float:
        return self.memory_available_bytes / _BYTES_PER_MB

    @property
    def disk_free_mb(self) -> float:
        return self.disk_free_bytes / _BYTES_PER_MB


class SystemStateProbe(Protocol):
    """Source of host snapshots (injectable for tests)."""

    def snapshot(self) -> SystemStateSnapshot: ...


class PsutilProbe:
    """Collect host metrics with ``psutil``."""

    def __init__(self, *, disk_path: Path | str = "/") -> None:
        self._disk_path = Path(disk_path)

    def snapshot(self) -> SystemStateSnapshot:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage(str(self._disk_path))
        return SystemStateSnapshot(
            memory_available_bytes=int(memory.available),
            cpu_percent=float(psutil.cpu_percent(interval=None)),
            disk_free_bytes=int(disk.free),
            network_available=_network_available(),
        )


@dataclass(frozen=True, slots=True)
class PreconditionSettings:
    enabled: bool = True
    min_available_memory_mb: int = 1000
    max_cpu_percent: float = 90.0
    min_disk_free_mb: int = 5000
    disk_path: str = "/"

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> PreconditionSettings:
        section = config_section(config, "executor")
        return cls(
            enabled=bool(section.get("check_preconditions", True)),
            min_available_memory_mb=int(section.get("min_available_memory_mb", 1000)),  # type: ignore[call-overload]
            max_cpu_percent=float(section.get("max_cpu_percent", 90.0)),  # type: ignore[arg-type]
            min_disk_free_mb=int(section.get("min_disk_free_mb", 5000)),  # type: ignore[call-overload]
            disk_path=str(section.get("disk_path", "/")),
        )


class PreconditionPolicy:
    def __init__(self, settings: PreconditionSettings | None = None) -> None:
        self._settings = settings or PreconditionSettings()

    @property
    def settings(self) -> PreconditionSettings:
        return self._settings

    def check(self, action: Action, snapshot: SystemStateSnapshot) -> tuple[str, ...]:
        """Unmet preconditions for ``action``; empty when it may run."""
        if not self._settings.enabled:
            return ()
        violations: list[str] = []
        if snapshot.memory_available_mb < self._settings.min_available_memory_mb:
            violations.append(
                f"available memory {snapshot.memory_available_mb:.0f} MB is below "
                f"{self._settings.min_available_memory_mb} MB"
            )
        if snapshot.cpu_percent > self._settings.max_cpu_percent:
            violations.append(
                f"cpu usage {snapshot.cpu_percent:.1f}% exceeds {self._settings.max_cpu_percent}%"
            )
        if action.kind in NETWORK_BOUND_KINDS and not snapshot.network_available:
            violations.append("network is unavailable")
        if (
            action.kind in DISK_HEAVY_KINDS
            and snapshot.disk_free_mb < self._settings.min_disk_free_mb
        ):
            violations.append(
                f"free disk {snapshot.disk_free_mb:.0f} MB is below "
                f"{self._settings.min_disk_free_mb} MB"
            )
        return tuple(violations)


def _network_available() -> bool:
    for name, stats in psutil.net_if_stats().items():
        if stats.isup and not name.startswith("lo"):
            return True
    return False


__all__ = [
    "DISK_HEAVY_KINDS",
    "NETWORK_BOUND_KINDS",
    "PreconditionPolicy",
    "PreconditionSettings",
    "PsutilProbe",
    "SystemStateProbe",
    "SystemStateSnapshot",
]
