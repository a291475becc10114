"""
Sensor registry.

Purpose
- Own the lifecycle of every registered sensor (one per kind).
- Run one inspection pass per cycle: fan out every ``poll()`` concurrently,
  isolate each failure as a synthetic critical result, fan back in.
- Track aggregate health and, for opted-in sensors, a pairwise correlation
  table that strengthens whenever two sensors are critical in the same pass.

Passes are serialized by an ``asyncio.Lock``; the sensor map and correlation
table are mutated only by this instance.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from types import MappingProxyType
from typing import Final

import structlog

from vigil.config.schema import config_section
from vigil.constants import (
    DEFAULT_INTERFERENCE_HISTORY_SIZE,
    DEFAULT_MAX_SENSORS,
    NEUTRAL_SENSOR_CORRELATION,
)
from vigil.domain.models import (
    ResultStatus,
    SensorKind,
    SensorResult,
    SensorState,
    utc_now,
)
from vigil.errors import DuplicateSensorError, RegistryCapacityError
from vigil.observability.events import EventBus, SensorEventType
from vigil.sensors.base import Clock, Sensor, SensorHealth, Sleep
from vigil.utils.concurrency import run_with_timeout

CRITICAL_CORRELATION: Final[str] = "critical_correlation"


@dataclass(frozen=True, slots=True)
class RegistrySettings:
    max_sensors: int = DEFAULT_MAX_SENSORS
    correlation_enabled: bool = True
    correlation_learning_rate: float = 0.2
    health_check_interval_seconds: float = 30.0
    pass_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_sensors < 1:
            raise ValueError("max_sensors must be >= 1")
        if not 0.0 < self.correlation_learning_rate <= 1.0:
            raise ValueError("correlation_learning_rate must be within (0, 1]")
        if self.health_check_interval_seconds <= 0:
            raise ValueError("health_check_interval_seconds must be > 0")
        if self.pass_timeout_seconds is not None and self.pass_timeout_seconds <= 0:
            raise ValueError("pass_timeout_seconds must be > 0 when set")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> RegistrySettings:
        section = config_section(config, "registry")
        pass_timeout = float(section.get("pass_timeout_seconds", 0.0))
        return cls(
            max_sensors=int(section.get("max_sensors", DEFAULT_MAX_SENSORS)),
            correlation_enabled=bool(section.get("correlation_enabled", True)),
            correlation_learning_rate=float(section.get("correlation_learning_rate", 0.2)),
            health_check_interval_seconds=float(
                section.get("health_check_interval_seconds", 30.0)
            ),
            pass_timeout_seconds=pass_timeout if pass_timeout > 0 else None,
        )


@dataclass(frozen=True, slots=True)
class SensorRegistration:
    sensor: Sensor
    priority: int
    depends_on_kinds: tuple[SensorKind, ...] = ()
    correlation_opt_in: bool = True
    registered_at: datetime = field(default_factory=utc_now)

    @property
    def kind(self) -> SensorKind:
        return self.sensor.kind


@dataclass(frozen=True, slots=True)
class SensorCorrelation:
    strength: float = NEUTRAL_SENSOR_CORRELATION
    co_critical_count: int = 0
    last_updated: datetime | None = None


@dataclass(frozen=True, slots=True)
class CorrelationPattern:
    pattern_type: str
    sensors: tuple[SensorKind, ...]
    strength: float
    observed_at: datetime


@dataclass(frozen=True, slots=True)
class RegistryHealth:
    total_sensors: int
    active_sensors: int
    healthy_sensors: int
    failed_sensors: int
    average_response_time_seconds: float
    correlation_enabled: bool
    checked_at: datetime
    sensors: Mapping[SensorKind, SensorHealth] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sensors", MappingProxyType(dict(self.sensors)))


class SensorRegistry:
    """Owned registry instance; pass it by handle to collaborators."""

    def __init__(
        self,
        settings: RegistrySettings | None = None,
        events: EventBus | None = None,
        *,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings or RegistrySettings()
        self._events = events if events is not None else EventBus()
        self._clock = clock
        self._sleep = sleep
        self._logger = structlog.get_logger(__name__)

        self._registrations: dict[SensorKind, SensorRegistration] = {}
        self._correlations: dict[tuple[SensorKind, SensorKind], SensorCorrelation] = {}
        self._patterns: deque[CorrelationPattern] = deque(
            maxlen=DEFAULT_INTERFERENCE_HISTORY_SIZE
        )
        self._pass_lock = asyncio.Lock()
        self._recovery_tasks: dict[SensorKind, asyncio.Task[None]] = {}
        self._health_task: asyncio.Task[None] | None = None
        self._last_health: RegistryHealth | None = None

    @property
    def settings(self) -> RegistrySettings:
        return self._settings

    @property
    def events(self) -> EventBus:
        return self._events

    def __len__(self) -> int:
        return len(self._registrations)

    def __contains__(self, kind: object) -> bool:
        return kind in self._registrations

    def register(
        self,
        sensor: Sensor,
        *,
        priority: int = 1,
        depends_on_kinds: Iterable[SensorKind] = (),
        correlation_opt_in: bool = True,
    ) -> SensorRegistration:
        kind = sensor.kind
        if kind in self._registrations:
            raise DuplicateSensorError(f"a {kind.value} sensor is already registered")
        if len(self._registrations) >= self._settings.max_sensors:
            raise RegistryCapacityError(
                f"registry is at its maximum of {self._settings.max_sensors} sensors"
            )

        registration = SensorRegistration(
            sensor=sensor,
            priority=priority,
            depends_on_kinds=tuple(depends_on_kinds),
            correlation_opt_in=correlation_opt_in,
            registered_at=self._clock(),
        )
        self._registrations[kind] = registration
        if correlation_opt_in:
            for other in self._registrations.values():
                if other.kind != kind and other.correlation_opt_in:
                    self._correlations[_pair(kind, other.kind)] = SensorCorrelation()

        self._logger.info(
            "sensor_registered",
            sensor=kind.value,
            priority=priority,
            correlation_opt_in=correlation_opt_in,
        )
        self._events.emit(SensorEventType.REGISTERED, kind, priority=priority)
        return registration

    def unregister(self, kind: SensorKind) -> bool:
        registration = self._registrations.pop(kind, None)
        if registration is None:
            return False
        for pair in [pair for pair in self._correlations if kind in pair]:
            del self._correlations[pair]
        task = self._recovery_tasks.pop(kind, None)
        if task is not None:
            task.cancel()
        self._logger.info("sensor_unregistered", sensor=kind.value)
        self._events.emit(SensorEventType.UNREGISTERED, kind)
        return True

    def get(self, kind: SensorKind) -> Sensor | None:
        registration = self._registrations.get(kind)
        return None if registration is None else registration.sensor

    def registration(self, kind: SensorKind) -> SensorRegistration | None:
        return self._registrations.get(kind)

    def sensors_by_priority(self) -> tuple[SensorRegistration, ...]:
        """Registrations by descending priority, then kind for stable ties."""
        return tuple(
            sorted(self._registrations.values(), key=lambda r: (-r.priority, r.kind.value))
        )

    async def run_pass(self) -> dict[SensorKind, SensorResult]:
        """Poll every sensor concurrently; always one result per registered kind."""
        async with self._pass_lock:
            registrations = self.sensors_by_priority()
            if not registrations:
                return {}
            outcomes = await asyncio.gather(
                *(self._poll_isolated(registration) for registration in registrations)
            )
            results = {
                registration.kind: result
                for registration, result in zip(registrations, outcomes, strict=True)
            }
            for kind, result in results.items():
                self._events.emit(
                    SensorEventType.RESULT_AVAILABLE,
                    kind,
                    status=result.status.value,
                    issue_count=len(result.issues),
                    error=result.error,
                )
            if self._settings.correlation_enabled:
                self._update_correlations(results)
            return results

    def health(self) -> RegistryHealth:
        per_sensor = {kind: reg.sensor.health() for kind, reg in self._registrations.items()}
        polled = [h for h in per_sensor.values() if h.total_cycles > 0]
        average = (
            sum(h.average_response_time_seconds for h in polled) / len(polled) if polled else 0.0
        )
        snapshot = RegistryHealth(
            total_sensors=len(per_sensor),
            active_sensors=sum(1 for h in per_sensor.values() if h.state is SensorState.ACTIVE),
            healthy_sensors=sum(1 for h in per_sensor.values() if h.healthy),
            failed_sensors=sum(1 for h in per_sensor.values() if h.state is SensorState.FAILED),
            average_response_time_seconds=average,
            correlation_enabled=self._settings.correlation_enabled,
            checked_at=self._clock(),
            sensors=per_sensor,
        )
        self._last_health = snapshot
        return snapshot

    @property
    def last_health(self) -> RegistryHealth | None:
        return self._last_health

    def correlation(self, first: SensorKind, second: SensorKind) -> SensorCorrelation | None:
        return self._correlations.get(_pair(first, second))

    def correlation_table(self) -> dict[tuple[SensorKind, SensorKind], SensorCorrelation]:
        return dict(self._correlations)

    def correlation_patterns(self) -> tuple[CorrelationPattern, ...]:
        return tuple(self._patterns)

    def start_all(self) -> None:
        """Start each sensor's own periodic timer, highest priority first."""
        for registration in self.sensors_by_priority():
            start = getattr(registration.sensor, "start_monitoring", None)
            if callable(start):
                start()
        self._logger.info("sensors_started", count=len(self._registrations))

    def start_health_monitoring(self) -> None:
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.create_task(
            self._health_loop(), name="vigil-registry-health"
        )

    def reset_sensor(self, kind: SensorKind) -> bool:
        """Externally reset a sensor out of the terminal ``failed`` state."""
        sensor = self.get(kind)
        reset = getattr(sensor, "reset", None)
        if sensor is None or not callable(reset):
            return False
        reset()
        return True

    async def wait_for_recoveries(self) -> None:
        pending = tuple(self._recovery_tasks.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks: list[asyncio.Task[None]] = list(self._recovery_tasks.values())
        if self._health_task is not None:
            tasks.append(self._health_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task

        for registration in self._registrations.values():
            stop = getattr(registration.sensor, "stop_monitoring", None)
            if callable(stop):
                await _maybe_await(stop())

        self._health_task = None
        self._recovery_tasks.clear()
        self._registrations.clear()
        self._correlations.clear()
        self._patterns.clear()
        self._logger.info("registry_shutdown")

    async def _poll_isolated(self, registration: SensorRegistration) -> SensorResult:
        sensor = registration.sensor
        timeout = self._settings.pass_timeout_seconds
        try:
            if timeout is not None:
                return await run_with_timeout(sensor.poll(), timeout)
            return await sensor.poll()
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            self._logger.warning(
                "sensor_poll_failed",
                sensor=registration.kind.value,
                error=error,
                error_type=type(exc).__name__,
            )
            self._schedule_recovery(sensor, exc)
            return SensorResult(
                sensor_kind=registration.kind,
                status=ResultStatus.CRITICAL,
                metrics={"error": 1.0},
                timestamp=self._clock(),
                error=error,
            )

    def _schedule_recovery(self, sensor: Sensor, error: Exception) -> None:
        kind = sensor.kind
        existing = self._recovery_tasks.get(kind)
        if existing is not None and not existing.done():
            return
        if sensor.health().state is SensorState.FAILED:
            # Terminal until reset_sensor(); FAILED was already announced.
            return
        task = asyncio.create_task(
            self._recover(sensor, error), name=f"vigil-recovery-{kind.value}"
        )
        self._recovery_tasks[kind] = task

        def _forget(done: asyncio.Task[None]) -> None:
            if self._recovery_tasks.get(kind) is done:
                del self._recovery_tasks[kind]

        task.add_done_callback(_forget)

    async def _recover(self, sensor: Sensor, error: Exception) -> None:
        kind = sensor.kind
        before = sensor.health().state
        try:
            await sensor.attempt_recovery(error)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("sensor_recovery_crashed", sensor=kind.value, error=str(exc))
        if self._registrations.get(kind) is None:
            return
        state = sensor.health().state
        if state is SensorState.FAILED and before is not SensorState.FAILED:
            self._events.emit(SensorEventType.FAILED, kind, error=str(error))
        elif state is SensorState.ACTIVE:
            self._events.emit(SensorEventType.RECOVERED, kind)

    def _update_correlations(self, results: Mapping[SensorKind, SensorResult]) -> None:
        critical = sorted(
            kind for kind, result in results.items() if result.status is ResultStatus.CRITICAL
        )
        if len(critical) < 2:
            return
        now = self._clock()
        rate = self._settings.correlation_learning_rate
        opted_in = [kind for kind in critical if self._registrations[kind].correlation_opt_in]
        for first, second in combinations(opted_in, 2):
            pair = _pair(first, second)
            current = self._correlations.get(pair, SensorCorrelation())
            self._correlations[pair] = SensorCorrelation(
                strength=current.strength + rate * (1.0 - current.strength),
                co_critical_count=current.co_critical_count + 1,
                last_updated=now,
            )
        pattern = CorrelationPattern(
            pattern_type=CRITICAL_CORRELATION,
            sensors=tuple(critical),
            strength=len(critical) / len(results),
            observed_at=now,
        )
        self._patterns.append(pattern)
        self._logger.info(
            "critical_correlation_detected",
            sensors=[kind.value for kind in critical],
            strength=pattern.strength,
        )

    async def _health_loop(self) -> None:
        while True:
            await self._sleep(self._settings.health_check_interval_seconds)
            snapshot = self.health()
            log = self._logger.warning if snapshot.failed_sensors else self._logger.info
            log(
                "registry_health",
                total=snapshot.total_sensors,
                active=snapshot.active_sensors,
                healthy=snapshot.healthy_sensors,
                failed=snapshot.failed_sensors,
                average_response_time_seconds=snapshot.average_response_time_seconds,
            )


def _pair(first: SensorKind, second: SensorKind) -> tuple[SensorKind, SensorKind]:
    return (first, second) if first.value <= second.value else (second, first)


async def _maybe_await(value: Awaitable[None] | None) -> None:
    if value is not None:
        await value


__all__ = [
    "CRITICAL_CORRELATION",
    "CorrelationPattern",
    "RegistryHealth",
    "RegistrySettings",
    "SensorCorrelation",
    "SensorRegistration",
    "SensorRegistry",
]
