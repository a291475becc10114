"""
Sensor contract and the shared polling helper.

A sensor is anything with ``kind``, ``poll()``, ``health()`` and
``attempt_recovery(err)``. Concrete detectors only implement the smaller
``Inspector`` protocol; ``MonitoredSensor`` wraps an inspector and supplies
the operational policy every sensor shares:

- per-poll timeout, result ring buffer and EMA response time
- health = success rate over recorded polls >= threshold AND the last
  success is recent
- bounded exponential-backoff recovery (1s, 2s, 4s, ...) that ends in the
  terminal ``failed`` state until ``reset()``
- an optional periodic timer independent of on-demand cycles

State machine: inactive -> active -> (error) recovering -> active | failed.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

import structlog

from vigil.constants import (
    DEFAULT_RESULT_BUFFER_SIZE,
    HEALTH_STALENESS_SECONDS,
    HEALTHY_SUCCESS_RATE,
)
from vigil.domain.models import (
    Issue,
    SensorKind,
    SensorResult,
    SensorState,
    status_for_issues,
    utc_now,
)
from vigil.errors import SensorPollError, SensorUnavailableError
from vigil.utils.concurrency import run_with_timeout

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class Inspection:
    """What one inspection of the workspace found."""

    issues: tuple[Issue, ...] = ()
    metrics: Mapping[str, float] = field(default_factory=dict)


class Inspector(Protocol):
    """Detector logic without any scheduling or failure policy."""

    @property
    def kind(self) -> SensorKind: ...

    async def inspect(self) -> Inspection: ...

    async def reset(self) -> None: ...


@dataclass(frozen=True, slots=True)
class FailureInfo:
    error: str
    error_type: str
    occurred_at: datetime
    retry_count: int


@dataclass(frozen=True, slots=True)
class SensorHealth:
    kind: SensorKind
    state: SensorState
    healthy: bool
    success_rate: float
    total_cycles: int
    successful_cycles: int
    failed_cycles: int
    average_response_time_seconds: float
    last_success_at: datetime | None = None
    last_failure: FailureInfo | None = None

    @property
    def active(self) -> bool:
        return self.state is SensorState.ACTIVE

    @property
    def healthy_since_last_failure(self) -> bool:
        return self.healthy


@runtime_checkable
class Sensor(Protocol):
    @property
    def kind(self) -> SensorKind: ...

    async def poll(self) -> SensorResult: ...

    def health(self) -> SensorHealth: ...

    async def attempt_recovery(self, error: BaseException) -> None: ...


@dataclass(frozen=True, slots=True)
class SensorConfig:
    enabled: bool = True
    poll_interval_seconds: float = 1.0
    timeout_seconds: float = 5.0
    max_retries: int = 3
    buffer_size: int = DEFAULT_RESULT_BUFFER_SIZE
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    health_success_rate: float = HEALTHY_SUCCESS_RATE
    health_staleness_seconds: float = HEALTH_STALENESS_SECONDS
    response_time_alpha: float = 0.1

    def __post_init__(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        if self.backoff_base_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("backoff delays must be >= 0")
        if not 0.0 <= self.health_success_rate <= 1.0:
            raise ValueError("health_success_rate must be within [0, 1]")
        if not 0.0 < self.response_time_alpha <= 1.0:
            raise ValueError("response_time_alpha must be within (0, 1]")

    @classmethod
    def from_config(
        cls,
        defaults: Mapping[str, object],
        overrides: Mapping[str, object] | None = None,
    ) -> SensorConfig:
        """Build from the ``[sensors.defaults]`` section plus a per-sensor overlay."""
        merged = {**defaults, **(overrides or {})}
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in merged.items() if key in known})  # type: ignore[arg-type]

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base_seconds * (2**attempt), self.backoff_max_seconds)


class MonitoredSensor:
    """Wraps an ``Inspector`` with timeouts, health tracking and recovery."""

    def __init__(
        self,
        inspector: Inspector,
        config: SensorConfig | None = None,
        *,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._inspector = inspector
        self._config = config or SensorConfig()
        self._clock = clock
        self._sleep = sleep
        self._logger = structlog.get_logger(__name__)

        self._state = SensorState.INACTIVE
        self._results: deque[SensorResult] = deque(maxlen=self._config.buffer_size)
        self._started_at = clock()
        self._total_cycles = 0
        self._successful_cycles = 0
        self._failed_cycles = 0
        self._average_response_time = 0.0
        self._last_success_at: datetime | None = None
        self._last_failure: FailureInfo | None = None
        self._retry_count = 0
        self._recovering = False
        self._monitor_task: asyncio.Task[None] | None = None

    @property
    def kind(self) -> SensorKind:
        return self._inspector.kind

    @property
    def state(self) -> SensorState:
        return self._state

    @property
    def config(self) -> SensorConfig:
        return self._config

    @property
    def inspector(self) -> Inspector:
        return self._inspector

    async def poll(self) -> SensorResult:
        if not self._config.enabled:
            raise SensorUnavailableError(self.kind.value, "sensor is disabled")
        if self._state in (SensorState.RECOVERING, SensorState.FAILED):
            raise SensorUnavailableError(self.kind.value, f"sensor is {self._state.value}")
        return await self._poll_once()

    def health(self) -> SensorHealth:
        success_rate = (
            self._successful_cycles / self._total_cycles if self._total_cycles else 1.0
        )
        reference = self._last_success_at or self._started_at
        age = (self._clock() - reference).total_seconds()
        healthy = (
            self._state is not SensorState.FAILED
            and success_rate >= self._config.health_success_rate
            and age < self._config.health_staleness_seconds
        )
        return SensorHealth(
            kind=self.kind,
            state=self._state,
            healthy=healthy,
            success_rate=success_rate,
            total_cycles=self._total_cycles,
            successful_cycles=self._successful_cycles,
            failed_cycles=self._failed_cycles,
            average_response_time_seconds=self._average_response_time,
            last_success_at=self._last_success_at,
            last_failure=self._last_failure,
        )

    async def attempt_recovery(self, error: BaseException) -> None:
        """Back off and probe until the inspector answers or retries run out."""
        if self._state is SensorState.FAILED or self._recovering:
            return
        self._recovering = True
        self._state = SensorState.RECOVERING
        self._logger.warning(
            "sensor_recovery_started",
            sensor=self.kind.value,
            error=str(error),
            max_retries=self._config.max_retries,
        )
        try:
            for attempt in range(self._config.max_retries):
                delay = self._config.backoff_delay(attempt)
                await self._sleep(delay)
                self._retry_count = attempt + 1
                try:
                    await self._inspector.reset()
                    await self._poll_once()
                except Exception as exc:  # noqa: BLE001
                    self._logger.warning(
                        "sensor_recovery_attempt_failed",
                        sensor=self.kind.value,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    continue
                self._state = SensorState.ACTIVE
                self._retry_count = 0
                self._logger.info("sensor_recovered", sensor=self.kind.value, attempt=attempt + 1)
                return

            self._state = SensorState.FAILED
            self._logger.error(
                "sensor_failed",
                sensor=self.kind.value,
                retries=self._config.max_retries,
                error=str(error),
            )
        finally:
            self._recovering = False

    def reset(self) -> None:
        """Leave the terminal ``failed`` state and start counting afresh."""
        self._state = SensorState.INACTIVE
        self._total_cycles = 0
        self._successful_cycles = 0
        self._failed_cycles = 0
        self._retry_count = 0
        self._last_failure = None
        self._started_at = self._clock()
        self._logger.info("sensor_reset", sensor=self.kind.value)

    def metrics(self) -> dict[str, float]:
        """Operational counters plus the metrics of the most recent result."""
        latest = dict(self._results[-1].metrics) if self._results else {}
        latest.update(
            {
                "total_cycles": float(self._total_cycles),
                "successful_cycles": float(self._successful_cycles),
                "failed_cycles": float(self._failed_cycles),
                "average_response_time_seconds": self._average_response_time,
                "retry_count": float(self._retry_count),
            }
        )
        return latest

    def recent_results(self, count: int = 10) -> tuple[SensorResult, ...]:
        if count <= 0:
            return ()
        return tuple(self._results)[-count:]

    def start_monitoring(self) -> None:
        """Start the periodic timer; a no-op when it is already running."""
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(), name=f"vigil-sensor-{self.kind.value}"
        )

    async def stop_monitoring(self) -> None:
        task = self._monitor_task
        self._monitor_task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def _monitor_loop(self) -> None:
        while self._state is not SensorState.FAILED:
            try:
                await self.poll()
            except SensorPollError as exc:
                await self.attempt_recovery(exc)
            except SensorUnavailableError:
                pass
            await self._sleep(self._config.poll_interval_seconds)

    async def _poll_once(self) -> SensorResult:
        started = time.perf_counter()
        self._total_cycles += 1
        try:
            inspection = await run_with_timeout(
                self._inspector.inspect(), self._config.timeout_seconds
            )
        except TimeoutError as exc:
            self._record_failure(exc)
            raise SensorPollError(
                self.kind.value, f"poll timed out after {self._config.timeout_seconds}s"
            ) from exc
        except Exception as exc:
            self._record_failure(exc)
            raise SensorPollError(self.kind.value, str(exc) or type(exc).__name__) from exc

        elapsed = time.perf_counter() - started
        self._record_success(elapsed)

        metrics = dict(inspection.metrics)
        metrics["response_time_seconds"] = elapsed
        metrics["success_rate"] = self._successful_cycles / self._total_cycles
        result = SensorResult(
            sensor_kind=self.kind,
            status=status_for_issues(inspection.issues),
            issues=inspection.issues,
            metrics=metrics,
            timestamp=self._clock(),
        )
        self._results.append(result)
        if self._state is SensorState.INACTIVE:
            self._state = SensorState.ACTIVE
        return result

    def _record_success(self, elapsed: float) -> None:
        self._successful_cycles += 1
        self._last_success_at = self._clock()
        alpha = self._config.response_time_alpha
        if self._successful_cycles == 1:
            self._average_response_time = elapsed
        else:
            self._average_response_time = (
                alpha * elapsed + (1 - alpha) * self._average_response_time
            )

    def _record_failure(self, exc: BaseException) -> None:
        self._failed_cycles += 1
        self._last_failure = FailureInfo(
            error=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            occurred_at=self._clock(),
            retry_count=self._retry_count,
        )


__all__ = [
    "Clock",
    "FailureInfo",
    "Inspection",
    "Inspector",
    "MonitoredSensor",
    "Sensor",
    "SensorConfig",
    "SensorHealth",
    "Sleep",
]
