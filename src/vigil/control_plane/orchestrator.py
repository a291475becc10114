"""
Orchestrator cycle driver.

Purpose
- Run one monitoring cycle: registry pass, issue fan-in, correlation analysis,
  critical subset, plan.
- Keep cycle bookkeeping (counters, EMA duration, per-sensor failures) and a
  bounded history of interference patterns.

Failure model
- Sensor failures are contained by the registry.
- Any other ``Exception`` inside a cycle becomes the emergency plan; callers of
  ``run_cycle`` only ever see a well-formed ``Plan``. ``CancelledError``
  propagates.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType

import structlog

from vigil.config.schema import config_section
from vigil.constants import EMERGENCY_CRITICAL_PATH
from vigil.control_plane.correlation import (
    CorrelationSettings,
    InterferencePattern,
    analyze,
    cap_issues,
)
from vigil.domain import ids
from vigil.domain.models import (
    Action,
    ActionKind,
    Issue,
    Plan,
    RollbackKind,
    RollbackStrategy,
    SensorKind,
    Severity,
    utc_now,
)
from vigil.observability.events import SensorEvent, SensorEventType
from vigil.observability.logging import correlation_scope
from vigil.observability.metrics import MetricsRegistry
from vigil.planning.planner import ActionPlanner
from vigil.sensors.base import Clock
from vigil.sensors.registry import SensorRegistry


class CycleState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PLAN_EMITTED = "plan_emitted"
    EMERGENCY_PLAN_EMITTED = "emergency_plan_emitted"


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    emergency_confidence: float = 0.5
    cycle_ema_alpha: float = 0.1

    def __post_init__(self) -> None:
        if not 0.0 <= self.emergency_confidence <= 1.0:
            raise ValueError("emergency_confidence must be within [0, 1]")
        if not 0.0 < self.cycle_ema_alpha <= 1.0:
            raise ValueError("cycle_ema_alpha must be within (0, 1]")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> OrchestratorSettings:
        section = config_section(config, "orchestrator")
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in section.items() if key in known})  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class SensorFailure:
    sensor_kind: SensorKind
    error: str
    failed_at: datetime


@dataclass(frozen=True, slots=True)
class MonitoringState:
    state: CycleState = CycleState.IDLE
    total_cycles: int = 0
    successful_cycles: int = 0
    failed_cycles: int = 0
    average_cycle_seconds: float = 0.0
    last_cycle_at: datetime | None = None
    active_sensors: int = 0
    critical_issues_detected: int = 0
    sensor_failures: Mapping[SensorKind, SensorFailure] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sensor_failures", MappingProxyType(dict(self.sensor_failures)))


def emergency_plan(confidence: float = 0.5) -> Plan:
    """Single generic recovery action used when a cycle cannot be analyzed."""
    action = Action(
        id=ids.action_id(),
        kind=ActionKind.EMERGENCY_RECOVERY,
        description="Emergency recovery after orchestration failure",
        priority=int(Severity.CRITICAL),
        estimated_duration_seconds=1.0,
        rollback=RollbackStrategy(kind=RollbackKind.AUTOMATIC, time_limit_seconds=5.0),
        severity=Severity.CRITICAL,
    )
    return Plan(
        id=ids.plan_id(),
        ordered_actions=(action,),
        estimated_time_seconds=action.estimated_duration_seconds,
        confidence=confidence,
        critical_path=EMERGENCY_CRITICAL_PATH,
        parallel_bands=((action.id,),),
        emergency=True,
    )


class Orchestrator:
    """Serializes cycles over one registry and one planner."""

    def __init__(
        self,
        registry: SensorRegistry,
        planner: ActionPlanner,
        correlation: CorrelationSettings | None = None,
        settings: OrchestratorSettings | None = None,
        metrics: MetricsRegistry | None = None,
        *,
        clock: Clock = utc_now,
        monotonic: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._registry = registry
        self._planner = planner
        self._correlation = correlation or CorrelationSettings()
        self._settings = settings or OrchestratorSettings()
        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._clock = clock
        self._monotonic = monotonic
        self._logger = structlog.get_logger(__name__)

        self._lock = asyncio.Lock()
        self._state = MonitoringState()
        self._failures: dict[SensorKind, SensorFailure] = {}
        self._patterns: deque[InterferencePattern] = deque(maxlen=self._correlation.history_size)
        self._subscriptions = (
            registry.events.subscribe(SensorEventType.FAILED, self._on_sensor_failed),
            registry.events.subscribe(SensorEventType.RECOVERED, self._on_sensor_recovered),
        )

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def state(self) -> MonitoringState:
        return replace(
            self._state,
            active_sensors=len(self._registry),
            sensor_failures=dict(self._failures),
        )

    def interference_history(self) -> tuple[InterferencePattern, ...]:
        return tuple(self._patterns)

    async def run_cycle(self) -> Plan:
        async with self._lock:
            cycle_id = ids.cycle_id()
            with correlation_scope(cycle_id=cycle_id):
                return await self._run_locked(cycle_id)

    def close(self) -> None:
        for token in self._subscriptions:
            self._registry.events.unsubscribe(token)

    async def _run_locked(self, cycle_id: str) -> Plan:
        self._state = replace(self._state, state=CycleState.RUNNING)
        started = self._monotonic()
        try:
            plan = await self._analyze_and_plan()
        except asyncio.CancelledError:
            self._state = replace(self._state, state=CycleState.IDLE)
            raise
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "orchestration_failed",
                cycle_id=cycle_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            plan = emergency_plan(self._settings.emergency_confidence)
            self._finish_cycle(started, succeeded=False, state=CycleState.EMERGENCY_PLAN_EMITTED)
            return plan

        self._finish_cycle(started, succeeded=True, state=CycleState.PLAN_EMITTED)
        self._logger.info(
            "cycle_completed",
            cycle_id=cycle_id,
            plan_id=plan.id,
            actions=len(plan.ordered_actions),
            confidence=plan.confidence,
        )
        return plan

    async def _analyze_and_plan(self) -> Plan:
        results = await self._registry.run_pass()
        issues: list[Issue] = [issue for result in results.values() for issue in result.issues]
        capped = cap_issues(issues, self._correlation.max_issues_per_cycle)
        if len(capped) < len(issues):
            self._logger.warning(
                "cycle_issues_capped", detected=len(issues), kept=len(capped)
            )

        pattern = analyze(capped, tuple(results.values()), self._correlation)
        self._patterns.append(pattern)
        high = sum(1 for issue in capped if issue.severity >= Severity.HIGH)
        self._state = replace(
            self._state, critical_issues_detected=self._state.critical_issues_detected + high
        )
        self._metrics.inc("critical_issues", len(pattern.critical_issues))
        self._logger.debug(
            "cycle_analyzed",
            sensors=len(results),
            issues=len(capped),
            critical=len(pattern.critical_issues),
            interference_strength=pattern.interference_strength,
            resonance_frequency=pattern.resonance_frequency,
            entanglement_level=pattern.entanglement_level,
        )
        return self._planner.build_plan(pattern.critical_issues)

    def _finish_cycle(self, started: float, *, succeeded: bool, state: CycleState) -> None:
        elapsed = max(0.0, self._monotonic() - started)
        current = self._state
        total = current.total_cycles + 1
        if current.total_cycles == 0:
            average = elapsed
        else:
            alpha = self._settings.cycle_ema_alpha
            average = alpha * elapsed + (1.0 - alpha) * current.average_cycle_seconds
        self._state = replace(
            current,
            state=state,
            total_cycles=total,
            successful_cycles=current.successful_cycles + (1 if succeeded else 0),
            failed_cycles=current.failed_cycles + (0 if succeeded else 1),
            average_cycle_seconds=average,
            last_cycle_at=self._clock(),
        )
        self._metrics.inc("cycles_total")
        if not succeeded:
            self._metrics.inc("cycles_failed")
        self._metrics.observe("cycle_duration_seconds", elapsed)
        self._metrics.set_gauge("cycle_average_seconds", average)

    def _on_sensor_failed(self, event: SensorEvent) -> None:
        self._failures[event.sensor_kind] = SensorFailure(
            sensor_kind=event.sensor_kind,
            error=str(event.payload.get("error", "")),
            failed_at=event.occurred_at,
        )

    def _on_sensor_recovered(self, event: SensorEvent) -> None:
        self._failures.pop(event.sensor_kind, None)


__all__ = [
    "CycleState",
    "MonitoringState",
    "Orchestrator",
    "OrchestratorSettings",
    "SensorFailure",
    "emergency_plan",
]
