"""
Monitoring service: the composition root.

Owns one registry, planner, orchestrator and executor wired from a validated
config mapping and exposes the public operations: register/unregister a
sensor, run a cycle, execute a plan, health and execution statistics.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import structlog

from vigil.config.loader import load_config
from vigil.config.schema import (
    assert_valid_config,
    config_section,
    default_config,
    merge_config,
)
from vigil.control_plane.correlation import CorrelationSettings
from vigil.control_plane.orchestrator import MonitoringState, Orchestrator, OrchestratorSettings
from vigil.domain import ids
from vigil.domain.models import ActionKind, Plan, SensorKind
from vigil.execution.executor import ExecutionReport, Executor, ExecutorSettings, Remediator
from vigil.execution.history import ExecutionHistory, ExecutionStatistics
from vigil.execution.system_state import (
    PreconditionPolicy,
    PreconditionSettings,
    PsutilProbe,
    SystemStateProbe,
)
from vigil.execution.verification import ActionVerifier, SensorRecheckVerifier
from vigil.observability.events import EventBus
from vigil.observability.logging import StructuredLoggingHandle, setup_logging, shutdown_logging
from vigil.observability.metrics import MetricsRegistry
from vigil.planning.planner import ActionPlanner, PlannerSettings, RollbackStepFactory
from vigil.planning.templates import TemplateCatalog, default_catalog, load_templates
from vigil.sensors.base import MonitoredSensor, Sensor, SensorConfig, Sleep
from vigil.sensors.dependency import DependencySensor
from vigil.sensors.registry import (
    RegistryHealth,
    RegistrySettings,
    SensorRegistration,
    SensorRegistry,
)
from vigil.sensors.syntax import SyntaxSensor
from vigil.sensors.workspace import FileProvider, PackageManifest

SYNTAX_SENSOR_PRIORITY = 10
DEPENDENCY_SENSOR_PRIORITY = 8


class MonitoringService:
    def __init__(
        self,
        config: Mapping[str, object] | None = None,
        *,
        catalog: TemplateCatalog | None = None,
        verifier: ActionVerifier | None = None,
        remediators: Mapping[ActionKind, Remediator] | None = None,
        probe: SystemStateProbe | None = None,
        rollback_steps: RollbackStepFactory | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        effective = assert_valid_config(merge_config(default_config(), config or {}))
        self._config = effective
        self._sleep = sleep
        self._logger = structlog.get_logger(__name__)
        self._logging: StructuredLoggingHandle | None = None

        self._metrics = MetricsRegistry()
        self._events = EventBus()
        self._registry = SensorRegistry(
            RegistrySettings.from_config(effective), self._events, sleep=sleep
        )

        executor_section = config_section(effective, "executor")
        self._history = ExecutionHistory(
            max_size=int(executor_section.get("history_size", 1000))  # type: ignore[call-overload]
        )
        correlation = CorrelationSettings.from_config(effective)
        planner_settings = PlannerSettings.from_config(effective)
        self._planner = ActionPlanner(
            catalog if catalog is not None else _catalog_for(planner_settings),
            self._history,
            planner_settings,
            correlation,
            rollback_steps=rollback_steps,
        )
        self._orchestrator = Orchestrator(
            self._registry,
            self._planner,
            correlation,
            OrchestratorSettings.from_config(effective),
            self._metrics,
        )
        preconditions = PreconditionSettings.from_config(effective)
        if probe is None and preconditions.enabled:
            probe = PsutilProbe(disk_path=preconditions.disk_path)
        self._executor = Executor(
            verifier if verifier is not None else SensorRecheckVerifier(self._registry),
            self._history,
            remediators=remediators,
            probe=probe,
            preconditions=PreconditionPolicy(preconditions),
            settings=ExecutorSettings.from_config(effective),
            metrics=self._metrics,
        )

    @classmethod
    def from_config_file(
        cls,
        path: str | Path | None = None,
        *,
        profile: str | None = None,
        configure_logging: bool = True,
        **kwargs: Any,
    ) -> MonitoringService:
        """Build from ``vigil.toml`` and, by default, start its log pipeline."""
        service = cls(load_config(path, profile=profile), **kwargs)
        if configure_logging:
            service.start_logging()
        return service

    @property
    def config(self) -> Mapping[str, object]:
        return self._config

    @property
    def registry(self) -> SensorRegistry:
        return self._registry

    @property
    def planner(self) -> ActionPlanner:
        return self._planner

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def logging_handle(self) -> StructuredLoggingHandle | None:
        return self._logging

    def start_logging(self, run_id: str | None = None) -> StructuredLoggingHandle:
        """Install the JSON-lines log pipeline described by ``[observability]``."""
        if self._logging is not None and not self._logging.is_shutdown:
            return self._logging
        self._logging = setup_logging(
            config_section(self._config, "observability"),
            run_id=run_id or ids.run_id(),
        )
        self._logger.info(
            "logging_started",
            run_id=self._logging.run_id,
            log_path=str(self._logging.log_path),
        )
        return self._logging

    def register_sensor(
        self,
        sensor: Sensor,
        *,
        priority: int = 1,
        depends_on_kinds: Iterable[SensorKind] = (),
        correlation_opt_in: bool = True,
    ) -> SensorRegistration:
        return self._registry.register(
            sensor,
            priority=priority,
            depends_on_kinds=depends_on_kinds,
            correlation_opt_in=correlation_opt_in,
        )

    def unregister_sensor(self, kind: SensorKind) -> bool:
        return self._registry.unregister(kind)

    def install_default_sensors(
        self, files: FileProvider, manifest: PackageManifest | None = None
    ) -> tuple[MonitoredSensor, MonitoredSensor]:
        """Register the syntax and dependency sensors with their configured policies."""
        syntax = MonitoredSensor(
            SyntaxSensor(files), self.sensor_config(SensorKind.SYNTAX), sleep=self._sleep
        )
        dependency = MonitoredSensor(
            DependencySensor(files, manifest),
            self.sensor_config(SensorKind.DEPENDENCY),
            sleep=self._sleep,
        )
        self.register_sensor(syntax, priority=SYNTAX_SENSOR_PRIORITY)
        self.register_sensor(
            dependency,
            priority=DEPENDENCY_SENSOR_PRIORITY,
            depends_on_kinds=(SensorKind.SYNTAX,),
        )
        return syntax, dependency

    def sensor_config(self, kind: SensorKind) -> SensorConfig:
        sensors = config_section(self._config, "sensors")
        defaults = sensors.get("defaults", {})
        overrides = sensors.get(kind.value, {})
        return SensorConfig.from_config(
            defaults if isinstance(defaults, Mapping) else {},
            overrides if isinstance(overrides, Mapping) else {},
        )

    async def run_cycle(self) -> Plan:
        return await self._orchestrator.run_cycle()

    async def execute_plan(self, plan: Plan) -> ExecutionReport:
        return await self._executor.execute(plan)

    def health(self) -> RegistryHealth:
        return self._registry.health()

    def monitoring_state(self) -> MonitoringState:
        return self._orchestrator.state

    def execution_statistics(self) -> ExecutionStatistics:
        return self._history.statistics()

    def start(self) -> None:
        """Start per-sensor timers and the periodic registry health check."""
        self._registry.start_all()
        self._registry.start_health_monitoring()

    async def shutdown(self) -> None:
        self._orchestrator.close()
        await self._registry.shutdown()
        await self._events.drain_async()
        self._logger.info("service_shutdown")
        if self._logging is not None:
            shutdown_logging(self._logging)
            self._logging = None


def _catalog_for(settings: PlannerSettings) -> TemplateCatalog:
    if settings.templates_path:
        return load_templates(settings.templates_path)
    return default_catalog()


__all__ = [
    "DEPENDENCY_SENSOR_PRIORITY",
    "SYNTAX_SENSOR_PRIORITY",
    "MonitoringService",
]
