"""End-to-end cycles through the monitoring service: detect, plan, remediate, verify."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from vigil.domain.models import (
    Action,
    ActionKind,
    ExecutionOutcome,
    IssueKind,
    RollbackKind,
    SensorKind,
    Severity,
)
from vigil.errors import RegistryCapacityError
from vigil.observability.events import SensorEventType
from vigil.sensors.base import MonitoredSensor
from vigil.sensors.dependency import DependencySensor
from vigil.sensors.syntax import SyntaxSensor
from vigil.sensors.workspace import InMemoryFileProvider, PackageManifest
from vigil.service import MonitoringService

NO_PRECONDITIONS = {"executor": {"check_preconditions": False}}

APP_SOURCE = "import _ from 'lodash-x';\nexport const value = _.identity(1);\n"
CYCLE_SOURCES = {
    "a.ts": "import { b } from './b';\nexport const a = b + 1;\n",
    "b.ts": "import { a } from './a';\nexport const b = a + 1;\n",
}


class ManifestInstaller:
    """Remediates missing packages by declaring them in the manifest."""

    def __init__(self, sensor: DependencySensor, *packages: str) -> None:
        self.sensor = sensor
        self.packages = packages
        self.applied: list[str] = []

    async def apply(self, action: Action) -> None:
        self.applied.append(action.id)
        self.sensor.update_manifest(PackageManifest.from_names(self.packages))


class ImportRemover:
    """Remediates a circular import by rewriting one side of it."""

    def __init__(self, files: InMemoryFileProvider) -> None:
        self.files = files

    async def apply(self, action: Action) -> None:
        self.files.put("b.ts", "export const b = 1;\n")


async def test_missing_dependency_is_planned_installed_and_verified(sleep: Any) -> None:
    files = InMemoryFileProvider({"app.ts": APP_SOURCE})
    service = MonitoringService(NO_PRECONDITIONS, sleep=sleep)
    _, dependency = service.install_default_sensors(files, PackageManifest())
    installer = ManifestInstaller(dependency.inspector, "lodash-x")  # type: ignore[arg-type]
    service.executor.register_remediator(ActionKind.DEPENDENCY_INSTALLATION, installer)

    plan = await service.run_cycle()

    (action,) = plan.ordered_actions
    assert action.kind is ActionKind.DEPENDENCY_INSTALLATION
    assert action.files == ("app.ts",)
    assert action.detected_by == (SensorKind.DEPENDENCY,)
    assert action.rollback.kind is RollbackKind.MANUAL
    assert plan.critical_path == ("app.ts",)
    assert not plan.emergency

    report = await service.execute_plan(plan)

    (outcome,) = report.outcomes
    assert outcome.outcome is ExecutionOutcome.SUCCEEDED
    assert installer.applied == [action.id]
    stats = service.execution_statistics()
    assert stats.total_executions == 1
    assert stats.success_rate == 1.0

    assert (await service.run_cycle()).is_empty
    await service.shutdown()


async def test_unremediated_manual_action_needs_followup(sleep: Any) -> None:
    files = InMemoryFileProvider({"app.ts": APP_SOURCE})
    service = MonitoringService(NO_PRECONDITIONS, sleep=sleep)
    service.install_default_sensors(files)

    report = await service.execute_plan(await service.run_cycle())

    (outcome,) = report.outcomes
    assert outcome.outcome is ExecutionOutcome.VERIFICATION_FAILED
    assert outcome.rollback_succeeded is False
    assert report.manual_followups == (outcome.action_id,)
    per_kind = service.execution_statistics().per_kind[ActionKind.DEPENDENCY_INSTALLATION]
    assert (per_kind.count, per_kind.success_rate, per_kind.rollback_count) == (1, 0.0, 1)
    await service.shutdown()


async def test_failed_execution_feeds_the_next_plan(sleep: Any) -> None:
    files = InMemoryFileProvider({"app.ts": APP_SOURCE})
    service = MonitoringService(NO_PRECONDITIONS, sleep=sleep)
    service.install_default_sensors(files)

    assert service.executor.history is service.planner.history
    plan = await service.run_cycle()
    (first,) = plan.ordered_actions
    report = await service.execute_plan(plan)
    assert report.failed == 1
    assert service.execution_statistics().total_executions == 1

    (second,) = (await service.run_cycle()).ordered_actions

    assert second.kind is first.kind is ActionKind.DEPENDENCY_INSTALLATION
    assert second.priority < first.priority
    assert second.estimated_duration_seconds == pytest.approx(
        first.estimated_duration_seconds * 1.5
    )
    await service.shutdown()


async def test_circular_import_cycle_end_to_end(sleep: Any, clock: Any) -> None:
    files = InMemoryFileProvider(CYCLE_SOURCES)
    service = MonitoringService(NO_PRECONDITIONS, sleep=sleep)
    service.register_sensor(
        MonitoredSensor(
            SyntaxSensor(files, clock=clock),
            service.sensor_config(SensorKind.SYNTAX),
            clock=clock,
            sleep=sleep,
        ),
        priority=10,
    )
    service.register_sensor(
        MonitoredSensor(
            DependencySensor(files, clock=clock),
            service.sensor_config(SensorKind.DEPENDENCY),
            clock=clock,
            sleep=sleep,
        ),
        priority=8,
        depends_on_kinds=(SensorKind.SYNTAX,),
    )
    service.executor.register_remediator(ActionKind.ARCHITECTURE_REFACTORING, ImportRemover(files))

    plan = await service.run_cycle()

    pattern = service.orchestrator.interference_history()[-1]
    assert pattern.interference_strength == pytest.approx(2.4)
    assert [issue.kind for issue in pattern.critical_issues] == [
        IssueKind.ARCHITECTURAL_INCONSISTENCY,
        IssueKind.ARCHITECTURAL_INCONSISTENCY,
    ]
    assert [action.kind for action in plan.ordered_actions] == [
        ActionKind.ARCHITECTURE_REFACTORING,
        ActionKind.ARCHITECTURE_REFACTORING,
    ]
    assert {action.files[0] for action in plan.ordered_actions} == {"a.ts", "b.ts"}
    assert all(action.severity is Severity.MEDIUM for action in plan.ordered_actions)
    assert set(plan.critical_path) == {"a.ts", "b.ts"}
    assert len(plan.parallel_bands) == 2

    report = await service.execute_plan(plan)

    assert report.succeeded == 2
    state = service.monitoring_state()
    assert (state.total_cycles, state.successful_cycles) == (1, 1)
    assert state.active_sensors == 2
    assert service.metrics.get_counter("cycles_total") == 1.0
    await service.shutdown()


async def test_health_events_and_shutdown(sleep: Any) -> None:
    files = InMemoryFileProvider({"app.ts": "export const ok = 1;\n"})
    service = MonitoringService(NO_PRECONDITIONS, sleep=sleep)
    service.install_default_sensors(files)

    await service.run_cycle()
    health = service.health()

    assert health.total_sensors == 2
    assert health.healthy_sensors == 2
    assert health.failed_sensors == 0
    registered = service.events.replay(event_type=SensorEventType.REGISTERED)
    assert [event.sensor_kind for event in registered] == [
        SensorKind.SYNTAX,
        SensorKind.DEPENDENCY,
    ]
    assert service.unregister_sensor(SensorKind.SYNTAX)
    assert not service.unregister_sensor(SensorKind.SYNTAX)

    await service.shutdown()
    assert len(service.registry) == 0


async def test_service_reads_a_config_file_and_logs_to_its_directory(tmp_path: Path) -> None:
    path = tmp_path / "vigil.toml"
    path.write_text(
        "[registry]\nmax_sensors = 1\n\n[executor]\ncheck_preconditions = false\n",
        encoding="utf-8",
    )

    service = MonitoringService.from_config_file(path)

    assert service.registry.settings.max_sensors == 1
    with pytest.raises(RegistryCapacityError):
        service.install_default_sensors(InMemoryFileProvider())

    handle = service.logging_handle
    assert handle is not None
    assert handle.log_path.parent.parent == tmp_path.resolve() / "logs"
    await service.shutdown()

    assert service.logging_handle is None
    assert handle.is_shutdown
    events = [
        json.loads(line)["event"]
        for line in handle.log_path.read_text(encoding="utf-8").splitlines()
    ]
    assert "logging_started" in events
    assert "service_shutdown" in events
