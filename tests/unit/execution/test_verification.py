"""Unit tests for verifying actions by re-polling their originating sensors."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from vigil.domain.models import (
    Action,
    ActionKind,
    Issue,
    RollbackKind,
    RollbackStrategy,
    SensorKind,
)
from vigil.execution.verification import SensorRecheckVerifier
from vigil.sensors.base import Inspection, MonitoredSensor
from vigil.sensors.registry import SensorRegistry


class MutableInspector:
    def __init__(self, kind: SensorKind, issues: Sequence[Issue] = ()) -> None:
        self._kind = kind
        self.issues = tuple(issues)
        self.error = ""

    @property
    def kind(self) -> SensorKind:
        return self._kind

    async def inspect(self) -> Inspection:
        if self.error:
            raise RuntimeError(self.error)
        return Inspection(self.issues)

    async def reset(self) -> None:
        return None


def _action(issues: Sequence[Issue], detected_by: Sequence[SensorKind]) -> Action:
    return Action(
        id="act-verify",
        kind=ActionKind.SYNTAX_CORRECTION,
        description="fix",
        priority=3,
        estimated_duration_seconds=0.1,
        rollback=RollbackStrategy(kind=RollbackKind.AUTOMATIC),
        issue_fingerprints=tuple(issue.fingerprint for issue in issues),
        detected_by=tuple(detected_by),
    )


def _registry(clock: Any, sleep: Any, inspector: MutableInspector) -> SensorRegistry:
    registry = SensorRegistry(clock=clock, sleep=sleep)
    registry.register(MonitoredSensor(inspector, clock=clock, sleep=sleep))
    return registry


async def test_resolved_issues_verify(
    clock: Any, sleep: Any, make_issue: Callable[..., Issue]
) -> None:
    issue = make_issue(line=3)
    inspector = MutableInspector(SensorKind.SYNTAX, [make_issue(line=9)])
    verifier = SensorRecheckVerifier(_registry(clock, sleep, inspector))

    result = await verifier.verify(_action([issue], [SensorKind.SYNTAX]))

    assert result.success
    assert result.remaining_fingerprints == ()


async def test_reproducing_issue_fails_verification(
    clock: Any, sleep: Any, make_issue: Callable[..., Issue]
) -> None:
    issue = make_issue(line=3)
    # A fresh detection has a new id and timestamp but the same fingerprint.
    inspector = MutableInspector(SensorKind.SYNTAX, [make_issue(line=3, offset_seconds=5)])
    verifier = SensorRecheckVerifier(_registry(clock, sleep, inspector))

    result = await verifier.verify(_action([issue], [SensorKind.SYNTAX]))

    assert not result.success
    assert result.remaining_fingerprints == (issue.fingerprint,)
    assert result.detail == "1 issue(s) still reproduce"


async def test_missing_or_failing_sensor_leaves_the_action_unverified(
    clock: Any, sleep: Any, make_issue: Callable[..., Issue]
) -> None:
    issue = make_issue()
    inspector = MutableInspector(SensorKind.SYNTAX)
    verifier = SensorRecheckVerifier(_registry(clock, sleep, inspector))

    missing = await verifier.verify(_action([issue], [SensorKind.DEPENDENCY]))
    assert not missing.success
    assert missing.detail == "sensor dependency is not registered"

    inspector.error = "parser crashed"
    failing = await verifier.verify(_action([issue], [SensorKind.SYNTAX]))
    assert not failing.success
    assert "failed to poll" in failing.detail
    assert "parser crashed" in failing.detail


async def test_actions_without_a_source_sensor_verify_trivially(
    clock: Any, sleep: Any
) -> None:
    verifier = SensorRecheckVerifier(_registry(clock, sleep, MutableInspector(SensorKind.SYNTAX)))

    result = await verifier.verify(_action([], []))

    assert result.success
    assert result.detail == "no originating sensor"
