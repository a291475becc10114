"""Unit tests for grouping, ordering, learning and confidence in the action planner."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from vigil.control_plane.correlation import CorrelationSettings
from vigil.domain.models import (
    ActionKind,
    ExecutionOutcome,
    ExecutionRecord,
    Issue,
    IssueKind,
    IssueLocation,
    RollbackKind,
    RollbackStep,
    SensorKind,
    Severity,
)
from vigil.execution.history import ExecutionHistory
from vigil.planning.planner import ActionPlanner, PlannerSettings, group_issues, parallel_bands
from vigil.planning.templates import ActionTemplate

EPOCH = datetime(2026, 3, 1, tzinfo=UTC)


def _issue(
    kind: IssueKind,
    file: str,
    *,
    line: int = 1,
    severity: Severity = Severity.LOW,
    related: tuple[str, ...] = (),
    offset: float = 0.0,
) -> Issue:
    return Issue(
        id=f"iss-{kind.value}-{file}-{line}",
        kind=kind,
        severity=severity,
        location=IssueLocation(file=file, line=line, column=1, related_files=related),
        detected_by=SensorKind.SYNTAX,
        confidence=0.8,
        rule="rule",
        detected_at=EPOCH + timedelta(seconds=offset),
    )


def _failures(kind: ActionKind, count: int) -> ExecutionHistory:
    history = ExecutionHistory()
    for index in range(count):
        history.append(
            ExecutionRecord(
                action_id=f"act-{index}",
                action_kind=kind,
                duration_seconds=0.1,
                success=False,
                rollback_required=True,
                outcome=ExecutionOutcome.VERIFICATION_FAILED,
            )
        )
    return history


def test_no_issues_gives_an_empty_certain_plan() -> None:
    plan = ActionPlanner().build_plan([])

    assert plan.is_empty
    assert plan.confidence == 1.0
    assert plan.estimated_time_seconds == 0.0


def test_dependencies_order_actions_and_split_bands() -> None:
    issues = [
        _issue(IssueKind.SECURITY_VULNERABILITY, "c.ts", severity=Severity.MEDIUM),
        _issue(IssueKind.DEPENDENCY_MISSING, "b.ts"),
        _issue(IssueKind.SYNTAX_ERROR, "a.ts"),
    ]

    plan = ActionPlanner().build_plan(issues)

    kinds = [action.kind for action in plan.ordered_actions]
    assert kinds == [
        ActionKind.SYNTAX_CORRECTION,
        ActionKind.DEPENDENCY_INSTALLATION,
        ActionKind.SECURITY_HARDENING,
    ]
    syntax, dependency, security = plan.ordered_actions
    assert security.priority == int(Severity.HIGH)
    assert plan.parallel_bands == ((syntax.id, dependency.id), (security.id,))
    assert plan.estimated_time_seconds == pytest.approx(5.0 + 2.0)


def test_higher_priority_goes_first_among_ready_actions() -> None:
    issues = [
        _issue(IssueKind.CONFIGURATION_ERROR, "a.toml", severity=Severity.LOW),
        _issue(IssueKind.SYNTAX_ERROR, "b.ts", severity=Severity.CRITICAL),
    ]

    plan = ActionPlanner().build_plan(issues)

    assert [action.kind for action in plan.ordered_actions] == [
        ActionKind.SYNTAX_CORRECTION,
        ActionKind.CONFIGURATION_FIX,
    ]


def test_issues_on_one_target_become_one_action() -> None:
    first = _issue(IssueKind.SYNTAX_ERROR, "app.ts", line=3)
    second = _issue(IssueKind.SYNTAX_ERROR, "app.ts", line=7, severity=Severity.HIGH, offset=0.1)

    plan = ActionPlanner().build_plan([second, first])

    (action,) = plan.ordered_actions
    assert action.issue_ids == (first.id, second.id)
    assert action.severity is Severity.HIGH
    assert action.priority == int(Severity.HIGH)
    assert action.description == "Fix syntax error in app.ts (2 issues)"
    assert action.rollback.kind is RollbackKind.AUTOMATIC


def test_correlated_targets_merge_into_one_group() -> None:
    issues = [
        _issue(IssueKind.SYNTAX_ERROR, "a.ts", related=("b.ts",)),
        _issue(IssueKind.DEPENDENCY_MISSING, "a.ts", related=("b.ts",)),
        _issue(IssueKind.CONFIGURATION_ERROR, "z.toml", offset=60.0),
    ]

    groups = group_issues(issues, CorrelationSettings(), merge_threshold=0.7)

    assert [group.keys for group in groups] == [
        (("configuration_error", "z.toml"),),
        (("dependency_missing", "a.ts"), ("syntax_error", "a.ts")),
    ]
    assert groups[1].issues_for(("syntax_error", "a.ts")) == (issues[0],)


_POOL = (
    _issue(IssueKind.SYNTAX_ERROR, "a.ts", line=1),
    _issue(IssueKind.SYNTAX_ERROR, "a.ts", line=2, offset=0.2),
    _issue(IssueKind.DEPENDENCY_MISSING, "a.ts", related=("b.ts",)),
    _issue(IssueKind.DEPENDENCY_MISSING, "b.ts", related=("a.ts",), offset=1.0),
    _issue(IssueKind.CONFIGURATION_ERROR, "c.toml", offset=30.0),
    _issue(IssueKind.UNKNOWN, "d.py", severity=Severity.HIGH),
)


@given(st.permutations(_POOL))
def test_grouping_ignores_input_order(shuffled: Sequence[Issue]) -> None:
    settings = CorrelationSettings()

    assert group_issues(shuffled, settings, 0.7) == group_issues(_POOL, settings, 0.7)


def test_failing_history_lowers_priority_and_stretches_estimates() -> None:
    issue = _issue(IssueKind.SYNTAX_ERROR, "app.ts", severity=Severity.HIGH)
    planner = ActionPlanner(history=_failures(ActionKind.SYNTAX_CORRECTION, 2))

    (action,) = planner.build_plan([issue]).ordered_actions

    assert action.priority == int(Severity.HIGH) - 2
    assert action.estimated_duration_seconds == pytest.approx(0.15)


def test_learning_never_drops_priority_below_one() -> None:
    issue = _issue(IssueKind.SYNTAX_ERROR, "app.ts", severity=Severity.LOW)
    planner = ActionPlanner(
        history=_failures(ActionKind.SYNTAX_CORRECTION, 1),
        settings=PlannerSettings(learning_priority_penalty=5),
    )

    (action,) = planner.build_plan([issue]).ordered_actions

    assert action.priority == 1


def test_learning_can_be_disabled() -> None:
    issue = _issue(IssueKind.SYNTAX_ERROR, "app.ts", severity=Severity.HIGH)
    planner = ActionPlanner(
        history=_failures(ActionKind.SYNTAX_CORRECTION, 3),
        settings=PlannerSettings(learning_enabled=False),
    )

    (action,) = planner.build_plan([issue]).ordered_actions

    assert action.priority == int(Severity.HIGH)
    assert action.estimated_duration_seconds == pytest.approx(0.1)


def test_confidence_blends_template_history_and_severity() -> None:
    low = _issue(IssueKind.SYNTAX_ERROR, "app.ts", severity=Severity.LOW)
    unknown = _issue(IssueKind.UNKNOWN, "app.py", severity=Severity.LOW)

    assert ActionPlanner().build_plan([low]).confidence == pytest.approx(0.95 * 0.98 + 0.025)
    assert ActionPlanner().build_plan([unknown]).confidence == pytest.approx(0.5 * 0.98 + 0.025)
    with_history = ActionPlanner(history=_failures(ActionKind.SYNTAX_CORRECTION, 1))
    assert with_history.build_plan([low]).confidence == pytest.approx(0.475 * 0.98 + 0.025)


def test_confidence_is_clamped() -> None:
    critical = _issue(IssueKind.SYNTAX_ERROR, "app.ts", severity=Severity.CRITICAL)
    assert ActionPlanner().build_plan([critical]).confidence == 1.0

    many = [_issue(IssueKind.UNKNOWN, f"f{index}.py", offset=index * 10.0) for index in range(60)]
    planner = ActionPlanner(settings=PlannerSettings(min_confidence=0.2))
    assert planner.build_plan(many).confidence == 0.2


def test_rollback_steps_come_from_the_factory() -> None:
    calls: list[tuple[ActionKind, str]] = []

    async def run() -> None:
        return None

    async def verify() -> bool:
        return True

    def steps(template: ActionTemplate, file: str) -> list[RollbackStep]:
        calls.append((template.action_kind, file))
        return [RollbackStep(description=f"restore {file}", run=run, verify=verify)]

    planner = ActionPlanner(rollback_steps=steps)
    (action,) = planner.build_plan([_issue(IssueKind.SYNTAX_ERROR, "app.ts")]).ordered_actions

    assert calls == [(ActionKind.SYNTAX_CORRECTION, "app.ts")]
    assert [step.description for step in action.rollback.steps] == ["restore app.ts"]
    assert action.rollback.time_limit_seconds == 5.0


def test_parallel_bands_split_on_repeated_kinds() -> None:
    plan = ActionPlanner().build_plan(
        [_issue(IssueKind.SYNTAX_ERROR, "a.ts"), _issue(IssueKind.SYNTAX_ERROR, "b.ts")]
    )

    first, second = plan.ordered_actions
    assert parallel_bands(plan.ordered_actions) == ((first.id,), (second.id,))
    assert plan.estimated_time_seconds == pytest.approx(0.2)


def test_settings_from_config_and_validation() -> None:
    settings = PlannerSettings.from_config(
        {"planner": {"merge_threshold": 0.6, "learning_enabled": False, "unrelated": 1}}
    )

    assert settings.merge_threshold == 0.6
    assert not settings.learning_enabled
    with pytest.raises(ValueError, match="merge_threshold"):
        PlannerSettings(merge_threshold=1.5)
    with pytest.raises(ValueError, match="learning_duration_factor"):
        PlannerSettings(learning_duration_factor=0.5)

