"""Unit tests for issue correlation, interference, resonance and the critical subset."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from vigil.config.schema import default_config
from vigil.control_plane.correlation import (
    NEUTRAL_INTERFERENCE,
    CorrelationSettings,
    analyze,
    cap_issues,
    critical_path,
    critical_subset,
    entanglement_level,
    interference_strength,
    issue_correlation,
    resonance_frequency,
)
from vigil.domain.models import (
    Issue,
    IssueKind,
    ResultStatus,
    SensorKind,
    SensorResult,
    Severity,
)

SETTINGS = CorrelationSettings()
IssueFactory = Callable[..., Issue]


def test_same_file_and_kind_close_in_time_correlate_strongly(make_issue: IssueFactory) -> None:
    first = make_issue()
    second = make_issue(line=9, offset_seconds=0.1)

    assert issue_correlation(first, second, SETTINGS) == pytest.approx(0.898)


def test_unrelated_simultaneous_issues_only_share_time(make_issue: IssueFactory) -> None:
    first = make_issue(file="a.ts")
    second = make_issue(file="b.ts", kind=IssueKind.DEPENDENCY_MISSING)

    assert issue_correlation(first, second, SETTINGS) == pytest.approx(0.1)


def test_temporal_bonus_vanishes_outside_the_window(make_issue: IssueFactory) -> None:
    first = make_issue(file="a.ts")
    second = make_issue(file="b.ts", kind=IssueKind.DEPENDENCY_MISSING, offset_seconds=6)

    assert issue_correlation(first, second, SETTINGS) == 0.0


def test_related_file_overlap_is_weighted_by_ratio(make_issue: IssueFactory) -> None:
    first = make_issue(file="a.ts", related_files=("a.ts", "b.ts"))
    second = make_issue(file="b.ts", related_files=("a.ts", "b.ts"))

    assert issue_correlation(first, second, SETTINGS) == pytest.approx(0.6)


@settings(suppress_health_check=[HealthCheck.function_scoped_fixture], max_examples=50)
@given(
    files=st.tuples(st.sampled_from(["a.ts", "b.ts"]), st.sampled_from(["a.ts", "b.ts"])),
    kinds=st.tuples(st.sampled_from(list(IssueKind)), st.sampled_from(list(IssueKind))),
    offset=st.floats(min_value=0.0, max_value=20.0),
)
def test_issue_correlation_is_symmetric_and_bounded(
    make_issue: IssueFactory,
    files: tuple[str, str],
    kinds: tuple[IssueKind, IssueKind],
    offset: float,
) -> None:
    first = make_issue(file=files[0], kind=kinds[0], related_files=("a.ts",))
    second = make_issue(file=files[1], kind=kinds[1], offset_seconds=offset)

    forward = issue_correlation(first, second, SETTINGS)
    assert forward == issue_correlation(second, first, SETTINGS)
    assert 0.0 <= forward <= 1.0


def test_interference_is_neutral_without_strong_pairs(make_issue: IssueFactory) -> None:
    assert interference_strength([], SETTINGS) == NEUTRAL_INTERFERENCE
    assert interference_strength([make_issue()], SETTINGS) == NEUTRAL_INTERFERENCE
    unrelated = [make_issue(file="a.ts"), make_issue(file="b.ts", kind=IssueKind.UNKNOWN)]
    assert interference_strength(unrelated, SETTINGS) == NEUTRAL_INTERFERENCE


def test_interference_averages_weighted_strong_pairs(make_issue: IssueFactory) -> None:
    issues = [make_issue(severity=Severity.HIGH), make_issue(severity=Severity.MEDIUM)]

    assert interference_strength(issues, SETTINGS) == pytest.approx(0.9 * 5)


def test_resonance_frequency(make_issue: IssueFactory) -> None:
    assert resonance_frequency([], SETTINGS) == 0.0
    assert resonance_frequency([make_issue(), make_issue()], SETTINGS) == 1.0
    spread = [make_issue(), make_issue(offset_seconds=20)]
    assert resonance_frequency(spread, SETTINGS) == pytest.approx(0.5)
    close = [make_issue(), make_issue(offset_seconds=4)]
    assert resonance_frequency(close, SETTINGS) == 1.0


def test_lone_high_issue_is_critical_and_lone_low_is_not(make_issue: IssueFactory) -> None:
    high = make_issue(severity=Severity.HIGH)
    low = make_issue(severity=Severity.LOW)

    assert critical_subset([high], 1.0, 1.0, SETTINGS) == (high,)
    assert critical_subset([low], 1.0, 1.0, SETTINGS) == ()


def test_critical_subset_orders_by_score(make_issue: IssueFactory) -> None:
    medium = make_issue(severity=Severity.MEDIUM)
    critical = make_issue(severity=Severity.CRITICAL, offset_seconds=1)

    assert critical_subset([medium, critical], 1.0, 1.0, SETTINGS) == (critical, medium)


def test_critical_path_ranks_files_by_weighted_severity(make_issue: IssueFactory) -> None:
    issues = [
        make_issue(file="b.ts", severity=Severity.LOW),
        make_issue(file="a.ts", severity=Severity.MEDIUM),
        make_issue(file="c.ts", severity=Severity.HIGH),
        make_issue(file="b.ts", severity=Severity.LOW),
    ]

    assert critical_path(issues, 5) == ("c.ts", "a.ts", "b.ts")
    assert critical_path(issues, 1) == ("c.ts",)


def test_cap_issues_keeps_highest_severity_first(make_issue: IssueFactory) -> None:
    low = make_issue(severity=Severity.LOW)
    late_high = make_issue(severity=Severity.HIGH, offset_seconds=5)
    early_high = make_issue(severity=Severity.HIGH)

    assert cap_issues([low, late_high, early_high], 2) == (early_high, late_high)
    assert cap_issues([low], 2) == (low,)


def test_entanglement_level(clock: Any) -> None:
    now = clock.now
    agreeing = [
        SensorResult(sensor_kind=SensorKind.SYNTAX, status=ResultStatus.HEALTHY, timestamp=now),
        SensorResult(
            sensor_kind=SensorKind.DEPENDENCY, status=ResultStatus.HEALTHY, timestamp=now
        ),
    ]
    diverging = [
        agreeing[0],
        SensorResult(
            sensor_kind=SensorKind.DEPENDENCY,
            status=ResultStatus.CRITICAL,
            timestamp=now + timedelta(seconds=10),
        ),
    ]

    assert entanglement_level(agreeing[:1], SETTINGS) == 0.0
    assert entanglement_level(agreeing, SETTINGS) == 1.0
    assert entanglement_level(diverging, SETTINGS) == 0.0


def test_analyze_cycle_of_two_files_marks_both_critical(make_issue: IssueFactory) -> None:
    issues = [
        make_issue(
            kind=IssueKind.ARCHITECTURAL_INCONSISTENCY,
            severity=Severity.MEDIUM,
            file=name,
            related_files=("a.ts", "b.ts"),
            detected_by=SensorKind.DEPENDENCY,
        )
        for name in ("a.ts", "b.ts")
    ]

    pattern = analyze(issues, (), SETTINGS)

    assert pattern.interference_strength == pytest.approx(2.4)
    assert pattern.resonance_frequency == 1.0
    assert set(pattern.critical_issues) == set(issues)
    assert pattern.critical_path == ("a.ts", "b.ts")


def test_settings_from_config_and_validation() -> None:
    settings_ = CorrelationSettings.from_config(default_config())

    assert settings_ == CorrelationSettings()
    with pytest.raises(ValueError, match="temporal_window_seconds"):
        CorrelationSettings(temporal_window_seconds=0)
