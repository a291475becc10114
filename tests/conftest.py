"""Shared fixtures: deterministic clocks, instant sleeps and issue builders."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from vigil.domain import ids
from vigil.domain.models import Issue, IssueKind, IssueLocation, SensorKind, Severity

EPOCH = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

IssueFactory = Callable[..., Issue]


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Instant ``asyncio.sleep`` replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


def build_issue(
    *,
    kind: IssueKind = IssueKind.SYNTAX_ERROR,
    severity: Severity = Severity.HIGH,
    file: str = "app.ts",
    line: int | None = 1,
    column: int | None = 1,
    related_files: tuple[str, ...] = (),
    detected_by: SensorKind = SensorKind.SYNTAX,
    rule: str = "test-rule",
    offset_seconds: float = 0.0,
) -> Issue:
    return Issue(
        id=ids.issue_id(),
        kind=kind,
        severity=severity,
        location=IssueLocation(file=file, line=line, column=column, related_files=related_files),
        detected_by=detected_by,
        confidence=0.9,
        message=f"{kind.value} in {file}",
        rule=rule,
        detected_at=EPOCH + timedelta(seconds=offset_seconds),
    )


@pytest.fixture
def make_issue() -> IssueFactory:
    return build_issue
