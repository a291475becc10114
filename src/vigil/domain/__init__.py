"""Domain records shared across planes: issues, results, actions, plans, history."""

from vigil.domain.models import (
    Action,
    ActionKind,
    ExecutionOutcome,
    ExecutionRecord,
    Issue,
    IssueKind,
    IssueLocation,
    Plan,
    ResultStatus,
    RollbackKind,
    RollbackStep,
    RollbackStrategy,
    SensorKind,
    SensorResult,
    SensorState,
    Severity,
)

__all__ = [
    "Action",
    "ActionKind",
    "ExecutionOutcome",
    "ExecutionRecord",
    "Issue",
    "IssueKind",
    "IssueLocation",
    "Plan",
    "ResultStatus",
    "RollbackKind",
    "RollbackStep",
    "RollbackStrategy",
    "SensorKind",
    "SensorResult",
    "SensorState",
    "Severity",
]
