"""Immutable domain records shared by sensors, planner and executor."""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from types import MappingProxyType
from typing import NoReturn

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class Severity(IntEnum):
    """Ordinal issue severity; arithmetic on members is intentional."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class IssueKind(StrEnum):
    SYNTAX_ERROR = "syntax_error"
    SEMANTIC_ERROR = "semantic_error"
    DEPENDENCY_MISSING = "dependency_missing"
    ARCHITECTURAL_INCONSISTENCY = "architectural_inconsistency"
    CONFIGURATION_ERROR = "configuration_error"
    PERFORMANCE_BOTTLENECK = "performance_bottleneck"
    SECURITY_VULNERABILITY = "security_vulnerability"
    UNKNOWN = "unknown"


class SensorKind(StrEnum):
    SYNTAX = "syntax"
    SEMANTIC = "semantic"
    DEPENDENCY = "dependency"
    RESOURCE = "resource"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    SECURITY = "security"
    PERFORMANCE = "performance"
    ARCHITECTURE = "architecture"
    DEPLOYMENT = "deployment"


class ResultStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class SensorState(StrEnum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    RECOVERING = "recovering"
    FAILED = "failed"


class ActionKind(StrEnum):
    SYNTAX_CORRECTION = "syntax_correction"
    DEPENDENCY_INSTALLATION = "dependency_installation"
    CONFIGURATION_FIX = "configuration_fix"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"
    SECURITY_HARDENING = "security_hardening"
    ARCHITECTURE_REFACTORING = "architecture_refactoring"
    GENERIC_REMEDIATION = "generic_remediation"
    EMERGENCY_RECOVERY = "emergency_recovery"


class RollbackKind(StrEnum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"
    CHECKPOINT = "checkpoint"


class ExecutionOutcome(StrEnum):
    SUCCEEDED = "succeeded"
    VERIFICATION_FAILED = "verification_failed"
    ERRORED = "errored"
    PRECONDITION_FAILED = "precondition_failed"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _check_unit_interval(value: float, path: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        _fail(path, f"must be within [0, 1], got {value!r}")


def _check_aware(value: datetime, path: str) -> None:
    if value.tzinfo is None or value.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware")


def _unique(items: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class IssueLocation:
    file: str
    line: int | None = None
    column: int | None = None
    scope: tuple[str, ...] = ()
    related_files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.file:
            _fail("IssueLocation.file", "must not be empty")
        for name in ("line", "column"):
            value = getattr(self, name)
            if value is not None and value < 1:
                _fail(f"IssueLocation.{name}", "must be >= 1")
        object.__setattr__(self, "scope", tuple(self.scope))
        object.__setattr__(self, "related_files", _unique(tuple(self.related_files)))


@dataclass(frozen=True, slots=True)
class Issue:
    """A single problem reported by one sensor within one cycle."""

    id: str
    kind: IssueKind
    severity: Severity
    location: IssueLocation
    detected_by: SensorKind
    confidence: float
    message: str = ""
    rule: str = ""
    suggestions: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    detected_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _check_unit_interval(self.confidence, "Issue.confidence")
        _check_aware(self.detected_at, "Issue.detected_at")
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "suggestions", tuple(self.suggestions))
        object.__setattr__(self, "tags", _unique(tuple(self.tags)))

    @property
    def file(self) -> str:
        return self.location.file

    @property
    def fingerprint(self) -> str:
        """Identity of the underlying problem, stable across cycles."""
        line = "" if self.location.line is None else str(self.location.line)
        column = "" if self.location.column is None else str(self.location.column)
        return f"{self.kind.value}|{self.location.file}|{line}|{column}|{self.rule}"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "severity": self.severity.name.lower(),
            "file": self.location.file,
            "line": self.location.line,
            "column": self.location.column,
            "scope": list(self.location.scope),
            "related_files": list(self.location.related_files),
            "detected_by": self.detected_by.value,
            "confidence": self.confidence,
            "message": self.message,
            "rule": self.rule,
            "suggestions": list(self.suggestions),
            "tags": list(self.tags),
            "detected_at": _iso(self.detected_at),
        }


def status_for_issues(issues: tuple[Issue, ...] | list[Issue]) -> ResultStatus:
    if any(issue.severity >= Severity.CRITICAL for issue in issues):
        return ResultStatus.CRITICAL
    if issues:
        return ResultStatus.WARNING
    return ResultStatus.HEALTHY


@dataclass(frozen=True, slots=True)
class SensorResult:
    sensor_kind: SensorKind
    status: ResultStatus
    issues: tuple[Issue, ...] = ()
    metrics: Mapping[str, float] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    error: str | None = None

    def __post_init__(self) -> None:
        _check_aware(self.timestamp, "SensorResult.timestamp")
        object.__setattr__(self, "issues", tuple(self.issues))
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))

    @property
    def is_synthetic_failure(self) -> bool:
        return self.error is not None


RollbackCallable = Callable[[], Awaitable[None]]
RollbackCheck = Callable[[], Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class RollbackStep:
    description: str
    run: RollbackCallable
    verify: RollbackCheck


@dataclass(frozen=True, slots=True)
class RollbackStrategy:
    kind: RollbackKind
    steps: tuple[RollbackStep, ...] = ()
    time_limit_seconds: float = 5.0

    def __post_init__(self) -> None:
        if not self.time_limit_seconds > 0:
            _fail("RollbackStrategy.time_limit_seconds", "must be > 0")
        object.__setattr__(self, "steps", tuple(self.steps))


@dataclass(frozen=True, slots=True)
class Action:
    id: str
    kind: ActionKind
    description: str
    priority: int
    estimated_duration_seconds: float
    rollback: RollbackStrategy
    depends_on_kinds: tuple[ActionKind, ...] = ()
    issue_ids: tuple[str, ...] = ()
    issue_fingerprints: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    detected_by: tuple[SensorKind, ...] = ()
    severity: Severity = Severity.LOW

    def __post_init__(self) -> None:
        if self.priority < 0:
            _fail("Action.priority", "must be >= 0")
        if self.estimated_duration_seconds < 0:
            _fail("Action.estimated_duration_seconds", "must be >= 0")
        object.__setattr__(self, "depends_on_kinds", tuple(self.depends_on_kinds))
        object.__setattr__(self, "issue_ids", tuple(self.issue_ids))
        object.__setattr__(self, "issue_fingerprints", _unique(tuple(self.issue_fingerprints)))
        object.__setattr__(self, "files", _unique(tuple(self.files)))
        object.__setattr__(self, "detected_by", tuple(dict.fromkeys(self.detected_by)))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "description": self.description,
            "priority": self.priority,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "depends_on_kinds": [kind.value for kind in self.depends_on_kinds],
            "rollback": {
                "kind": self.rollback.kind.value,
                "steps": [step.description for step in self.rollback.steps],
                "time_limit_seconds": self.rollback.time_limit_seconds,
            },
            "issue_ids": list(self.issue_ids),
            "files": list(self.files),
            "detected_by": [kind.value for kind in self.detected_by],
            "severity": self.severity.name.lower(),
        }


@dataclass(frozen=True, slots=True)
class Plan:
    id: str
    ordered_actions: tuple[Action, ...]
    estimated_time_seconds: float
    confidence: float
    critical_path: tuple[str, ...] = ()
    parallel_bands: tuple[tuple[str, ...], ...] = ()
    emergency: bool = False
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        _check_unit_interval(self.confidence, "Plan.confidence")
        _check_aware(self.created_at, "Plan.created_at")
        object.__setattr__(self, "ordered_actions", tuple(self.ordered_actions))
        object.__setattr__(self, "critical_path", _unique(tuple(self.critical_path)))
        object.__setattr__(self, "parallel_bands", tuple(tuple(b) for b in self.parallel_bands))

    @property
    def is_empty(self) -> bool:
        return not self.ordered_actions

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "ordered_actions": [action.to_dict() for action in self.ordered_actions],
            "estimated_time_seconds": self.estimated_time_seconds,
            "confidence": self.confidence,
            "critical_path": list(self.critical_path),
            "parallel_bands": [list(band) for band in self.parallel_bands],
            "emergency": self.emergency,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class ExecutionRecord:
    action_id: str
    action_kind: ActionKind
    duration_seconds: float
    success: bool
    rollback_required: bool
    outcome: ExecutionOutcome
    rollback_succeeded: bool | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.duration_seconds < 0:
            _fail("ExecutionRecord.duration_seconds", "must be >= 0")
        if self.success != (self.outcome is ExecutionOutcome.SUCCEEDED):
            _fail("ExecutionRecord.success", "must agree with outcome")


__all__ = [
    "Action",
    "ActionKind",
    "ExecutionOutcome",
    "ExecutionRecord",
    "Issue",
    "IssueKind",
    "IssueLocation",
    "JSONScalar",
    "JSONValue",
    "Plan",
    "ResultStatus",
    "RollbackCallable",
    "RollbackCheck",
    "RollbackKind",
    "RollbackStep",
    "RollbackStrategy",
    "SensorKind",
    "SensorResult",
    "SensorState",
    "Severity",
    "status_for_issues",
    "utc_now",
]
