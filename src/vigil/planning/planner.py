"""
Action planner.

Purpose
- Turn a cycle's critical issues into an ordered, timed, confidence-scored
  remediation plan.

Steps
1) group issues by ``(kind, file)``; merge groups whose average pairwise issue
   correlation reaches ``merge_threshold``
2) one action per distinct ``(kind, file)`` target, from the template keyed by
   issue kind (generic fallback for unrecognized kinds)
3) learning: kinds whose historical success rate is below the threshold lose
   priority and get a longer estimate
4) dependency order from template ``depends_on``, ready actions by priority;
   cycles are broken by releasing the highest-priority node
5) contiguous parallel bands; total time = sum of each band's longest action
6) priority-weighted confidence, clamped to ``[min_confidence, 1]``

Grouping and ordering are deterministic for an identical issue set.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from itertools import product

import structlog

from vigil.config.schema import config_section
from vigil.control_plane.correlation import (
    CorrelationSettings,
    critical_path,
    issue_correlation,
)
from vigil.domain import ids
from vigil.domain.models import (
    Action,
    ActionKind,
    Issue,
    IssueKind,
    Plan,
    RollbackStep,
    RollbackStrategy,
    Severity,
    utc_now,
)
from vigil.execution.history import ExecutionHistory
from vigil.planning.templates import ActionTemplate, TemplateCatalog, default_catalog
from vigil.utils.graph import DirectedGraph

RollbackStepFactory = Callable[[ActionTemplate, str], Sequence[RollbackStep]]

_GroupKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class PlannerSettings:
    merge_threshold: float = 0.7
    learning_enabled: bool = True
    learning_success_threshold: float = 0.8
    learning_priority_penalty: int = 2
    learning_duration_factor: float = 1.5
    complexity_penalty_per_action: float = 0.02
    severity_bonus_cap: float = 0.1
    min_confidence: float = 0.1
    group_critical_path_length: int = 3
    templates_path: str | None = None

    def __post_init__(self) -> None:
        for name in (
            "merge_threshold",
            "learning_success_threshold",
            "complexity_penalty_per_action",
            "severity_bonus_cap",
            "min_confidence",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]")
        if self.learning_priority_penalty < 0:
            raise ValueError("learning_priority_penalty must be >= 0")
        if self.learning_duration_factor < 1.0:
            raise ValueError("learning_duration_factor must be >= 1")
        if self.group_critical_path_length < 1:
            raise ValueError("group_critical_path_length must be >= 1")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> PlannerSettings:
        section = config_section(config, "planner")
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in section.items() if key in known})  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class IssueGroup:
    """Correlated issues planned together; ``keys`` are the merged ``(kind, file)`` buckets."""

    keys: tuple[_GroupKey, ...]
    issues: tuple[Issue, ...]

    def issues_for(self, key: _GroupKey) -> tuple[Issue, ...]:
        kind, file = key
        return tuple(
            issue for issue in self.issues if issue.kind.value == kind and issue.file == file
        )


def group_issues(
    issues: Sequence[Issue],
    correlation: CorrelationSettings,
    merge_threshold: float,
) -> tuple[IssueGroup, ...]:
    buckets: dict[_GroupKey, list[Issue]] = defaultdict(list)
    for issue in issues:
        buckets[(issue.kind.value, issue.file)].append(issue)
    for members in buckets.values():
        members.sort(key=_issue_order)

    keys = sorted(buckets)
    consumed: set[_GroupKey] = set()
    groups: list[IssueGroup] = []
    for index, seed in enumerate(keys):
        if seed in consumed:
            continue
        consumed.add(seed)
        merged_keys = [seed]
        merged_issues = list(buckets[seed])
        for candidate in keys[index + 1 :]:
            if candidate in consumed:
                continue
            average = _average_correlation(buckets[seed], buckets[candidate], correlation)
            if average >= merge_threshold:
                consumed.add(candidate)
                merged_keys.append(candidate)
                merged_issues.extend(buckets[candidate])
        groups.append(IssueGroup(keys=tuple(merged_keys), issues=tuple(merged_issues)))
    return tuple(groups)


class ActionPlanner:
    """Builds plans from templates, correlation groups and execution history."""

    def __init__(
        self,
        catalog: TemplateCatalog | None = None,
        history: ExecutionHistory | None = None,
        settings: PlannerSettings | None = None,
        correlation: CorrelationSettings | None = None,
        *,
        rollback_steps: RollbackStepFactory | None = None,
    ) -> None:
        self._catalog = catalog if catalog is not None else default_catalog()
        self._history = history if history is not None else ExecutionHistory()
        self._settings = settings or PlannerSettings()
        self._correlation = correlation or CorrelationSettings()
        self._rollback_steps = rollback_steps
        self._logger = structlog.get_logger(__name__)

    @property
    def catalog(self) -> TemplateCatalog:
        return self._catalog

    @property
    def history(self) -> ExecutionHistory:
        return self._history

    @property
    def settings(self) -> PlannerSettings:
        return self._settings

    def build_plan(self, issues: Sequence[Issue]) -> Plan:
        if not issues:
            return Plan(
                id=ids.plan_id(),
                ordered_actions=(),
                estimated_time_seconds=0.0,
                confidence=1.0,
                created_at=utc_now(),
            )

        groups = group_issues(issues, self._correlation, self._settings.merge_threshold)
        actions: list[Action] = []
        path: list[str] = []
        for group in groups:
            for key in group.keys:
                actions.append(self._action_for(key, group.issues_for(key)))
            path.extend(critical_path(group.issues, self._settings.group_critical_path_length))

        ordered = self._order(actions)
        bands = parallel_bands(ordered)
        by_id = {action.id: action for action in ordered}
        estimated = sum(
            max(by_id[action_id].estimated_duration_seconds for action_id in band)
            for band in bands
        )
        plan = Plan(
            id=ids.plan_id(),
            ordered_actions=tuple(ordered),
            estimated_time_seconds=estimated,
            confidence=self._confidence(ordered, issues),
            critical_path=tuple(path),
            parallel_bands=bands,
            created_at=utc_now(),
        )
        self._logger.info(
            "plan_built",
            plan_id=plan.id,
            issues=len(issues),
            groups=len(groups),
            actions=len(ordered),
            confidence=plan.confidence,
            estimated_time_seconds=plan.estimated_time_seconds,
        )
        return plan

    def _action_for(self, key: _GroupKey, issues: Sequence[Issue]) -> Action:
        kind, file = key
        template = self._catalog.for_issue_kind(IssueKind(kind))
        severity = max(issue.severity for issue in issues)
        priority = int(severity)
        if template.priority_floor is not None:
            priority = max(priority, int(template.priority_floor))
        duration = template.nominal_duration_seconds

        if self._settings.learning_enabled:
            rate = self._history.success_rate_for(template.action_kind)
            if rate is not None and rate < self._settings.learning_success_threshold:
                priority = max(1, priority - self._settings.learning_priority_penalty)
                duration *= self._settings.learning_duration_factor
                self._logger.debug(
                    "action_adjusted_by_history",
                    action_kind=template.action_kind.value,
                    success_rate=rate,
                    priority=priority,
                    duration_seconds=duration,
                )

        steps = tuple(self._rollback_steps(template, file)) if self._rollback_steps else ()
        return Action(
            id=ids.action_id(),
            kind=template.action_kind,
            description=template.describe(file, issues),
            priority=priority,
            estimated_duration_seconds=duration,
            rollback=RollbackStrategy(
                kind=template.rollback_kind,
                steps=steps,
                time_limit_seconds=template.rollback_time_limit_seconds,
            ),
            depends_on_kinds=template.depends_on,
            issue_ids=tuple(issue.id for issue in issues),
            issue_fingerprints=tuple(issue.fingerprint for issue in issues),
            files=(file,),
            detected_by=tuple(issue.detected_by for issue in issues),
            severity=Severity(severity),
        )

    def _order(self, actions: Sequence[Action]) -> list[Action]:
        by_id = {action.id: action for action in actions}
        by_kind: dict[ActionKind, list[str]] = defaultdict(list)
        for action in actions:
            by_kind[action.kind].append(action.id)

        graph = DirectedGraph(nodes=by_id)
        for action in actions:
            for dependency in action.depends_on_kinds:
                for prerequisite in by_kind.get(dependency, ()):
                    graph.add_edge(prerequisite, action.id)

        def rank(action_id: str) -> tuple[int, int, str]:
            action = by_id[action_id]
            template = self._catalog.for_action_kind(action.kind)
            template_priority = template.priority if template is not None else 0
            return (-action.priority, -template_priority, action_id)

        order, released = graph.priority_order(rank)
        if released:
            self._logger.warning(
                "action_dependency_cycle",
                released=[by_id[action_id].kind.value for action_id in released],
            )
        return [by_id[action_id] for action_id in order]

    def _confidence(self, actions: Sequence[Action], issues: Sequence[Issue]) -> float:
        if not actions:
            return 1.0
        rates: list[float] = []
        weights: list[float] = []
        for action in actions:
            template = self._catalog.for_action_kind(action.kind)
            rate = template.success_rate if template is not None else 0.5
            historical = self._history.success_rate_for(action.kind)
            if historical is not None:
                rate = (rate + historical) / 2.0
            rates.append(rate)
            weights.append(float(action.priority))

        total_weight = sum(weights)
        if total_weight > 0:
            weighted = sum(r * w for r, w in zip(rates, weights, strict=True)) / total_weight
        else:
            weighted = sum(rates) / len(rates)

        complexity = max(0.0, 1.0 - len(actions) * self._settings.complexity_penalty_per_action)
        average_severity = sum(int(issue.severity) for issue in issues) / len(issues)
        cap = self._settings.severity_bonus_cap
        bonus = min(cap, average_severity / int(Severity.CRITICAL) * cap)
        return min(1.0, max(self._settings.min_confidence, weighted * complexity + bonus))


def parallel_bands(actions: Sequence[Action]) -> tuple[tuple[str, ...], ...]:
    """Split ordered actions into contiguous bands of mutually independent kinds.

    An action starts a new band when the current band already holds its kind,
    a kind it depends on, or a kind that depends on it.
    """
    bands: list[list[str]] = []
    band_kinds: set[ActionKind] = set()
    band_dependencies: set[ActionKind] = set()
    for action in actions:
        conflicts = (
            action.kind in band_kinds
            or action.kind in band_dependencies
            or any(dependency in band_kinds for dependency in action.depends_on_kinds)
        )
        if not bands or conflicts:
            bands.append([])
            band_kinds = set()
            band_dependencies = set()
        bands[-1].append(action.id)
        band_kinds.add(action.kind)
        band_dependencies.update(action.depends_on_kinds)
    return tuple(tuple(band) for band in bands)


def _issue_order(issue: Issue) -> tuple[int, int, str, str]:
    return (
        issue.location.line or 0,
        issue.location.column or 0,
        issue.detected_at.isoformat(),
        issue.id,
    )


def _average_correlation(
    first: Sequence[Issue], second: Sequence[Issue], settings: CorrelationSettings
) -> float:
    pairs = list(product(first, second))
    if not pairs:
        return 0.0
    return sum(issue_correlation(a, b, settings) for a, b in pairs) / len(pairs)


__all__ = [
    "ActionPlanner",
    "IssueGroup",
    "PlannerSettings",
    "RollbackStepFactory",
    "group_issues",
    "parallel_bands",
]
