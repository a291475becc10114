"""Action templates and the catalog that maps issue kinds to them."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Final

import yaml

from vigil.constants import TEMPLATE_CATALOG_SCHEMA_VERSION
from vigil.domain.models import ActionKind, Issue, IssueKind, RollbackKind, Severity
from vigil.errors import TemplateCatalogError
from vigil.utils.graph import DirectedGraph

_DEFAULT_CATALOG_RESOURCE: Final[str] = "action_templates.yaml"


@dataclass(frozen=True, slots=True)
class ActionTemplate:
    action_kind: ActionKind
    issue_kinds: tuple[IssueKind, ...]
    priority: int
    nominal_duration_seconds: float
    success_rate: float
    rollback_kind: RollbackKind
    rollback_time_limit_seconds: float = 5.0
    depends_on: tuple[ActionKind, ...] = ()
    description: str = ""
    priority_floor: Severity | None = None

    def __post_init__(self) -> None:
        if self.nominal_duration_seconds < 0:
            raise ValueError("nominal_duration_seconds must be >= 0")
        if not 0.0 <= self.success_rate <= 1.0:
            raise ValueError("success_rate must be within [0, 1]")
        if self.rollback_time_limit_seconds <= 0:
            raise ValueError("rollback_time_limit_seconds must be > 0")
        if self.action_kind in self.depends_on:
            raise ValueError(f"{self.action_kind.value} cannot depend on itself")

    def describe(self, file: str, issues: Sequence[Issue]) -> str:
        kind = issues[0].kind.value if issues else "issue"
        text = (self.description or "Remediate {kind} in {file}").format(file=file, kind=kind)
        lines = sorted({issue.location.line for issue in issues if issue.location.line})
        if len(lines) == 1:
            text = f"{text}:{lines[0]}"
        if len(issues) > 1:
            text = f"{text} ({len(issues)} issues)"
        return text


class TemplateCatalog:
    """Issue-kind lookup with a generic fallback for unrecognized kinds."""

    def __init__(self, templates: Iterable[ActionTemplate], fallback: ActionTemplate) -> None:
        self._templates: dict[ActionKind, ActionTemplate] = {}
        self._by_issue_kind: dict[IssueKind, ActionTemplate] = {}
        for template in templates:
            if template.action_kind in self._templates:
                raise TemplateCatalogError(
                    f"duplicate template for action kind {template.action_kind.value!r}"
                )
            self._templates[template.action_kind] = template
            for issue_kind in template.issue_kinds:
                if issue_kind in self._by_issue_kind:
                    raise TemplateCatalogError(
                        f"issue kind {issue_kind.value!r} is claimed by more than one template"
                    )
                self._by_issue_kind[issue_kind] = template
        if fallback.action_kind in self._templates:
            raise TemplateCatalogError("fallback template must use its own action kind")
        self._fallback = fallback

    @property
    def templates(self) -> tuple[ActionTemplate, ...]:
        return tuple(self._templates.values())

    @property
    def fallback(self) -> ActionTemplate:
        return self._fallback

    def for_issue_kind(self, kind: IssueKind) -> ActionTemplate:
        return self._by_issue_kind.get(kind, self._fallback)

    def for_action_kind(self, kind: ActionKind) -> ActionTemplate | None:
        if kind is self._fallback.action_kind:
            return self._fallback
        return self._templates.get(kind)

    def dependency_cycles(self) -> tuple[tuple[str, ...], ...]:
        graph = DirectedGraph(nodes=(kind.value for kind in self._templates))
        for template in self._templates.values():
            for dependency in template.depends_on:
                graph.add_edge(dependency.value, template.action_kind.value)
        return graph.detect_cycles()


def default_catalog() -> TemplateCatalog:
    """The catalog shipped as ``vigil/data/action_templates.yaml``."""
    resource = resources.files("vigil") / "data" / _DEFAULT_CATALOG_RESOURCE
    try:
        payload = yaml.safe_load(resource.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise TemplateCatalogError(f"invalid packaged template catalog: {exc}") from exc
    return parse_catalog(payload, source=_DEFAULT_CATALOG_RESOURCE)


def load_templates(path: str | Path) -> TemplateCatalog:
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except OSError as exc:
        raise TemplateCatalogError(
            f"failed to read template catalog {file_path.as_posix()}: {exc}"
        ) from exc
    except yaml.YAMLError as exc:
        raise TemplateCatalogError(f"invalid YAML in {file_path.as_posix()}: {exc}") from exc
    return parse_catalog(payload, source=file_path.as_posix())


def parse_catalog(payload: object, *, source: str) -> TemplateCatalog:
    if not isinstance(payload, Mapping):
        raise TemplateCatalogError(f"{source} must contain a mapping")
    version = payload.get("schema_version", TEMPLATE_CATALOG_SCHEMA_VERSION)
    if version != TEMPLATE_CATALOG_SCHEMA_VERSION:
        raise TemplateCatalogError(
            f"{source}: unsupported schema_version {version!r}; "
            f"expected {TEMPLATE_CATALOG_SCHEMA_VERSION}"
        )

    records = payload.get("templates")
    if not isinstance(records, list):
        raise TemplateCatalogError(f"{source} must contain a 'templates' list")
    templates = [
        _coerce_template(record, f"{source}:templates[{index}]")
        for index, record in enumerate(records)
    ]
    fallback_raw = payload.get("fallback")
    if fallback_raw is None:
        raise TemplateCatalogError(f"{source} must define a 'fallback' template")
    fallback = _coerce_template(fallback_raw, f"{source}:fallback")
    return TemplateCatalog(templates, fallback)


def _coerce_template(record: object, path: str) -> ActionTemplate:
    if not isinstance(record, Mapping):
        raise TemplateCatalogError(f"{path} must be an object")
    try:
        floor_raw = record.get("priority_floor")
        return ActionTemplate(
            action_kind=ActionKind(_required(record, "action_kind", path)),
            issue_kinds=tuple(IssueKind(kind) for kind in record.get("issue_kinds") or ()),
            priority=_as_int(_required(record, "priority", path), f"{path}.priority"),
            nominal_duration_seconds=_as_number(
                _required(record, "nominal_duration_seconds", path),
                f"{path}.nominal_duration_seconds",
            ),
            success_rate=_as_number(
                _required(record, "success_rate", path), f"{path}.success_rate"
            ),
            rollback_kind=RollbackKind(_required(record, "rollback_kind", path)),
            rollback_time_limit_seconds=_as_number(
                record.get("rollback_time_limit_seconds", 5.0),
                f"{path}.rollback_time_limit_seconds",
            ),
            depends_on=tuple(ActionKind(kind) for kind in record.get("depends_on") or ()),
            description=str(record.get("description", "")),
            priority_floor=None if floor_raw is None else Severity[str(floor_raw).upper()],
        )
    except (ValueError, KeyError) as exc:
        raise TemplateCatalogError(f"{path}: {exc}") from exc


def _required(record: Mapping[str, object], key: str, path: str) -> object:
    if key not in record:
        raise TemplateCatalogError(f"{path}.{key} is required")
    return record[key]


def _as_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TemplateCatalogError(f"{path} must be an integer")
    return value


def _as_number(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TemplateCatalogError(f"{path} must be a number")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise TemplateCatalogError(f"{path} must be finite")
    return parsed


__all__ = [
    "ActionTemplate",
    "TemplateCatalog",
    "default_catalog",
    "load_templates",
    "parse_catalog",
]
