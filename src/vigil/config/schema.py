"""
vigil configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.
- Validate config payloads and return structured errors (field path + message).
- Support the ``realtime`` and ``thorough`` profile overlays and deterministic
  deep merges.

Every section is described by a table of field rules; validation rejects
unknown keys, wrong types and out-of-range numbers and reports all issues at
once with dotted paths.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal

from vigil.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_HISTORY_SIZE,
    DEFAULT_INTERFERENCE_HISTORY_SIZE,
    DEFAULT_MAX_SENSORS,
    DEFAULT_RESULT_BUFFER_SIZE,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("realtime", "thorough")
SENSOR_SECTIONS: Final[tuple[str, ...]] = ("syntax", "dependency")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("planner", "templates_path"),
    ("observability", "log_dir"),
)


@dataclass(frozen=True, slots=True)
class _Rule:
    kind: Literal["int", "float", "bool", "str", "path", "enum"]
    minimum: float | None = None
    maximum: float | None = None
    allowed: tuple[str, ...] = ()
    required: bool = True


_SENSOR_RULES: Final[dict[str, _Rule]] = {
    "enabled": _Rule("bool"),
    "poll_interval_seconds": _Rule("float", minimum=0.001),
    "timeout_seconds": _Rule("float", minimum=0.001),
    "max_retries": _Rule("int", minimum=0),
    "buffer_size": _Rule("int", minimum=1),
    "backoff_base_seconds": _Rule("float", minimum=0.0),
    "backoff_max_seconds": _Rule("float", minimum=0.0),
    "health_success_rate": _Rule("float", minimum=0.0, maximum=1.0),
    "health_staleness_seconds": _Rule("float", minimum=0.001),
    "response_time_alpha": _Rule("float", minimum=0.001, maximum=1.0),
}
_SENSOR_OVERRIDE_RULES: Final[dict[str, _Rule]] = {
    key: _Rule(rule.kind, rule.minimum, rule.maximum, rule.allowed, required=False)
    for key, rule in _SENSOR_RULES.items()
}

_SECTION_RULES: Final[dict[str, dict[str, _Rule]]] = {
    "meta": {
        "schema_version": _Rule("int", minimum=1),
    },
    "registry": {
        "max_sensors": _Rule("int", minimum=1),
        "correlation_enabled": _Rule("bool"),
        "correlation_learning_rate": _Rule("float", minimum=0.001, maximum=1.0),
        "health_check_interval_seconds": _Rule("float", minimum=0.001),
        "pass_timeout_seconds": _Rule("float", minimum=0.0),
    },
    "correlation": {
        "same_file_weight": _Rule("float", minimum=0.0, maximum=1.0),
        "same_kind_weight": _Rule("float", minimum=0.0, maximum=1.0),
        "related_files_weight": _Rule("float", minimum=0.0, maximum=1.0),
        "temporal_window_seconds": _Rule("float", minimum=0.001),
        "temporal_weight": _Rule("float", minimum=0.0, maximum=1.0),
        "interference_threshold": _Rule("float", minimum=0.0, maximum=1.0),
        "resonance_window_seconds": _Rule("float", minimum=0.001),
        "amplification": _Rule("float", minimum=0.0),
        "critical_threshold": _Rule("float", minimum=0.0),
        "entanglement_window_seconds": _Rule("float", minimum=0.001),
        "critical_path_length": _Rule("int", minimum=1),
        "max_issues_per_cycle": _Rule("int", minimum=1),
        "history_size": _Rule("int", minimum=1),
    },
    "planner": {
        "merge_threshold": _Rule("float", minimum=0.0, maximum=1.0),
        "learning_enabled": _Rule("bool"),
        "learning_success_threshold": _Rule("float", minimum=0.0, maximum=1.0),
        "learning_priority_penalty": _Rule("int", minimum=0),
        "learning_duration_factor": _Rule("float", minimum=1.0),
        "complexity_penalty_per_action": _Rule("float", minimum=0.0, maximum=1.0),
        "severity_bonus_cap": _Rule("float", minimum=0.0, maximum=1.0),
        "min_confidence": _Rule("float", minimum=0.0, maximum=1.0),
        "group_critical_path_length": _Rule("int", minimum=1),
        "templates_path": _Rule("path", required=False),
    },
    "executor": {
        "history_size": _Rule("int", minimum=1),
        "action_timeout_seconds": _Rule("float", minimum=0.001),
        "check_preconditions": _Rule("bool"),
        "min_available_memory_mb": _Rule("int", minimum=0),
        "max_cpu_percent": _Rule("float", minimum=0.0, maximum=100.0),
        "min_disk_free_mb": _Rule("int", minimum=0),
        "disk_path": _Rule("str"),
    },
    "orchestrator": {
        "emergency_confidence": _Rule("float", minimum=0.0, maximum=1.0),
        "cycle_ema_alpha": _Rule("float", minimum=0.001, maximum=1.0),
    },
    "observability": {
        "log_level": _Rule("enum", allowed=LOG_LEVELS),
        "log_dir": _Rule("path"),
        "log_to_stdout": _Rule("bool"),
        "redact_secrets": _Rule("bool"),
        "rotating_file": _Rule("bool"),
        "max_bytes": _Rule("int", minimum=1024),
        "backup_count": _Rule("int", minimum=0),
        "queue_size": _Rule("int", minimum=1),
    },
}

DEFAULT_CONFIG: Final[dict[str, Any]] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "sensors": {
        "defaults": {
            "enabled": True,
            "poll_interval_seconds": 1.0,
            "timeout_seconds": 5.0,
            "max_retries": 3,
            "buffer_size": DEFAULT_RESULT_BUFFER_SIZE,
            "backoff_base_seconds": 1.0,
            "backoff_max_seconds": 30.0,
            "health_success_rate": 0.8,
            "health_staleness_seconds": 30.0,
            "response_time_alpha": 0.1,
        },
        "syntax": {},
        "dependency": {"timeout_seconds": 10.0},
    },
    "registry": {
        "max_sensors": DEFAULT_MAX_SENSORS,
        "correlation_enabled": True,
        "correlation_learning_rate": 0.2,
        "health_check_interval_seconds": 30.0,
        "pass_timeout_seconds": 0.0,
    },
    "correlation": {
        "same_file_weight": 0.5,
        "same_kind_weight": 0.3,
        "related_files_weight": 0.2,
        "temporal_window_seconds": 5.0,
        "temporal_weight": 0.1,
        "interference_threshold": 0.5,
        "resonance_window_seconds": 10.0,
        "amplification": 1.5,
        "critical_threshold": 2.0,
        "entanglement_window_seconds": 10.0,
        "critical_path_length": 5,
        "max_issues_per_cycle": 500,
        "history_size": DEFAULT_INTERFERENCE_HISTORY_SIZE,
    },
    "planner": {
        "merge_threshold": 0.7,
        "learning_enabled": True,
        "learning_success_threshold": 0.8,
        "learning_priority_penalty": 2,
        "learning_duration_factor": 1.5,
        "complexity_penalty_per_action": 0.02,
        "severity_bonus_cap": 0.1,
        "min_confidence": 0.1,
        "group_critical_path_length": 3,
    },
    "executor": {
        "history_size": DEFAULT_HISTORY_SIZE,
        "action_timeout_seconds": 60.0,
        "check_preconditions": True,
        "min_available_memory_mb": 1000,
        "max_cpu_percent": 90.0,
        "min_disk_free_mb": 5000,
        "disk_path": "/",
    },
    "orchestrator": {
        "emergency_confidence": 0.5,
        "cycle_ema_alpha": 0.1,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
        "rotating_file": False,
        "max_bytes": 10 * 1024 * 1024,
        "backup_count": 5,
        "queue_size": 2048,
    },
    "profiles": {
        "realtime": {
            "sensors": {"defaults": {"poll_interval_seconds": 0.5, "timeout_seconds": 2.0}},
            "correlation": {"max_issues_per_cycle": 200},
            "executor": {"action_timeout_seconds": 15.0},
        },
        "thorough": {
            "sensors": {"defaults": {"timeout_seconds": 30.0, "max_retries": 5}},
            "correlation": {"max_issues_per_cycle": 2000},
            "planner": {"merge_threshold": 0.6},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, Any]:
    """Return a deep copy of deterministic built-in defaults."""
    return copy.deepcopy(DEFAULT_CONFIG)


def config_section(config: Mapping[str, object], *path: str) -> Mapping[str, object]:
    """Return the nested section at ``path``, or an empty mapping when absent."""
    cursor: object = config
    for key in path:
        if not isinstance(cursor, Mapping):
            return {}
        cursor = cursor.get(key, {})
    return cursor if isinstance(cursor, Mapping) else {}


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade vigil.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the vigil runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""
    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""
    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized
    selected = profile.strip()

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )
    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged, active_profile=selected)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""
    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, "", issues, partial=False)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_root(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {*_SECTION_RULES, "sensors", "profiles"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed - {"profiles"}, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(_SECTION_RULES):
        if key not in payload:
            continue
        section_path = _join(path, key)
        section = _as_object(payload[key], section_path, issues)
        if section is not None:
            out[key] = _validate_fields(
                section, _SECTION_RULES[key], section_path, issues, partial=partial
            )

    if "meta" in out and not partial:
        version = out["meta"].get("schema_version")
        if isinstance(version, int) and version != ConfigSchemaVersion:
            issues.add(_join(path, "meta.schema_version"), migration_guidance(version))

    if "sensors" in payload:
        sensors = _validate_sensors(payload["sensors"], _join(path, "sensors"), issues, partial)
        if sensors is not None:
            out["sensors"] = sensors

    if "profiles" in payload:
        if partial:
            issues.add(_join(path, "profiles"), "profiles cannot be nested in a profile overlay")
        else:
            profiles = _validate_profiles(payload["profiles"], _join(path, "profiles"), issues)
            if profiles is not None:
                out["profiles"] = profiles
    return out


def _validate_sensors(
    value: object, path: str, issues: _IssueCollector, partial: bool
) -> dict[str, Any] | None:
    payload = _as_object(value, path, issues)
    if payload is None:
        return None
    _reject_unknown_keys(payload, {"defaults", *SENSOR_SECTIONS}, path, issues)
    out: dict[str, Any] = {}
    if "defaults" in payload:
        defaults = _as_object(payload["defaults"], _join(path, "defaults"), issues)
        if defaults is not None:
            out["defaults"] = _validate_fields(
                defaults, _SENSOR_RULES, _join(path, "defaults"), issues, partial=partial
            )
    elif not partial:
        issues.add(_join(path, "defaults"), "missing required field")
    for name in SENSOR_SECTIONS:
        if name not in payload:
            continue
        overrides = _as_object(payload[name], _join(path, name), issues)
        if overrides is not None:
            out[name] = _validate_fields(
                overrides, _SENSOR_OVERRIDE_RULES, _join(path, name), issues, partial=True
            )
    return out


def _validate_profiles(
    value: object, path: str, issues: _IssueCollector
) -> dict[str, Any] | None:
    payload = _as_object(value, path, issues)
    if payload is None:
        return None
    out: dict[str, Any] = {}
    for name in sorted(payload):
        overlay = _as_object(payload[name], _join(path, name), issues)
        if overlay is not None:
            out[name] = _validate_root(overlay, _join(path, name), issues, partial=True)
    return out


def _validate_fields(
    payload: Mapping[str, object],
    rules: Mapping[str, _Rule],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(rules), path, issues)
    if not partial:
        _require_keys(
            payload, {key for key, rule in rules.items() if rule.required}, path, issues
        )
    out: dict[str, Any] = {}
    for key in sorted(rules):
        if key not in payload:
            continue
        parsed = _check_rule(payload[key], rules[key], _join(path, key), issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _check_rule(value: object, rule: _Rule, path: str, issues: _IssueCollector) -> object | None:
    if rule.kind == "bool":
        return _as_bool(value, path, issues)
    if rule.kind == "str":
        return _as_str(value, path, issues)
    if rule.kind == "path":
        return _as_path_text(value, path, issues)
    if rule.kind == "enum":
        return _as_enum(value, path, issues, allowed_values=rule.allowed)
    if rule.kind == "int":
        parsed_int = _as_int(value, path, issues, minimum=_int_or_none(rule.minimum))
        if parsed_int is not None and rule.maximum is not None and parsed_int > rule.maximum:
            issues.add(path, f"must be <= {rule.maximum:g}")
            return None
        return parsed_int
    return _as_float(value, path, issues, minimum=rule.minimum, maximum=rule.maximum)


def _int_or_none(value: float | None) -> int | None:
    return None if value is None else int(value)


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum:g}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum:g}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            elif isinstance(existing, Mapping):
                nested = _deep_copy_mapping(existing)
                _merge_into(nested, value)
                target[key] = nested
            else:
                nested_new: dict[str, Any] = {}
                _merge_into(nested_new, value)
                target[key] = nested_new
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "SENSOR_SECTIONS",
    "apply_profile_overlay",
    "assert_valid_config",
    "config_section",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
