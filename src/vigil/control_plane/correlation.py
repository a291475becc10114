"""
Weighted correlation scoring over one cycle's issues and sensor results.

Pure functions parameterized by ``CorrelationSettings``:

- issue correlation: same file, same kind, related-file overlap ratio and a
  temporal bonus that decays linearly across ``temporal_window_seconds``
- interference strength: mean of ``correlation * (severity_a + severity_b)``
  over pairs above ``interference_threshold``; the neutral 1.0 when no pair
  qualifies so isolated issues are ranked by severity alone
- resonance frequency: ``min(1, resonance_window / span)`` of detection times
- entanglement level: mean pairwise sensor-result correlation
- critical subset: issues whose ``severity * strength * resonance *
  amplification`` exceeds ``critical_threshold``
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations

from vigil.config.schema import config_section
from vigil.domain.models import Issue, SensorResult, Severity, utc_now

NEUTRAL_INTERFERENCE = 1.0


@dataclass(frozen=True, slots=True)
class CorrelationSettings:
    same_file_weight: float = 0.5
    same_kind_weight: float = 0.3
    related_files_weight: float = 0.2
    temporal_window_seconds: float = 5.0
    temporal_weight: float = 0.1
    interference_threshold: float = 0.5
    resonance_window_seconds: float = 10.0
    amplification: float = 1.5
    critical_threshold: float = float(Severity.MEDIUM)
    entanglement_window_seconds: float = 10.0
    critical_path_length: int = 5
    max_issues_per_cycle: int = 500
    history_size: int = 100

    def __post_init__(self) -> None:
        for name in (
            "temporal_window_seconds",
            "resonance_window_seconds",
            "entanglement_window_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.critical_path_length < 1 or self.max_issues_per_cycle < 1:
            raise ValueError("critical_path_length and max_issues_per_cycle must be >= 1")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> CorrelationSettings:
        section = config_section(config, "correlation")
        known = set(cls.__dataclass_fields__)
        return cls(**{key: value for key, value in section.items() if key in known})  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class InterferencePattern:
    """Everything the correlation step concluded about one cycle."""

    issues: tuple[Issue, ...]
    interference_strength: float
    resonance_frequency: float
    entanglement_level: float
    critical_path: tuple[str, ...]
    critical_issues: tuple[Issue, ...]
    analyzed_at: datetime = field(default_factory=utc_now)


def issue_correlation(first: Issue, second: Issue, settings: CorrelationSettings) -> float:
    score = 0.0
    if first.location.file == second.location.file:
        score += settings.same_file_weight
    if first.kind is second.kind:
        score += settings.same_kind_weight

    related_first = set(first.location.related_files)
    related_second = set(second.location.related_files)
    shared = related_first & related_second
    if shared:
        ratio = len(shared) / max(len(related_first), len(related_second))
        score += settings.related_files_weight * ratio

    gap = abs((first.detected_at - second.detected_at).total_seconds())
    if gap < settings.temporal_window_seconds:
        score += settings.temporal_weight * (1.0 - gap / settings.temporal_window_seconds)

    return min(1.0, max(0.0, score))


def interference_strength(issues: Sequence[Issue], settings: CorrelationSettings) -> float:
    total = 0.0
    count = 0
    for first, second in combinations(issues, 2):
        correlation = issue_correlation(first, second, settings)
        if correlation > settings.interference_threshold:
            total += correlation * (int(first.severity) + int(second.severity))
            count += 1
    return total / count if count else NEUTRAL_INTERFERENCE


def resonance_frequency(issues: Sequence[Issue], settings: CorrelationSettings) -> float:
    if not issues:
        return 0.0
    timestamps = [issue.detected_at for issue in issues]
    span = (max(timestamps) - min(timestamps)).total_seconds()
    if span <= 0:
        return 1.0
    return min(1.0, settings.resonance_window_seconds / span)


def sensor_correlation(
    first: SensorResult, second: SensorResult, settings: CorrelationSettings
) -> float:
    score = 0.5 if first.status is second.status else 0.0
    gap = abs((first.timestamp - second.timestamp).total_seconds())
    score += max(0.0, 0.5 - gap / settings.entanglement_window_seconds)
    return min(1.0, score)


def entanglement_level(results: Sequence[SensorResult], settings: CorrelationSettings) -> float:
    """Mean pairwise sensor-result correlation; diagnostic only."""
    pairs = list(combinations(results, 2))
    if not pairs:
        return 0.0
    return sum(sensor_correlation(a, b, settings) for a, b in pairs) / len(pairs)


def critical_path(issues: Sequence[Issue], length: int) -> tuple[str, ...]:
    """Files ranked by severity-weighted issue count, then by name."""
    weights: dict[str, int] = defaultdict(int)
    for issue in issues:
        weights[issue.location.file] += int(issue.severity)
    ranked = sorted(weights.items(), key=lambda item: (-item[1], item[0]))
    return tuple(path for path, _ in ranked[:length])


def critical_score(issue: Issue, strength: float, resonance: float, amplification: float) -> float:
    return int(issue.severity) * strength * resonance * amplification


def critical_subset(
    issues: Sequence[Issue],
    strength: float,
    resonance: float,
    settings: CorrelationSettings,
) -> tuple[Issue, ...]:
    scored = [
        (critical_score(issue, strength, resonance, settings.amplification), issue)
        for issue in issues
    ]
    kept = [(score, issue) for score, issue in scored if score > settings.critical_threshold]
    kept.sort(key=lambda item: (-item[0], item[1].detected_at, item[1].id))
    return tuple(issue for _, issue in kept)


def cap_issues(issues: Sequence[Issue], limit: int) -> tuple[Issue, ...]:
    """Keep at most ``limit`` issues, highest severity first, then earliest."""
    if len(issues) <= limit:
        return tuple(issues)
    ranked = sorted(issues, key=lambda issue: (-int(issue.severity), issue.detected_at, issue.id))
    return tuple(ranked[:limit])


def analyze(
    issues: Sequence[Issue],
    results: Sequence[SensorResult],
    settings: CorrelationSettings,
) -> InterferencePattern:
    strength = interference_strength(issues, settings)
    resonance = resonance_frequency(issues, settings)
    return InterferencePattern(
        issues=tuple(issues),
        interference_strength=strength,
        resonance_frequency=resonance,
        entanglement_level=entanglement_level(results, settings),
        critical_path=critical_path(issues, settings.critical_path_length),
        critical_issues=critical_subset(issues, strength, resonance, settings),
    )


__all__ = [
    "NEUTRAL_INTERFERENCE",
    "CorrelationSettings",
    "InterferencePattern",
    "analyze",
    "cap_issues",
    "critical_path",
    "critical_score",
    "critical_subset",
    "entanglement_level",
    "interference_strength",
    "issue_correlation",
    "resonance_frequency",
    "sensor_correlation",
]
