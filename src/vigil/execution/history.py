"""Bounded in-memory execution history and derived statistics."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from vigil.constants import DEFAULT_HISTORY_SIZE
from vigil.domain.models import ActionKind, ExecutionOutcome, ExecutionRecord


@dataclass(frozen=True, slots=True)
class KindStatistics:
    count: int
    success_rate: float
    average_duration_seconds: float
    rollback_count: int


@dataclass(frozen=True, slots=True)
class ExecutionStatistics:
    total_executions: int
    success_rate: float
    average_duration_seconds: float
    per_kind: Mapping[ActionKind, KindStatistics] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "per_kind", MappingProxyType(dict(self.per_kind)))


class ExecutionHistory:
    """Ring buffer of execution records; the oldest record drops first."""

    def __init__(self, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._records: deque[ExecutionRecord] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._records.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def append(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._records.append(record)

    def extend(self, records: Iterable[ExecutionRecord]) -> None:
        with self._lock:
            self._records.extend(records)

    def records(self, kind: ActionKind | None = None) -> tuple[ExecutionRecord, ...]:
        with self._lock:
            snapshot = tuple(self._records)
        if kind is None:
            return snapshot
        return tuple(record for record in snapshot if record.action_kind is kind)

    def success_rate_for(self, kind: ActionKind) -> float | None:
        """Historical success rate of ``kind``; ``None`` when it never ran.

        Precondition skips are ignored: the action never started.
        """
        records = [
            record
            for record in self.records(kind)
            if record.outcome is not ExecutionOutcome.PRECONDITION_FAILED
        ]
        if not records:
            return None
        return sum(1 for record in records if record.success) / len(records)

    def statistics(self) -> ExecutionStatistics:
        records = self.records()
        if not records:
            return ExecutionStatistics(
                total_executions=0, success_rate=0.0, average_duration_seconds=0.0
            )

        by_kind: dict[ActionKind, list[ExecutionRecord]] = {}
        for record in records:
            by_kind.setdefault(record.action_kind, []).append(record)

        return ExecutionStatistics(
            total_executions=len(records),
            success_rate=_success_rate(records),
            average_duration_seconds=_average_duration(records),
            per_kind={
                kind: KindStatistics(
                    count=len(items),
                    success_rate=_success_rate(items),
                    average_duration_seconds=_average_duration(items),
                    rollback_count=sum(1 for item in items if item.rollback_required),
                )
                for kind, items in sorted(by_kind.items(), key=lambda item: item[0].value)
            },
        )

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


def _success_rate(records: Iterable[ExecutionRecord]) -> float:
    items = list(records)
    return sum(1 for record in items if record.success) / len(items)


def _average_duration(records: Iterable[ExecutionRecord]) -> float:
    items = list(records)
    return sum(record.duration_seconds for record in items) / len(items)


__all__ = ["ExecutionHistory", "ExecutionStatistics", "KindStatistics"]
