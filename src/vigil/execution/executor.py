"""
Plan executor.

Purpose
- Run a plan's actions strictly in order: preconditions, remediation,
  verification, and on failure the action's rollback strategy.
- Record one history entry per action that ran and keep going; a single
  action's failure never aborts the plan. Precondition skips are reported
  but not recorded.

Rollback
- Steps run in order, each at most once, each bounded by what is left of the
  strategy's ``time_limit_seconds``.
- A step that raises, times out or does not verify stops the rollback; the
  action is flagged for manual follow-up.
- A non-manual strategy without steps is reported as not performed
  (``rollback_succeeded`` is ``None``).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

import structlog

from vigil.config.schema import config_section
from vigil.domain.models import (
    Action,
    ActionKind,
    ExecutionOutcome,
    ExecutionRecord,
    Plan,
    RollbackKind,
)
from vigil.errors import RollbackError
from vigil.execution.history import ExecutionHistory
from vigil.execution.system_state import PreconditionPolicy, SystemStateProbe
from vigil.execution.verification import ActionVerifier, VerificationResult
from vigil.observability.logging import correlation_scope
from vigil.observability.metrics import MetricsRegistry
from vigil.utils.concurrency import Deadline, run_with_timeout, run_within


class Remediator(Protocol):
    async def apply(self, action: Action) -> None: ...


@dataclass(frozen=True, slots=True)
class ExecutorSettings:
    action_timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.action_timeout_seconds <= 0:
            raise ValueError("action_timeout_seconds must be > 0")

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> ExecutorSettings:
        section = config_section(config, "executor")
        return cls(
            action_timeout_seconds=float(section.get("action_timeout_seconds", 60.0)),  # type: ignore[arg-type]
        )


@dataclass(frozen=True, slots=True)
class RollbackOutcome:
    succeeded: bool
    steps_run: int
    error: RollbackError | None = None


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    action_id: str
    action_kind: ActionKind
    outcome: ExecutionOutcome
    duration_seconds: float
    rollback_required: bool
    rollback_succeeded: bool | None = None
    manual_followup: bool = False
    detail: str = ""


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    plan_id: str
    outcomes: tuple[ActionOutcome, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.outcomes if item.outcome is ExecutionOutcome.SUCCEEDED)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def manual_followups(self) -> tuple[str, ...]:
        return tuple(item.action_id for item in self.outcomes if item.manual_followup)


class Executor:
    def __init__(
        self,
        verifier: ActionVerifier,
        history: ExecutionHistory | None = None,
        *,
        remediators: Mapping[ActionKind, Remediator] | None = None,
        probe: SystemStateProbe | None = None,
        preconditions: PreconditionPolicy | None = None,
        settings: ExecutorSettings | None = None,
        metrics: MetricsRegistry | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._verifier = verifier
        self._history = history if history is not None else ExecutionHistory()
        self._remediators: dict[ActionKind, Remediator] = dict(remediators or {})
        self._probe = probe
        self._preconditions = preconditions if preconditions is not None else PreconditionPolicy()
        self._settings = settings or ExecutorSettings()
        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._monotonic = monotonic
        self._logger = structlog.get_logger(__name__)

    @property
    def history(self) -> ExecutionHistory:
        return self._history

    def register_remediator(self, kind: ActionKind, remediator: Remediator) -> None:
        self._remediators[kind] = remediator

    async def execute(self, plan: Plan) -> ExecutionReport:
        outcomes: list[ActionOutcome] = []
        with correlation_scope(plan_id=plan.id):
            for action in plan.ordered_actions:
                with correlation_scope(action_id=action.id):
                    outcome = await self._execute_action(action)
                outcomes.append(outcome)
        report = ExecutionReport(plan_id=plan.id, outcomes=tuple(outcomes))
        self._logger.info(
            "plan_executed",
            plan_id=plan.id,
            actions=len(outcomes),
            succeeded=report.succeeded,
            failed=report.failed,
            manual_followups=len(report.manual_followups),
        )
        return report

    async def _execute_action(self, action: Action) -> ActionOutcome:
        labels = {"kind": action.kind.value}
        started = self._monotonic()

        violations = self._check_preconditions(action)
        if violations:
            detail = "; ".join(violations)
            self._logger.warning(
                "action_preconditions_failed", action_kind=action.kind.value, reasons=violations
            )
            return self._record(
                action,
                started,
                ExecutionOutcome.PRECONDITION_FAILED,
                rollback=None,
                detail=detail,
            )

        self._metrics.inc("actions_executed", labels=labels)
        try:
            verification = await self._run_and_verify(action)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            detail = str(exc) or type(exc).__name__
            self._logger.warning(
                "action_failed", action_kind=action.kind.value, error=detail
            )
            outcome = ExecutionOutcome.ERRORED
        else:
            if verification.success:
                return self._record(action, started, ExecutionOutcome.SUCCEEDED, rollback=None)
            detail = verification.detail
            self._logger.warning(
                "action_verification_failed",
                action_kind=action.kind.value,
                remaining=list(verification.remaining_fingerprints),
                detail=detail,
            )
            outcome = ExecutionOutcome.VERIFICATION_FAILED

        rollback = await self._rollback(action)
        return self._record(action, started, outcome, rollback=rollback, detail=detail)

    def _check_preconditions(self, action: Action) -> tuple[str, ...]:
        if self._probe is None or not self._preconditions.settings.enabled:
            return ()
        return self._preconditions.check(action, self._probe.snapshot())

    async def _run_and_verify(self, action: Action) -> VerificationResult:
        timeout = self._settings.action_timeout_seconds
        remediator = self._remediators.get(action.kind)
        if remediator is not None:
            await run_with_timeout(remediator.apply(action), timeout)
        return await run_with_timeout(self._verifier.verify(action), timeout)

    async def _rollback(self, action: Action) -> RollbackOutcome | None:
        """Run the action's rollback; ``None`` when there was nothing to run."""
        strategy = action.rollback
        if not strategy.steps:
            if strategy.kind is RollbackKind.MANUAL:
                self._metrics.inc("rollbacks", labels={"kind": action.kind.value})
                error = RollbackError(action.id, 0, "manual rollback required")
                self._logger.warning("rollback_manual", action_kind=action.kind.value)
                return RollbackOutcome(succeeded=False, steps_run=0, error=error)
            self._logger.warning(
                "rollback_not_performed",
                action_kind=action.kind.value,
                rollback_kind=strategy.kind.value,
                reason="no rollback steps",
            )
            return None

        self._metrics.inc("rollbacks", labels={"kind": action.kind.value})

        deadline = Deadline(strategy.time_limit_seconds, clock=self._monotonic)
        for index, step in enumerate(strategy.steps):
            try:
                await run_within(step.run(), deadline)
                verified = await run_within(step.verify(), deadline)
            except asyncio.CancelledError:
                raise
            except TimeoutError:
                error = RollbackError(
                    action.id,
                    index,
                    f"exceeded time limit of {strategy.time_limit_seconds} seconds",
                )
                return self._rollback_failed(action, index, error)
            except Exception as exc:  # noqa: BLE001
                error = RollbackError(action.id, index, str(exc) or type(exc).__name__)
                return self._rollback_failed(action, index, error)
            if not verified:
                error = RollbackError(action.id, index, f"step {step.description!r} did not verify")
                return self._rollback_failed(action, index, error)

        self._logger.info(
            "rollback_completed", action_kind=action.kind.value, steps=len(strategy.steps)
        )
        return RollbackOutcome(succeeded=True, steps_run=len(strategy.steps))

    def _rollback_failed(self, action: Action, index: int, error: RollbackError) -> RollbackOutcome:
        self._logger.warning(
            "rollback_failed",
            action_kind=action.kind.value,
            step_index=index,
            error=str(error),
            manual_followup=True,
        )
        return RollbackOutcome(succeeded=False, steps_run=index + 1, error=error)

    def _record(
        self,
        action: Action,
        started: float,
        outcome: ExecutionOutcome,
        *,
        rollback: RollbackOutcome | None,
        detail: str = "",
    ) -> ActionOutcome:
        duration = max(0.0, self._monotonic() - started)
        labels = {"kind": action.kind.value}
        success = outcome is ExecutionOutcome.SUCCEEDED
        rollback_required = outcome in (
            ExecutionOutcome.VERIFICATION_FAILED,
            ExecutionOutcome.ERRORED,
        )
        rollback_succeeded = None if rollback is None else rollback.succeeded
        if rollback is not None and rollback.error is not None:
            detail = f"{detail}; {rollback.error}" if detail else str(rollback.error)

        if outcome is ExecutionOutcome.PRECONDITION_FAILED:
            # Skipped actions never ran, so they stay out of the learning history.
            self._metrics.inc("actions_skipped", labels=labels)
        else:
            self._history.append(
                ExecutionRecord(
                    action_id=action.id,
                    action_kind=action.kind,
                    duration_seconds=duration,
                    success=success,
                    rollback_required=rollback_required,
                    outcome=outcome,
                    rollback_succeeded=rollback_succeeded,
                    error=detail or None,
                )
            )
            self._metrics.observe("action_duration_seconds", duration, labels=labels)
            if not success:
                self._metrics.inc("actions_failed", labels=labels)
        return ActionOutcome(
            action_id=action.id,
            action_kind=action.kind,
            outcome=outcome,
            duration_seconds=duration,
            rollback_required=rollback_required,
            rollback_succeeded=rollback_succeeded,
            manual_followup=rollback_succeeded is False,
            detail=detail,
        )


__all__ = [
    "ActionOutcome",
    "ExecutionReport",
    "Executor",
    "ExecutorSettings",
    "Remediator",
    "RollbackOutcome",
]
