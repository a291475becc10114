"""Execution plane: executor, verification, preconditions and execution history."""

from vigil.execution.executor import (
    ActionOutcome,
    ExecutionReport,
    Executor,
    ExecutorSettings,
    Remediator,
)
from vigil.execution.history import ExecutionHistory, ExecutionStatistics, KindStatistics
from vigil.execution.system_state import (
    PreconditionPolicy,
    PreconditionSettings,
    PsutilProbe,
    SystemStateSnapshot,
)
from vigil.execution.verification import (
    ActionVerifier,
    SensorRecheckVerifier,
    VerificationResult,
)

__all__ = [
    "ActionOutcome",
    "ActionVerifier",
    "ExecutionHistory",
    "ExecutionReport",
    "ExecutionStatistics",
    "Executor",
    "ExecutorSettings",
    "KindStatistics",
    "PreconditionPolicy",
    "PreconditionSettings",
    "PsutilProbe",
    "Remediator",
    "SensorRecheckVerifier",
    "SystemStateSnapshot",
    "VerificationResult",
]
