"""Utility exports for concurrency and graph helpers."""

from vigil.utils.concurrency import CancellationToken, Deadline, run_with_timeout, run_within
from vigil.utils.graph import CycleError, DirectedGraph

__all__ = [
    "CancellationToken",
    "CycleError",
    "Deadline",
    "DirectedGraph",
    "run_with_timeout",
    "run_within",
]
