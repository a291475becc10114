"""
Control plane: correlation scoring and the cycle orchestrator.

Only the correlation primitives are re-exported here; the planner depends on
them, and the orchestrator depends on the planner. Import the orchestrator
from ``vigil.control_plane.orchestrator``.
"""

from vigil.control_plane.correlation import (
    CorrelationSettings,
    InterferencePattern,
    analyze,
    issue_correlation,
)

__all__ = [
    "CorrelationSettings",
    "InterferencePattern",
    "analyze",
    "issue_correlation",
]
