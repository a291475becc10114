"""
vigil: continuous development-environment monitoring.

Sensors inspect a workspace, the orchestrator correlates what they report,
the planner turns the critical subset into an ordered remediation plan and
the executor applies it with verification and bounded rollback.

Importing the package has no side effects: no config loading, no logging
setup. Heavy submodules are imported by ``vigil.service`` on demand.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
