"""
Action verification.

An action is verified by re-polling every sensor that reported one of its
issues and confirming none of the action's issue fingerprints reproduce.
A sensor that is gone or fails to poll leaves the action unverified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import structlog

from vigil.domain.models import Action
from vigil.sensors.registry import SensorRegistry


@dataclass(frozen=True, slots=True)
class VerificationResult:
    success: bool
    remaining_fingerprints: tuple[str, ...] = ()
    detail: str = ""


class ActionVerifier(Protocol):
    async def verify(self, action: Action) -> VerificationResult: ...


class SensorRecheckVerifier:
    """Verifies actions against a fresh poll of their originating sensors."""

    def __init__(self, registry: SensorRegistry) -> None:
        self._registry = registry
        self._logger = structlog.get_logger(__name__)

    async def verify(self, action: Action) -> VerificationResult:
        if not action.detected_by:
            return VerificationResult(success=True, detail="no originating sensor")

        expected = set(action.issue_fingerprints)
        remaining: set[str] = set()
        for kind in action.detected_by:
            sensor = self._registry.get(kind)
            if sensor is None:
                return VerificationResult(
                    success=False, detail=f"sensor {kind.value} is not registered"
                )
            try:
                result = await sensor.poll()
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "verification_poll_failed",
                    action_id=action.id,
                    sensor=kind.value,
                    error=str(exc),
                )
                return VerificationResult(
                    success=False, detail=f"sensor {kind.value} failed to poll: {exc}"
                )
            remaining.update(
                issue.fingerprint for issue in result.issues if issue.fingerprint in expected
            )

        if remaining:
            return VerificationResult(
                success=False,
                remaining_fingerprints=tuple(sorted(remaining)),
                detail=f"{len(remaining)} issue(s) still reproduce",
            )
        return VerificationResult(success=True)


__all__ = ["ActionVerifier", "SensorRecheckVerifier", "VerificationResult"]
