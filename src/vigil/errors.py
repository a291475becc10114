"""Exception hierarchy for sensor, planning and execution failures."""

from __future__ import annotations


class VigilError(Exception):
    """Base class for all vigil runtime errors."""


class SensorError(VigilError):
    """A sensor could not produce a result."""

    def __init__(self, sensor_kind: str, message: str) -> None:
        self.sensor_kind = sensor_kind
        super().__init__(f"{sensor_kind}: {message}")


class SensorPollError(SensorError):
    """A poll raised or exceeded its timeout."""


class SensorUnavailableError(SensorError):
    """The sensor is recovering or terminally failed and refuses to poll."""


class SensorRegistrationError(VigilError):
    """A sensor could not be registered."""


class DuplicateSensorError(SensorRegistrationError):
    """A sensor of the same kind is already registered."""


class RegistryCapacityError(SensorRegistrationError):
    """The registry already holds its configured maximum of sensors."""


class TemplateCatalogError(VigilError):
    """An action template catalog is malformed."""


class RollbackError(VigilError):
    """A compensating step failed, timed out or did not verify."""

    def __init__(self, action_id: str, step_index: int, message: str) -> None:
        self.action_id = action_id
        self.step_index = step_index
        super().__init__(f"rollback of {action_id} failed at step {step_index}: {message}")


__all__ = [
    "DuplicateSensorError",
    "RegistryCapacityError",
    "RollbackError",
    "SensorError",
    "SensorPollError",
    "SensorRegistrationError",
    "SensorUnavailableError",
    "TemplateCatalogError",
    "VigilError",
]
