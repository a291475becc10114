"""Sensor plane: the sensor contract, reference sensors and the registry."""

from vigil.sensors.base import (
    FailureInfo,
    Inspection,
    Inspector,
    MonitoredSensor,
    Sensor,
    SensorConfig,
    SensorHealth,
)
from vigil.sensors.dependency import DependencySensor
from vigil.sensors.registry import (
    RegistryHealth,
    RegistrySettings,
    SensorRegistration,
    SensorRegistry,
)
from vigil.sensors.syntax import SyntaxSensor
from vigil.sensors.workspace import (
    FileProvider,
    InMemoryFileProvider,
    PackageManifest,
    SourceFile,
)

__all__ = [
    "DependencySensor",
    "FailureInfo",
    "FileProvider",
    "InMemoryFileProvider",
    "Inspection",
    "Inspector",
    "MonitoredSensor",
    "PackageManifest",
    "RegistryHealth",
    "RegistrySettings",
    "Sensor",
    "SensorConfig",
    "SensorHealth",
    "SensorRegistration",
    "SensorRegistry",
    "SourceFile",
    "SyntaxSensor",
]
