"""Stable constants shared across vigil planes."""

from __future__ import annotations

from typing import Final

# Schema versions for configuration and template catalogs.
CONFIG_SCHEMA_VERSION: Final[int] = 1
TEMPLATE_CATALOG_SCHEMA_VERSION: Final[int] = 1

DEFAULT_CONFIG_FILE: Final[str] = "vigil.toml"
ENV_PREFIX: Final[str] = "VIGIL_"
DEFAULT_LOGGER_NAME: Final[str] = "vigil"

# Registry bounds.
DEFAULT_MAX_SENSORS: Final[int] = 10
DEFAULT_RESULT_BUFFER_SIZE: Final[int] = 1000
DEFAULT_HISTORY_SIZE: Final[int] = 1000
DEFAULT_INTERFERENCE_HISTORY_SIZE: Final[int] = 100

# Correlation assigned to sensor pairs before any co-critical pass is observed.
NEUTRAL_SENSOR_CORRELATION: Final[float] = 0.5

# Sensor health thresholds.
HEALTHY_SUCCESS_RATE: Final[float] = 0.8
HEALTH_STALENESS_SECONDS: Final[float] = 30.0

# Critical path placeholder used by emergency plans.
EMERGENCY_CRITICAL_PATH: Final[tuple[str, ...]] = ("system",)

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_HISTORY_SIZE",
    "DEFAULT_INTERFERENCE_HISTORY_SIZE",
    "DEFAULT_LOGGER_NAME",
    "DEFAULT_MAX_SENSORS",
    "DEFAULT_RESULT_BUFFER_SIZE",
    "EMERGENCY_CRITICAL_PATH",
    "ENV_PREFIX",
    "HEALTHY_SUCCESS_RATE",
    "HEALTH_STALENESS_SECONDS",
    "NEUTRAL_SENSOR_CORRELATION",
    "TEMPLATE_CATALOG_SCHEMA_VERSION",
]
