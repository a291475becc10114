"""Public observability primitives: structured logging, metrics and sensor events."""

from vigil.observability.events import EventBus, SensorEvent, SensorEventType
from vigil.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from vigil.observability.metrics import MetricsRegistry

__all__ = [
    "EventBus",
    "LoggingConfig",
    "MetricsRegistry",
    "SensorEvent",
    "SensorEventType",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
