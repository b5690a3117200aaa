"""Observability package: structured logging, health monitoring, checks and ratings."""

from recommendation_ledger.observability.health import HealthMonitor, HealthThresholds
from recommendation_ledger.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)
from recommendation_ledger.observability.performance import (
    OperationMeasurement,
    measure_operation,
    rate_duration,
    worst_rating,
)

__all__ = [
    "HealthMonitor",
    "HealthThresholds",
    "LoggingConfig",
    "OperationMeasurement",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "measure_operation",
    "rate_duration",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
    "worst_rating",
]
