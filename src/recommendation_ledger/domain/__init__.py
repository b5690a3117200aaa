"""Domain types for the recommendation ledger."""

from __future__ import annotations

from recommendation_ledger.domain.models import (
    ConsistencyResult,
    CorruptedRecord,
    Effort,
    FetchOutcome,
    FlowVerificationResult,
    HealthMetric,
    HealthStatus,
    OperationType,
    PerformanceRating,
    PerformanceStats,
    PhaseResult,
    Priority,
    CheckResult,
    RecommendationInput,
    RecommendationRecord,
    RecommendationStatus,
    SaveOutcome,
    SystemHealthStatus,
    VerificationResult,
)

__all__ = [
    "ConsistencyResult",
    "CorruptedRecord",
    "Effort",
    "FetchOutcome",
    "FlowVerificationResult",
    "HealthMetric",
    "HealthStatus",
    "OperationType",
    "PerformanceRating",
    "PerformanceStats",
    "PhaseResult",
    "Priority",
    "CheckResult",
    "RecommendationInput",
    "RecommendationRecord",
    "RecommendationStatus",
    "SaveOutcome",
    "SystemHealthStatus",
    "VerificationResult",
]
