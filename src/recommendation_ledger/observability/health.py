"""
recommendation-ledger — health monitor

File: src/recommendation_ledger/observability/health.py

Purpose
- Keep a bounded, time-pruned window of operation metrics and derive health from it.
- Run live checks against the record store on demand.

What is included in this file
- ``HealthThresholds``: tunables, mirrored by the ``[health]`` config section.
- ``HealthMonitor``: record, stats, status derivation, reset and live health check.

Functional requirements
- ``record`` is O(1) amortized; eviction is oldest-first by capacity and retention.
- ``current_status`` is recomputed from the window on every call; ``None`` when empty.

Non-functional requirements
- Safe to share across threads: all window access happens under one ``RLock``.
"""

from __future__ import annotations

import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Final

import structlog

from recommendation_ledger.domain.models import (
    HealthMetric,
    HealthStatus,
    JSONValue,
    PerformanceStats,
    CheckResult,
    SystemHealthStatus,
    worst_status,
)
from recommendation_ledger.observability.checks import check_database, check_recommendations
from recommendation_ledger.persistence.store import utc_now

if TYPE_CHECKING:
    from recommendation_ledger.persistence.store import RecordStore

_SUCCESS_RATE_ALERT_MIN_SAMPLES: Final[int] = 10
_RECENT_PERFORMANCE_WINDOW: Final[timedelta] = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class HealthThresholds:
    window_size: int = 1000
    retention_hours: float = 24.0
    slow_operation_ms: float = 5000.0
    critical_operation_ms: float = 15000.0
    min_success_rate: float = 0.95
    critical_success_rate: float = 0.5
    consecutive_failures_threshold: int = 3
    recent_failures_limit: int = 10

    def __post_init__(self) -> None:
        if self.window_size <= 0:
            raise ValueError("window_size must be > 0")
        if self.retention_hours <= 0:
            raise ValueError("retention_hours must be > 0")
        if not 0.0 <= self.critical_success_rate <= self.min_success_rate <= 1.0:
            raise ValueError("expected 0 <= critical_success_rate <= min_success_rate <= 1")
        if self.slow_operation_ms <= 0 or self.critical_operation_ms < self.slow_operation_ms:
            raise ValueError("expected 0 < slow_operation_ms <= critical_operation_ms")
        if self.consecutive_failures_threshold <= 0:
            raise ValueError("consecutive_failures_threshold must be > 0")
        if self.recent_failures_limit <= 0:
            raise ValueError("recent_failures_limit must be > 0")


class HealthMonitor:
    """Sliding-window health tracking for persistence operations."""

    def __init__(
        self,
        thresholds: HealthThresholds | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._thresholds = thresholds if thresholds is not None else HealthThresholds()
        self._clock = clock if clock is not None else utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = threading.RLock()
        self._window: deque[HealthMetric] = deque(maxlen=self._thresholds.window_size)
        self._last_health_check: SystemHealthStatus | None = None

    @property
    def thresholds(self) -> HealthThresholds:
        return self._thresholds

    @property
    def last_health_check(self) -> SystemHealthStatus | None:
        with self._lock:
            return self._last_health_check

    def record(self, metric: HealthMetric) -> None:
        """Append one metric, evict expired entries and emit any alert events."""

        with self._lock:
            self._window.append(metric)
            self._prune(self._clock())
            streak = self._failure_streak()
            window_size = len(self._window)
            success_rate = self._success_rate(self._window)

        self._logger.debug(
            "health_metric_recorded",
            operation_type=metric.operation_type.value,
            duration_ms=round(metric.duration_ms, 3),
            success=metric.success,
            consecutive_failures=streak,
        )

        limits = self._thresholds
        if streak >= limits.consecutive_failures_threshold:
            self._logger.warning(
                "health_alert",
                alert="consecutive_failures",
                consecutive_failures=streak,
            )
        if metric.duration_ms > limits.critical_operation_ms:
            self._logger.warning(
                "health_alert",
                alert="critical_slow_operation",
                operation_type=metric.operation_type.value,
                duration_ms=round(metric.duration_ms, 3),
            )
        if (
            window_size >= _SUCCESS_RATE_ALERT_MIN_SAMPLES
            and success_rate < limits.min_success_rate
        ):
            self._logger.warning(
                "health_alert",
                alert="low_success_rate",
                success_rate=round(success_rate, 4),
                sample_size=window_size,
            )

    def performance_stats(self) -> PerformanceStats:
        with self._lock:
            metrics = tuple(self._window)

        by_type = Counter(item.operation_type.value for item in metrics)
        failures = tuple(item for item in metrics if not item.success)
        limit = self._thresholds.recent_failures_limit
        return PerformanceStats(
            total_operations=len(metrics),
            success_rate=self._success_rate(metrics),
            average_duration_ms=_average_duration(metrics),
            operations_by_type=dict(sorted(by_type.items())),
            recent_failures=tuple(reversed(failures[-limit:])),
        )

    def current_status(self) -> HealthStatus | None:
        """Classify the window; ``None`` means nothing has been observed yet."""

        with self._lock:
            if not self._window:
                return None
            metrics = tuple(self._window)
            streak = self._failure_streak()

        limits = self._thresholds
        success_rate = self._success_rate(metrics)
        if (
            success_rate < limits.critical_success_rate
            or streak >= limits.consecutive_failures_threshold
        ):
            return HealthStatus.CRITICAL
        if (
            success_rate < limits.min_success_rate
            or _average_duration(metrics) > limits.slow_operation_ms
        ):
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    def recent_performance(self) -> dict[str, JSONValue]:
        """Average duration, success rate and count over the last hour of the window."""

        cutoff = self._clock() - _RECENT_PERFORMANCE_WINDOW
        with self._lock:
            recent = tuple(item for item in self._window if item.timestamp >= cutoff)
        return {
            "average_response_time_ms": round(_average_duration(recent), 3),
            "success_rate": self._success_rate(recent),
            "recent_operations": len(recent),
        }

    def reset(self) -> None:
        with self._lock:
            self._window.clear()
            self._last_health_check = None
        self._logger.info("health_monitor_reset")

    def perform_health_check(self, store: RecordStore) -> SystemHealthStatus:
        """Check the store live and cache the combined result as ``last_health_check``."""

        timestamp = self._clock()
        slow_ms = self._thresholds.slow_operation_ms
        try:
            database = check_database(store, slow_operation_ms=slow_ms)
            recommendations = check_recommendations(store, slow_operation_ms=slow_ms, now=timestamp)
            status = SystemHealthStatus(
                overall=worst_status(database.status, recommendations.status),
                database=database,
                recommendations=recommendations,
                performance=self.recent_performance(),
                timestamp=timestamp,
            )
        except Exception as exc:
            self._logger.error("health_check_failed", error=str(exc), exc_info=True)
            status = _all_critical(str(exc), timestamp)

        with self._lock:
            self._last_health_check = status

        self._logger.info(
            "health_check_completed",
            overall=status.overall.value,
            database=status.database.status.value,
            recommendations=status.recommendations.status.value,
        )
        return status

    def _prune(self, now: datetime) -> None:
        cutoff = now - timedelta(hours=self._thresholds.retention_hours)
        while self._window and self._window[0].timestamp < cutoff:
            self._window.popleft()

    def _failure_streak(self) -> int:
        streak = 0
        for item in reversed(self._window):
            if item.success:
                break
            streak += 1
        return streak

    @staticmethod
    def _success_rate(metrics: tuple[HealthMetric, ...] | deque[HealthMetric]) -> float:
        if not metrics:
            return 0.0
        return sum(1 for item in metrics if item.success) / len(metrics)


def _average_duration(metrics: tuple[HealthMetric, ...]) -> float:
    if not metrics:
        return 0.0
    return sum(item.duration_ms for item in metrics) / len(metrics)


def _all_critical(error: str, timestamp: datetime) -> SystemHealthStatus:
    return SystemHealthStatus(
        overall=HealthStatus.CRITICAL,
        database=CheckResult(
            name="database",
            status=HealthStatus.CRITICAL,
            response_time_ms=0.0,
            message=f"Health check failed: {error}",
            error=error,
        ),
        recommendations=CheckResult(
            name="recommendations",
            status=HealthStatus.CRITICAL,
            response_time_ms=0.0,
            message="Unable to check due to health check failure",
            error=error,
        ),
        performance={
            "average_response_time_ms": 0.0,
            "success_rate": 0.0,
            "recent_operations": 0,
        },
        timestamp=timestamp,
    )


__all__ = ["HealthMonitor", "HealthThresholds"]
