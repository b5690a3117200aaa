"""
recommendation-ledger — unit tests for the health monitor

File: tests/unit/observability/test_health.py

Purpose
- Validate window statistics, status derivation and alert events.
- Validate live health checks, including the all-critical fallback.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import structlog
from structlog.testing import CapturingLogger

from recommendation_ledger.domain.models import HealthMetric, HealthStatus, OperationType
from recommendation_ledger.observability import health as health_module
from recommendation_ledger.observability.health import HealthMonitor, HealthThresholds
from recommendation_ledger.persistence.store import RecordStore

pytestmark = pytest.mark.unit


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


def _capturing_logger() -> tuple[CapturingLogger, object]:
    sink = CapturingLogger()
    return sink, structlog.wrap_logger(sink, processors=[])


def _metric(
    clock: _Clock,
    *,
    success: bool = True,
    duration_ms: float = 10.0,
    op: OperationType = OperationType.SAVE,
) -> HealthMetric:
    return HealthMetric(
        operation_type=op,
        duration_ms=duration_ms,
        success=success,
        timestamp=clock(),
        error_message=None if success else "boom",
    )


def _alerts(sink: CapturingLogger) -> list[str]:
    return [
        str(call.kwargs.get("alert"))
        for call in sink.calls
        if call.kwargs.get("event") == "health_alert"
    ]


@pytest.fixture
def clock() -> _Clock:
    return _Clock(datetime(2026, 5, 4, 9, 0, tzinfo=UTC))


def test_thresholds_reject_inconsistent_values() -> None:
    with pytest.raises(ValueError, match="critical_success_rate"):
        HealthThresholds(min_success_rate=0.4, critical_success_rate=0.5)
    with pytest.raises(ValueError, match="slow_operation_ms"):
        HealthThresholds(slow_operation_ms=100.0, critical_operation_ms=50.0)
    with pytest.raises(ValueError, match="window_size"):
        HealthThresholds(window_size=0)


def test_empty_monitor_has_no_status_and_zeroed_stats(clock: _Clock) -> None:
    monitor = HealthMonitor(clock=clock)

    stats = monitor.performance_stats()

    assert monitor.current_status() is None
    assert stats.total_operations == 0
    assert stats.success_rate == 0.0
    assert stats.recent_failures == ()
    assert monitor.recent_performance()["success_rate"] == 0.0
    assert stats.average_duration_ms == 0.0


def test_stats_count_types_and_list_recent_failures_newest_first(clock: _Clock) -> None:
    monitor = HealthMonitor(HealthThresholds(recent_failures_limit=2), clock=clock)
    monitor.record(_metric(clock, op=OperationType.SAVE, duration_ms=10.0))
    monitor.record(_metric(clock, op=OperationType.FETCH, success=False, duration_ms=30.0))
    monitor.record(_metric(clock, op=OperationType.FETCH, success=False, duration_ms=20.0))
    monitor.record(_metric(clock, op=OperationType.DELETE, success=False, duration_ms=40.0))

    stats = monitor.performance_stats()

    assert stats.total_operations == 4
    assert stats.success_rate == 0.25
    assert stats.average_duration_ms == 25.0
    assert stats.operations_by_type == {"delete": 1, "fetch": 2, "save": 1}
    assert [item.operation_type for item in stats.recent_failures] == [
        OperationType.DELETE,
        OperationType.FETCH,
    ]
    assert [item.duration_ms for item in stats.recent_failures] == [40.0, 20.0]


def test_window_evicts_by_capacity_and_retention(clock: _Clock) -> None:
    monitor = HealthMonitor(HealthThresholds(window_size=3, retention_hours=1.0), clock=clock)
    for _ in range(5):
        monitor.record(_metric(clock))
    assert monitor.performance_stats().total_operations == 3

    clock.advance(hours=2)
    monitor.record(_metric(clock))

    assert monitor.performance_stats().total_operations == 1


def test_status_derivation(clock: _Clock) -> None:
    monitor = HealthMonitor(clock=clock)
    for _ in range(20):
        monitor.record(_metric(clock))
    assert monitor.current_status() is HealthStatus.HEALTHY

    monitor.record(_metric(clock, success=False))
    monitor.record(_metric(clock, success=False))
    assert monitor.current_status() is HealthStatus.WARNING

    monitor.record(_metric(clock, success=False))
    assert monitor.current_status() is HealthStatus.CRITICAL

    monitor.reset()
    monitor.record(_metric(clock, duration_ms=6000.0))
    assert monitor.current_status() is HealthStatus.WARNING


def test_low_success_rate_alone_is_critical(clock: _Clock) -> None:
    monitor = HealthMonitor(clock=clock)
    for index in range(10):
        monitor.record(_metric(clock, success=index % 3 == 0))

    assert monitor.current_status() is HealthStatus.CRITICAL


def test_alerts_are_logged_for_streaks_slow_calls_and_low_success(clock: _Clock) -> None:
    sink, logger = _capturing_logger()
    monitor = HealthMonitor(clock=clock, logger=logger)

    monitor.record(_metric(clock, duration_ms=16000.0))
    for _ in range(3):
        monitor.record(_metric(clock, success=False))
    assert _alerts(sink) == ["critical_slow_operation", "consecutive_failures"]

    for _ in range(6):
        monitor.record(_metric(clock))
    assert "low_success_rate" in _alerts(sink)


def test_low_success_alert_waits_for_ten_samples(clock: _Clock) -> None:
    sink, logger = _capturing_logger()
    monitor = HealthMonitor(
        HealthThresholds(consecutive_failures_threshold=50), clock=clock, logger=logger
    )

    for _ in range(9):
        monitor.record(_metric(clock, success=False))

    assert _alerts(sink) == []


def test_recent_performance_only_covers_the_last_hour(clock: _Clock) -> None:
    monitor = HealthMonitor(clock=clock)
    monitor.record(_metric(clock, duration_ms=100.0))
    clock.advance(hours=2)
    monitor.record(_metric(clock, duration_ms=10.0))

    recent = monitor.recent_performance()

    assert recent == {
        "average_response_time_ms": 10.0,
        "success_rate": 1.0,
        "recent_operations": 1,
    }


def test_reset_clears_window_and_last_check(store: RecordStore, clock: _Clock) -> None:
    monitor = HealthMonitor(clock=clock)
    monitor.record(_metric(clock))
    monitor.perform_health_check(store)

    monitor.reset()

    assert monitor.performance_stats().total_operations == 0
    assert monitor.current_status() is None
    assert monitor.last_health_check is None


def test_health_check_on_a_fresh_store_is_healthy(store: RecordStore, clock: _Clock) -> None:
    monitor = HealthMonitor(clock=clock)

    status = monitor.perform_health_check(store)

    assert status.overall is HealthStatus.HEALTHY
    assert status.database.status is HealthStatus.HEALTHY
    assert status.recommendations.details["total_recommendations"] == 0
    assert status.timestamp == clock()
    assert monitor.last_health_check is status
    assert status.to_dict()["timestamp"] == "2026-05-04T09:00:00.000Z"


def test_health_check_failure_marks_every_check_critical(
    store: RecordStore, clock: _Clock, monkeypatch: pytest.MonkeyPatch
) -> None:
    def explode(*args: object, **kwargs: object) -> None:
        raise RuntimeError("check crashed")

    monkeypatch.setattr(health_module, "check_database", explode)
    monitor = HealthMonitor(clock=clock)

    status = monitor.perform_health_check(store)

    assert status.overall is HealthStatus.CRITICAL
    assert status.database.status is HealthStatus.CRITICAL
    assert status.recommendations.status is HealthStatus.CRITICAL
    assert status.database.error == "check crashed"
    assert status.performance["recent_operations"] == 0
