"""
recommendation-ledger — live store checks

File: src/recommendation_ledger/observability/checks.py

Purpose
- Point-in-time checks against the record store, independent of metric history.

What is included in this file
- ``check_database``: connectivity, required tables, ``PRAGMA integrity_check(1)`` and latency.
- ``check_recommendations``: required columns, orphaned rows and activity in the last 24 hours.

Functional requirements
- A store failure inside a check yields a critical ``CheckResult``; it is not raised.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Final

from recommendation_ledger.domain.models import HealthStatus, JSONValue, CheckResult
from recommendation_ledger.errors import StoreError
from recommendation_ledger.persistence.repositories import RecommendationRepo
from recommendation_ledger.persistence.store import REQUIRED_TABLES, RecordStore, utc_now

REQUIRED_RECOMMENDATION_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "analysis_id",
    "external_id",
    "title",
    "priority",
    "category",
    "effort",
    "status",
    "created_at",
)

_ACTIVITY_WINDOW: Final[timedelta] = timedelta(hours=24)


def check_database(store: RecordStore, *, slow_operation_ms: float) -> CheckResult:
    started = time.perf_counter()
    try:
        ping_row = store.query_one("SELECT 1 AS ping")
        if ping_row is None or ping_row.get("ping") != 1:
            return _result(
                "database",
                HealthStatus.CRITICAL,
                started,
                message="Database connectivity test failed",
            )

        existing = store.table_names()
        missing = [table for table in REQUIRED_TABLES if table not in existing]
        if missing:
            return _result(
                "database",
                HealthStatus.CRITICAL,
                started,
                message=f"Missing required tables: {', '.join(missing)}",
                details={"missing_tables": list(missing), "existing_tables": sorted(existing)},
            )

        integrity = store.integrity_check(max_errors=1)
    except StoreError as exc:
        return _result(
            "database",
            HealthStatus.CRITICAL,
            started,
            message=f"Database health check failed: {exc}",
            error=str(exc),
        )

    integrity_text = "ok" if not integrity else integrity[0]
    if integrity:
        return _result(
            "database",
            HealthStatus.WARNING,
            started,
            message=f"Database integrity check failed: {integrity_text}",
            details={"integrity_check": integrity_text},
        )

    elapsed_ms = _elapsed_ms(started)
    status = HealthStatus.WARNING if elapsed_ms > slow_operation_ms else HealthStatus.HEALTHY
    return CheckResult(
        name="database",
        status=status,
        response_time_ms=elapsed_ms,
        message="Database connection healthy",
        details={
            "tables_found": len(REQUIRED_TABLES),
            "integrity_check": integrity_text,
            "schema_version": store.schema_version(),
        },
    )


def check_recommendations(
    store: RecordStore,
    *,
    slow_operation_ms: float,
    now: datetime | None = None,
) -> CheckResult:
    started = time.perf_counter()
    reference = now if now is not None else utc_now()
    try:
        columns = store.table_columns("recommendations")
        if not columns:
            return _result(
                "recommendations",
                HealthStatus.CRITICAL,
                started,
                message="Recommendations table not found or inaccessible",
            )
        missing = [column for column in REQUIRED_RECOMMENDATION_COLUMNS if column not in columns]
        if missing:
            return _result(
                "recommendations",
                HealthStatus.CRITICAL,
                started,
                message=f"Missing required columns: {', '.join(missing)}",
                details={"missing_columns": list(missing), "available_columns": list(columns)},
            )

        repo = RecommendationRepo(store)
        total = repo.total_count()
        orphaned = repo.orphan_count()
        since = reference - _ACTIVITY_WINDOW
        recent = repo.created_since(
            since.isoformat(timespec="microseconds").replace("+00:00", "Z")
        )
    except StoreError as exc:
        return _result(
            "recommendations",
            HealthStatus.CRITICAL,
            started,
            message=f"Recommendations health check failed: {exc}",
            error=str(exc),
        )

    elapsed_ms = _elapsed_ms(started)
    status = HealthStatus.HEALTHY
    message = "Recommendations system healthy"
    if orphaned > 0:
        status = HealthStatus.WARNING
        message = f"Found {orphaned} orphaned recommendations"
    if elapsed_ms > slow_operation_ms:
        status = HealthStatus.WARNING
        message += f" (slow response: {elapsed_ms:.0f}ms)"

    return CheckResult(
        name="recommendations",
        status=status,
        response_time_ms=elapsed_ms,
        message=message,
        details={
            "total_recommendations": total,
            "orphaned_recommendations": orphaned,
            "recent_activity": recent,
            "column_count": len(columns),
        },
    )


def _result(
    name: str,
    status: HealthStatus,
    started: float,
    *,
    message: str,
    details: dict[str, JSONValue] | None = None,
    error: str | None = None,
) -> CheckResult:
    return CheckResult(
        name=name,
        status=status,
        response_time_ms=_elapsed_ms(started),
        message=message,
        details={} if details is None else details,
        error=error,
    )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


__all__ = ["REQUIRED_RECOMMENDATION_COLUMNS", "check_database", "check_recommendations"]
