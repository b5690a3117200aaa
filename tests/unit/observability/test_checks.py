"""Live store checks: healthy store, missing tables, orphans and store failures."""

from __future__ import annotations

from typing import TYPE_CHECKING

from recommendation_ledger.domain.models import HealthStatus, RecommendationInput
from recommendation_ledger.observability.checks import check_database, check_recommendations
from recommendation_ledger.persistence.repositories import RecommendationRepo

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    import pytest

    from recommendation_ledger.persistence.store import RecordStore


def _seed(store: RecordStore, analysis_id: int, raw: list[dict[str, Any]]) -> None:
    inputs = [RecommendationInput.from_mapping(i, item) for i, item in enumerate(raw)]
    with store.transaction() as tx:
        RecommendationRepo(store).insert_batch(analysis_id, inputs, conn=tx)


def test_check_database_reports_tables_integrity_and_version(store: RecordStore) -> None:
    result = check_database(store, slow_operation_ms=5000.0)

    assert result.status is HealthStatus.HEALTHY
    assert result.message == "Database connection healthy"
    assert result.details == {"tables_found": 3, "integrity_check": "ok", "schema_version": 1}
    assert result.response_time_ms >= 0.0


def test_check_database_is_critical_when_a_table_is_missing(store: RecordStore) -> None:
    store.execute("DROP TABLE recommendation_status_history")

    result = check_database(store, slow_operation_ms=5000.0)

    assert result.status is HealthStatus.CRITICAL
    assert result.message == "Missing required tables: recommendation_status_history"
    assert result.details["missing_tables"] == ["recommendation_status_history"]


def test_check_database_warns_when_integrity_check_fails(
    store: RecordStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        store, "integrity_check", lambda **kwargs: ("row 3 missing from index",)
    )

    result = check_database(store, slow_operation_ms=5000.0)

    assert result.status is HealthStatus.WARNING
    assert result.details == {"integrity_check": "row 3 missing from index"}


def test_checks_are_critical_on_a_closed_store(store: RecordStore) -> None:
    store.close()

    database = check_database(store, slow_operation_ms=5000.0)
    recommendations = check_recommendations(store, slow_operation_ms=5000.0)

    assert database.status is HealthStatus.CRITICAL
    assert database.error is not None
    assert recommendations.status is HealthStatus.CRITICAL
    assert recommendations.message.startswith("Recommendations health check failed")


def test_check_recommendations_counts_rows_and_recent_activity(
    store: RecordStore, analysis_id: int, record_factory: Callable[..., list[dict[str, Any]]]
) -> None:
    _seed(store, analysis_id, record_factory(4))

    result = check_recommendations(store, slow_operation_ms=5000.0)

    assert result.status is HealthStatus.HEALTHY
    assert result.details["total_recommendations"] == 4
    assert result.details["orphaned_recommendations"] == 0
    assert result.details["recent_activity"] == 4
    assert result.details["column_count"] == 10


def test_check_recommendations_warns_about_orphans(
    store: RecordStore, analysis_id: int, record_factory: Callable[..., list[dict[str, Any]]]
) -> None:
    _seed(store, analysis_id, record_factory(2))
    with store.connection() as conn:
        conn.execute("PRAGMA foreign_keys=OFF")
        conn.execute("DELETE FROM analyses WHERE id = ?", (analysis_id,))

    result = check_recommendations(store, slow_operation_ms=5000.0)

    assert result.status is HealthStatus.WARNING
    assert result.message == "Found 2 orphaned recommendations"
