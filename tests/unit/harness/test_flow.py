"""
recommendation-ledger — unit tests for flow verification

File: tests/unit/harness/test_flow.py

Purpose
- Validate the five-phase run against a real store: the happy path, skipped phases after a
  failure, cleanup that never flips the verdict and the performance report.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from recommendation_ledger.domain.models import FetchOutcome, PerformanceRating
from recommendation_ledger.errors import StoreError
from recommendation_ledger.harness.correlation import CorrelationTracker
from recommendation_ledger.harness.flow import (
    PHASES,
    FlowVerificationHarness,
    generate_test_records,
)
from recommendation_ledger.persistence.recommendations import RecommendationPersistence
from recommendation_ledger.persistence.store import RecordStore, utc_now
from recommendation_ledger.verification.auditor import ConsistencyAuditor

pytestmark = pytest.mark.unit


@pytest.fixture
def auditor(store: RecordStore) -> ConsistencyAuditor:
    return ConsistencyAuditor(store)


@pytest.fixture
def harness(
    persistence: RecommendationPersistence, auditor: ConsistencyAuditor
) -> FlowVerificationHarness:
    return FlowVerificationHarness(persistence, auditor, tracker=CorrelationTracker())


def _count(store: RecordStore, table: str) -> int:
    row = store.query_one(f"SELECT COUNT(*) AS total FROM {table}")
    assert row is not None
    return int(row["total"])


def test_generate_test_records_cycles_every_enumeration() -> None:
    records = generate_test_records(5)

    assert [item["external_id"] for item in records] == [f"test-rec-{i}" for i in range(1, 6)]
    assert [item["priority"] for item in records[:4]] == ["critical", "high", "medium", "low"]
    assert {item["effort"] for item in records} == {"quick", "easy", "medium", "hard", "complex"}
    assert records[0]["actions"] == [
        {"step": 1, "action": "First action for recommendation 1"},
        {"step": 2, "action": "Second action for recommendation 1"},
    ]
    with pytest.raises(ValueError, match="count"):
        generate_test_records(0)


@pytest.mark.asyncio
async def test_happy_path_passes_every_phase_and_cleans_up(
    harness: FlowVerificationHarness, store: RecordStore
) -> None:
    result = await harness.run(10)

    assert result.success
    assert tuple(item.name for item in result.phases) == PHASES
    assert all(item.success for item in result.phases)
    assert result.metrics["integrity_score"] == 100
    assert result.metrics["record_count"] == 10
    assert "within_time_budget" not in result.metrics
    assert result.phase("cleanup").details == {"deleted_records": 10}
    assert result.summary == "PASS: 5/5 phases passed"
    assert result.test_id.startswith("flow-test-")
    assert _count(store, "recommendations") == 0
    assert _count(store, "analyses") == 0

    assert result.analysis_id is not None
    trail = harness.tracker.get(result.analysis_id)
    assert trail is not None
    assert [item.operation for item in trail.operations] == list(PHASES)
    assert trail.data_consistency


@pytest.mark.asyncio
async def test_setup_failure_skips_everything_including_cleanup(
    harness: FlowVerificationHarness, store: RecordStore
) -> None:
    store.close()

    result = await harness.run(3)

    assert not result.success
    assert result.analysis_id is None
    assert not result.phase("setup").success
    for name in ("save", "fetch", "validate"):
        phase = result.phase(name)
        assert phase.skipped
        assert phase.errors == ("skipped after setup failure",)
    assert result.phase("cleanup").skipped
    assert result.phase("cleanup").success
    assert len(result.errors) == 1
    assert result.errors[0].startswith("setup: ")


@pytest.mark.asyncio
async def test_fetch_mismatch_fails_and_cleanup_still_runs(
    harness: FlowVerificationHarness,
    persistence: RecommendationPersistence,
    store: RecordStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def empty_fetch(analysis_id: object) -> FetchOutcome:
        return FetchOutcome(
            success=True,
            analysis_id=int(str(analysis_id)),
            records=(),
            fetched_at=utc_now(),
            duration_ms=0.0,
        )

    monkeypatch.setattr(persistence, "fetch", empty_fetch)

    result = await harness.run(4)

    assert not result.success
    assert result.phase("save").success
    assert result.phase("fetch").errors == ("fetched 0 of 4 records",)
    assert result.phase("validate").skipped
    assert result.phase("cleanup").success
    assert _count(store, "analyses") == 0

    assert result.analysis_id is not None
    trail = harness.tracker.get(result.analysis_id)
    assert trail is not None
    assert not trail.data_consistency
    assert trail.issues == ("fetch failed: fetched 0 of 4 records",)


@pytest.mark.asyncio
async def test_corruption_fails_validation_with_the_score(
    harness: FlowVerificationHarness,
    auditor: ConsistencyAuditor,
    store: RecordStore,
    corrupt: Callable[..., None],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    original_audit = auditor.audit

    def corrupting_audit(analysis_id: int, expected: int, **kwargs: Any) -> Any:
        row = store.query_one(
            "SELECT id FROM recommendations WHERE analysis_id = ? ORDER BY id LIMIT 1",
            (analysis_id,),
        )
        assert row is not None
        corrupt(store, int(row["id"]), priority="urgent")
        return original_audit(analysis_id, expected, **kwargs)

    monkeypatch.setattr(auditor, "audit", corrupting_audit)

    result = await harness.run(5)

    assert not result.success
    validate = result.phase("validate")
    assert not validate.success
    assert validate.details["corrupted_count"] == 1
    assert validate.errors == ("Data consistency validation failed: score 85%",)
    assert result.metrics["integrity_score"] == 85
    assert result.phase("cleanup").success


@pytest.mark.asyncio
async def test_cleanup_failure_is_reported_but_does_not_fail_the_run(
    harness: FlowVerificationHarness,
    persistence: RecommendationPersistence,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def failing_delete(analysis_id: object) -> int:
        raise StoreError("database is locked")

    monkeypatch.setattr(persistence, "delete", failing_delete)

    result = await harness.run(2)

    assert result.success
    assert not result.phase("cleanup").success
    assert result.errors == ("cleanup: database is locked",)
    assert result.summary == "PASS: 4/5 phases passed"


@pytest.mark.asyncio
async def test_time_budget_is_reported_when_configured(
    persistence: RecommendationPersistence, auditor: ConsistencyAuditor
) -> None:
    strict = FlowVerificationHarness(persistence, auditor, max_duration_ms=0.0)
    relaxed = FlowVerificationHarness(persistence, auditor, max_duration_ms=600_000.0)

    strict_result = await strict.run(2)
    relaxed_result = await relaxed.run(2)

    assert strict_result.metrics["within_time_budget"] is False
    assert strict_result.success
    assert relaxed_result.metrics["within_time_budget"] is True


@pytest.mark.asyncio
async def test_report_rates_save_and_fetch(harness: FlowVerificationHarness) -> None:
    report = await harness.report(3)

    assert report.overall_status == "PASS"
    assert report.performance_rating in set(PerformanceRating) - {PerformanceRating.CRITICAL}
    payload = report.to_dict()
    assert payload["flow_test_status"] == "PASS"
    assert set(payload["flow"]["phases"]) == set(PHASES)  # type: ignore[arg-type,index]


@pytest.mark.asyncio
async def test_report_fails_when_save_is_skipped(
    harness: FlowVerificationHarness, store: RecordStore
) -> None:
    store.close()

    report = await harness.report(3)

    assert report.overall_status == "FAIL"
    assert report.save_rating is PerformanceRating.CRITICAL
    assert report.fetch_rating is PerformanceRating.CRITICAL


@pytest.mark.asyncio
async def test_record_count_must_be_positive(harness: FlowVerificationHarness) -> None:
    with pytest.raises(ValueError, match="record_count"):
        await harness.run(0)
