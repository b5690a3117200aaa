"""
recommendation-ledger — consistency auditor

File: src/recommendation_ledger/verification/auditor.py

Purpose
- Read back an analysis's rows, flag field-level corruption and score overall integrity.

Scoring
- ``score = max(0, 100 - 10 * |actual - expected| - 15 * corrupted)``.
- ``is_consistent`` holds iff the counts match and no row is corrupted.
- Missing and unexpected external ids are reported when the caller supplies the expected set;
  they are informational and do not affect the score.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from recommendation_ledger.constants import (
    EFFORTS,
    INTEGRITY_CORRUPTION_PENALTY,
    INTEGRITY_COUNT_PENALTY,
    PRIORITIES,
)
from recommendation_ledger.domain.models import (
    ConsistencyResult,
    CorruptedRecord,
    RecommendationRecord,
)
from recommendation_ledger.errors import StoreError
from recommendation_ledger.persistence.repositories import RecommendationRepo
from recommendation_ledger.persistence.store import RecordStore, utc_now


def integrity_score(expected_count: int, actual_count: int, corrupted_count: int) -> int:
    penalty = (
        INTEGRITY_COUNT_PENALTY * abs(actual_count - expected_count)
        + INTEGRITY_CORRUPTION_PENALTY * corrupted_count
    )
    return max(0, 100 - penalty)


def inspect_record(record: RecommendationRecord) -> tuple[str, ...]:
    """Return the field issues found on one stored row; empty means clean."""

    issues: list[str] = []
    if not record.title.strip():
        issues.append("Missing or empty title")
    if record.priority not in PRIORITIES:
        issues.append("Invalid priority")
    if not record.category.strip():
        issues.append("Missing or empty category")
    if record.effort not in EFFORTS:
        issues.append("Invalid effort")
    if not record.payload_decoded:
        issues.append("Undecodable payload")
    return tuple(issues)


class ConsistencyAuditor:
    """Pure-read audit of one analysis against an expected count and id set."""

    def __init__(self, store: RecordStore, *, logger: Any | None = None) -> None:
        self._repo = RecommendationRepo(store)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def audit(
        self,
        analysis_id: int,
        expected_count: int,
        *,
        expected_ids: Iterable[str] | None = None,
    ) -> ConsistencyResult:
        checked_at = utc_now()
        try:
            records = self._repo.list_for_analysis(analysis_id)
        except StoreError as exc:
            self._logger.error(
                "consistency_audit_failed",
                analysis_id=analysis_id,
                expected_count=expected_count,
                error=str(exc),
            )
            return ConsistencyResult(
                analysis_id=analysis_id,
                expected_count=expected_count,
                actual_count=0,
                missing_ids=(),
                unexpected_ids=(),
                corrupted=(),
                integrity_score=0,
                is_consistent=False,
                checked_at=checked_at,
                error=str(exc),
            )

        corrupted: list[CorruptedRecord] = []
        for record in records:
            issues = inspect_record(record)
            if issues:
                corrupted.append(
                    CorruptedRecord(
                        record_id=record.id,
                        external_id=record.external_id,
                        issues=issues,
                    )
                )

        missing_ids: tuple[str, ...] = ()
        unexpected_ids: tuple[str, ...] = ()
        if expected_ids is not None:
            wanted = list(dict.fromkeys(expected_ids))
            present = [record.external_id for record in records]
            present_set = set(present)
            wanted_set = set(wanted)
            missing_ids = tuple(item for item in wanted if item not in present_set)
            unexpected_ids = tuple(
                dict.fromkeys(item for item in present if item not in wanted_set)
            )

        actual_count = len(records)
        score = integrity_score(expected_count, actual_count, len(corrupted))
        consistent = actual_count == expected_count and not corrupted

        log = self._logger.info if consistent else self._logger.warning
        log(
            "consistency_audit",
            analysis_id=analysis_id,
            expected_count=expected_count,
            actual_count=actual_count,
            corrupted_count=len(corrupted),
            integrity_score=score,
            is_consistent=consistent,
        )
        return ConsistencyResult(
            analysis_id=analysis_id,
            expected_count=expected_count,
            actual_count=actual_count,
            missing_ids=missing_ids,
            unexpected_ids=unexpected_ids,
            corrupted=tuple(corrupted),
            integrity_score=score,
            is_consistent=consistent,
            checked_at=checked_at,
        )


__all__ = ["ConsistencyAuditor", "inspect_record", "integrity_score"]
