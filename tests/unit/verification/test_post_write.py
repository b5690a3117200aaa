"""Post-write count verification never raises and reports mismatches as details."""

from __future__ import annotations

from typing import TYPE_CHECKING

from recommendation_ledger.domain.models import RecommendationInput
from recommendation_ledger.persistence.repositories import RecommendationRepo
from recommendation_ledger.verification.post_write import PostWriteVerifier

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from recommendation_ledger.persistence.store import RecordStore


def _seed(store: RecordStore, analysis_id: int, raw: list[dict[str, Any]]) -> None:
    repo = RecommendationRepo(store)
    inputs = [RecommendationInput.from_mapping(i, item) for i, item in enumerate(raw)]
    with store.transaction() as tx:
        repo.insert_batch(analysis_id, inputs, conn=tx)


def test_verify_passes_when_counts_match(
    store: RecordStore, analysis_id: int, record_factory: Callable[..., list[dict[str, Any]]]
) -> None:
    _seed(store, analysis_id, record_factory(3))

    result = PostWriteVerifier(store).verify(analysis_id, 3)

    assert result.verified
    assert result.details is None
    assert result.to_dict() == {"expected_count": 3, "actual_count": 3, "verified": True}


def test_verify_reports_mismatch_without_raising(
    store: RecordStore, analysis_id: int, record_factory: Callable[..., list[dict[str, Any]]]
) -> None:
    _seed(store, analysis_id, record_factory(2))

    result = PostWriteVerifier(store).verify(analysis_id, 5)

    assert not result.verified
    assert result.actual_count == 2
    assert result.details == "expected 5 record(s), found 2"
    assert result.violation is not None


def test_verify_turns_store_failures_into_unverified_results(store: RecordStore) -> None:
    store.close()

    result = PostWriteVerifier(store).verify(1, 2)

    assert not result.verified
    assert result.actual_count == 0
    assert result.details is not None
    assert result.details.startswith("verification query failed")
