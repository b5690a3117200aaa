"""Post-write count verification for a single analysis."""

from __future__ import annotations

from typing import Any

import structlog

from recommendation_ledger.domain.models import VerificationResult
from recommendation_ledger.errors import StoreError
from recommendation_ledger.persistence.repositories import RecommendationRepo
from recommendation_ledger.persistence.store import RecordStore


class PostWriteVerifier:
    """Re-count an analysis's rows on a fresh connection and compare to what was requested."""

    def __init__(self, store: RecordStore, *, logger: Any | None = None) -> None:
        self._store = store
        self._repo = RecommendationRepo(store)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def verify(self, analysis_id: int, expected_count: int) -> VerificationResult:
        """Never raises; a store failure becomes ``verified=False`` with details."""

        try:
            actual = self._repo.count_for_analysis(analysis_id)
        except StoreError as exc:
            self._logger.error(
                "post_write_verification_error",
                analysis_id=analysis_id,
                expected_count=expected_count,
                error=str(exc),
            )
            return VerificationResult(
                analysis_id=analysis_id,
                expected_count=expected_count,
                actual_count=0,
                verified=False,
                details=f"verification query failed: {exc}",
            )

        verified = actual == expected_count
        details = None if verified else f"expected {expected_count} record(s), found {actual}"
        self._logger.debug(
            "post_write_verification",
            analysis_id=analysis_id,
            expected_count=expected_count,
            actual_count=actual,
            verified=verified,
        )
        return VerificationResult(
            analysis_id=analysis_id,
            expected_count=expected_count,
            actual_count=actual,
            verified=verified,
            details=details,
        )


__all__ = ["PostWriteVerifier"]
