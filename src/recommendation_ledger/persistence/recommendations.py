"""
recommendation-ledger — persistence layer

File: src/recommendation_ledger/persistence/recommendations.py

Purpose
- Async facade for saving, fetching and maintaining an analysis's recommendation rows.

Save contract
- Input checks run in a fixed order and raise before any write: analysis id, payload shape,
  batch cap, per-record validation. An empty batch returns ``nothing_to_save`` without
  touching the store.
- The analysis existence check, optional delete of prior rows and all inserts share one
  ``BEGIN IMMEDIATE`` transaction.
- Store failures become ``SaveOutcome(success=False)``; a failed post-write count sets
  ``verification.verified=False`` and is logged as a warning, nothing more.

Fetch contract
- Runs on a worker thread under ``asyncio.wait_for``. Timed-out reads are abandoned, never
  retried. ``StoreUnavailable`` is retried with exponential backoff.

Every public operation records exactly one ``HealthMetric`` (quick-win reads record none).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import Any, Final

import structlog

from recommendation_ledger.constants import MAX_BATCH_SIZE, MAX_ROW_ID
from recommendation_ledger.domain.models import (
    FetchOutcome,
    HealthMetric,
    OperationType,
    RecommendationInput,
    RecommendationRecord,
    RecommendationStatus,
    SaveOutcome,
    VerificationResult,
)
from recommendation_ledger.errors import (
    FetchTimeout,
    InvalidPayload,
    InvalidReference,
    StoreError,
    StoreUnavailable,
    ValidationError,
)
from recommendation_ledger.observability.health import HealthMonitor
from recommendation_ledger.observability.logging import correlation_scope
from recommendation_ledger.persistence.repositories import AnalysisRepo, RecommendationRepo
from recommendation_ledger.persistence.store import RecordStore, utc_now
from recommendation_ledger.verification.post_write import PostWriteVerifier

DEFAULT_FETCH_TIMEOUT_MS: Final[int] = 10_000
DEFAULT_FETCH_RETRY_LIMIT: Final[int] = 2
DEFAULT_FETCH_RETRY_BACKOFF_MS: Final[int] = 100

NOTHING_TO_SAVE_MESSAGE: Final[str] = "No recommendations to save"


def coerce_positive_id(value: object, *, label: str = "analysis") -> int:
    """Accept ints in ``1..MAX_ROW_ID`` and digit-only strings; reject everything else."""

    if isinstance(value, bool):
        raise InvalidReference(f"Invalid {label} ID: {value}. Must be a positive integer.")
    if isinstance(value, int):
        candidate: int | None = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        candidate = int(value.strip())
    else:
        candidate = None
    if candidate is None or not 0 < candidate <= MAX_ROW_ID:
        raise InvalidReference(f"Invalid {label} ID: {value}. Must be a positive integer.")
    return candidate


class RecommendationPersistence:
    """Save/fetch/update/delete for recommendation rows with verification and metrics."""

    def __init__(
        self,
        store: RecordStore,
        *,
        monitor: HealthMonitor | None = None,
        verifier: PostWriteVerifier | None = None,
        max_batch_size: int = MAX_BATCH_SIZE,
        fetch_timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS,
        fetch_retry_limit: int = DEFAULT_FETCH_RETRY_LIMIT,
        fetch_retry_backoff_ms: int = DEFAULT_FETCH_RETRY_BACKOFF_MS,
        logger: Any | None = None,
    ) -> None:
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be > 0")
        if fetch_timeout_ms <= 0:
            raise ValueError("fetch_timeout_ms must be > 0")
        if fetch_retry_limit < 0:
            raise ValueError("fetch_retry_limit must be >= 0")
        if fetch_retry_backoff_ms < 0:
            raise ValueError("fetch_retry_backoff_ms must be >= 0")

        self._store = store
        self._analyses = AnalysisRepo(store)
        self._recommendations = RecommendationRepo(store)
        self._monitor = monitor if monitor is not None else HealthMonitor()
        self._verifier = verifier if verifier is not None else PostWriteVerifier(store)
        self._max_batch_size = max_batch_size
        self._fetch_timeout_ms = fetch_timeout_ms
        self._fetch_retry_limit = fetch_retry_limit
        self._fetch_retry_backoff_ms = fetch_retry_backoff_ms
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    async def create_analysis(
        self, title: str, *, content: str = "", language: str = "en"
    ) -> int:
        analysis_id = await asyncio.to_thread(
            self._analyses.create, title, content=content, language=language
        )
        self._logger.info("analysis_created", analysis_id=analysis_id)
        return analysis_id

    async def delete_analysis(self, analysis_id: object) -> bool:
        normalized = coerce_positive_id(analysis_id)
        deleted = await asyncio.to_thread(self._analyses.delete, normalized)
        self._logger.info("analysis_deleted", analysis_id=normalized, deleted=deleted)
        return deleted

    async def save(
        self,
        analysis_id: object,
        records: object,
        *,
        replace: bool = True,
    ) -> SaveOutcome:
        started = time.perf_counter()
        metric_analysis_id = analysis_id if _is_plain_int(analysis_id) else None
        try:
            normalized_id = coerce_positive_id(analysis_id)
            metric_analysis_id = normalized_id
            inputs = self._validate_batch(records)
        except (InvalidReference, ValidationError) as exc:
            self._logger.warning("recommendations_save_rejected", error=str(exc))
            self._record(OperationType.SAVE, started, analysis_id=metric_analysis_id, error=exc)
            raise

        with correlation_scope(analysis_id=normalized_id):
            if not inputs:
                self._logger.info("recommendations_save_empty", analysis_id=normalized_id)
                duration_ms = self._record(
                    OperationType.SAVE, started, analysis_id=normalized_id, record_count=0
                )
                return SaveOutcome(
                    success=True,
                    analysis_id=normalized_id,
                    saved_count=0,
                    message=NOTHING_TO_SAVE_MESSAGE,
                    duration_ms=duration_ms,
                    nothing_to_save=True,
                )

            try:
                prior_count, row_ids = await asyncio.to_thread(
                    self._write_batch, normalized_id, inputs, replace
                )
            except InvalidReference as exc:
                self._logger.warning(
                    "recommendations_save_rejected", analysis_id=normalized_id, error=str(exc)
                )
                self._record(OperationType.SAVE, started, analysis_id=normalized_id, error=exc)
                raise
            except StoreError as exc:
                self._logger.error(
                    "recommendations_save_failed",
                    analysis_id=normalized_id,
                    record_count=len(inputs),
                    error=str(exc),
                )
                duration_ms = self._record(
                    OperationType.SAVE,
                    started,
                    analysis_id=normalized_id,
                    record_count=len(inputs),
                    error=exc,
                )
                return SaveOutcome(
                    success=False,
                    analysis_id=normalized_id,
                    saved_count=0,
                    message=f"Failed to save recommendations: {exc}",
                    duration_ms=duration_ms,
                    error_type="unavailable" if isinstance(exc, StoreUnavailable) else "store",
                    errors=(str(exc),),
                )

            expected = len(row_ids) if replace else prior_count + len(row_ids)
            verification = await asyncio.to_thread(self._verifier.verify, normalized_id, expected)
            if not verification.verified:
                self._logger.warning(
                    "post_write_verification_failed",
                    analysis_id=normalized_id,
                    expected_count=verification.expected_count,
                    actual_count=verification.actual_count,
                    details=verification.details,
                )

            duration_ms = self._record(
                OperationType.SAVE, started, analysis_id=normalized_id, record_count=len(row_ids)
            )
            self._logger.info(
                "recommendations_saved",
                analysis_id=normalized_id,
                saved_count=len(row_ids),
                replace=replace,
                verified=verification.verified,
                duration_ms=round(duration_ms, 3),
            )
            return SaveOutcome(
                success=True,
                analysis_id=normalized_id,
                saved_count=len(row_ids),
                message=_saved_message(len(row_ids), verification),
                duration_ms=duration_ms,
                verification=verification,
            )

    async def fetch(self, analysis_id: object) -> FetchOutcome:
        started = time.perf_counter()
        try:
            normalized_id = coerce_positive_id(analysis_id)
        except InvalidReference as exc:
            self._record(OperationType.FETCH, started, analysis_id=None, error=exc)
            raise

        with correlation_scope(analysis_id=normalized_id):
            attempt = 0
            while True:
                try:
                    records = await self._fetch_once(normalized_id)
                except FetchTimeout as exc:
                    self._logger.error(
                        "recommendations_fetch_timeout",
                        analysis_id=normalized_id,
                        timeout_ms=self._fetch_timeout_ms,
                    )
                    return self._fetch_failure(normalized_id, started, "timeout", exc)
                except StoreUnavailable as exc:
                    if attempt >= self._fetch_retry_limit:
                        self._logger.error(
                            "recommendations_fetch_unavailable",
                            analysis_id=normalized_id,
                            attempts=attempt + 1,
                            error=str(exc),
                        )
                        return self._fetch_failure(normalized_id, started, "unavailable", exc)
                    delay_ms = self._fetch_retry_backoff_ms * (2**attempt)
                    self._logger.warning(
                        "recommendations_fetch_retry",
                        analysis_id=normalized_id,
                        attempt=attempt + 1,
                        delay_ms=delay_ms,
                        error=str(exc),
                    )
                    await asyncio.sleep(delay_ms / 1000.0)
                    attempt += 1
                    continue
                except StoreError as exc:
                    self._logger.error(
                        "recommendations_fetch_failed", analysis_id=normalized_id, error=str(exc)
                    )
                    return self._fetch_failure(normalized_id, started, "query", exc)
                break

            duration_ms = self._record(
                OperationType.FETCH, started, analysis_id=normalized_id, record_count=len(records)
            )
            self._logger.info(
                "recommendations_fetched",
                analysis_id=normalized_id,
                total_count=len(records),
                duration_ms=round(duration_ms, 3),
            )
            return FetchOutcome(
                success=True,
                analysis_id=normalized_id,
                records=tuple(records),
                fetched_at=utc_now(),
                duration_ms=duration_ms,
            )

    async def update_status(
        self,
        recommendation_id: object,
        status: RecommendationStatus | str,
        *,
        notes: str | None = None,
    ) -> bool:
        """Set one row's status and append a history entry; ``False`` on store failure."""

        started = time.perf_counter()
        try:
            normalized_id = coerce_positive_id(recommendation_id, label="recommendation")
            new_status = _coerce_status(status)
            await asyncio.to_thread(
                self._recommendations.set_status, normalized_id, new_status, notes=notes
            )
        except (InvalidReference, ValidationError) as exc:
            self._record(OperationType.UPDATE, started, analysis_id=None, error=exc)
            raise
        except StoreError as exc:
            self._logger.error(
                "recommendation_status_update_failed",
                recommendation_id=recommendation_id,
                error=str(exc),
            )
            self._record(OperationType.UPDATE, started, analysis_id=None, error=exc)
            return False

        self._record(OperationType.UPDATE, started, analysis_id=None, record_count=1)
        self._logger.info(
            "recommendation_status_updated",
            recommendation_id=normalized_id,
            status=new_status.value,
        )
        return True

    async def delete(self, analysis_id: object) -> int:
        """Delete every row of an analysis and return how many were removed."""

        started = time.perf_counter()
        try:
            normalized_id = coerce_positive_id(analysis_id)
            deleted = await asyncio.to_thread(
                self._recommendations.delete_for_analysis, normalized_id
            )
        except (InvalidReference, StoreError) as exc:
            self._record(
                OperationType.DELETE,
                started,
                analysis_id=analysis_id if _is_plain_int(analysis_id) else None,
                error=exc,
            )
            raise

        self._record(OperationType.DELETE, started, analysis_id=normalized_id, record_count=deleted)
        self._logger.info("recommendations_deleted", analysis_id=normalized_id, deleted=deleted)
        return deleted

    async def quick_wins(
        self, analysis_id: object, *, limit: int = 5
    ) -> tuple[RecommendationRecord, ...]:
        normalized_id = coerce_positive_id(analysis_id)
        records = await asyncio.to_thread(
            self._recommendations.quick_wins, normalized_id, limit=limit
        )
        return tuple(records)

    async def status_history(self, recommendation_id: object) -> list[dict[str, object]]:
        normalized_id = coerce_positive_id(recommendation_id, label="recommendation")
        rows = await asyncio.to_thread(self._recommendations.status_history, normalized_id)
        return [dict(row) for row in rows]

    def _validate_batch(self, records: object) -> tuple[RecommendationInput, ...]:
        if isinstance(records, (str, bytes, bytearray, Mapping)) or not isinstance(
            records, Sequence
        ):
            raise InvalidPayload(
                "Invalid payload format: expected a list of recommendation objects, "
                f"got {type(records).__name__}"
            )
        for index, item in enumerate(records):
            if not isinstance(item, Mapping):
                raise InvalidPayload(
                    f"Invalid payload format: recommendation {index} is "
                    f"{type(item).__name__}, expected an object",
                    record_index=index,
                )
        if len(records) > self._max_batch_size:
            raise ValidationError(
                f"Too many recommendations: {len(records)} exceeds the limit of "
                f"{self._max_batch_size}"
            )
        return tuple(
            RecommendationInput.from_mapping(index, item) for index, item in enumerate(records)
        )

    def _write_batch(
        self,
        analysis_id: int,
        inputs: Sequence[RecommendationInput],
        replace: bool,
    ) -> tuple[int, tuple[int, ...]]:
        with self._store.transaction(immediate=True) as conn:
            if not self._analyses.exists(analysis_id, conn=conn):
                raise InvalidReference(f"Analysis ID {analysis_id} does not exist")
            prior_count = self._recommendations.count_for_analysis(analysis_id, conn=conn)
            if replace and prior_count:
                self._recommendations.delete_for_analysis(analysis_id, conn=conn)
                self._logger.info(
                    "recommendations_replaced", analysis_id=analysis_id, removed=prior_count
                )
            row_ids = self._recommendations.insert_batch(analysis_id, inputs, conn=conn)
        return prior_count, row_ids

    async def _fetch_once(self, analysis_id: int) -> list[RecommendationRecord]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._recommendations.list_for_analysis, analysis_id),
                timeout=self._fetch_timeout_ms / 1000.0,
            )
        except TimeoutError as exc:
            raise FetchTimeout(
                f"Fetch for analysis {analysis_id} timed out after {self._fetch_timeout_ms} ms"
            ) from exc

    def _fetch_failure(
        self,
        analysis_id: int,
        started: float,
        error_type: str,
        exc: Exception,
    ) -> FetchOutcome:
        duration_ms = self._record(OperationType.FETCH, started, analysis_id=analysis_id, error=exc)
        return FetchOutcome(
            success=False,
            analysis_id=analysis_id,
            records=(),
            fetched_at=utc_now(),
            duration_ms=duration_ms,
            error_type=error_type,
            errors=(str(exc),),
        )

    def _record(
        self,
        operation_type: OperationType,
        started: float,
        *,
        analysis_id: object,
        record_count: int | None = None,
        error: Exception | None = None,
    ) -> float:
        duration_ms = (time.perf_counter() - started) * 1000.0
        self._monitor.record(
            HealthMetric(
                operation_type=operation_type,
                duration_ms=duration_ms,
                success=error is None,
                timestamp=utc_now(),
                analysis_id=analysis_id if _is_plain_int(analysis_id) else None,
                record_count=record_count,
                error_message=None if error is None else (str(error) or type(error).__name__),
            )
        )
        return duration_ms


def _saved_message(count: int, verification: VerificationResult) -> str:
    if verification.verified:
        return f"Successfully saved {count} recommendations"
    return (
        f"Saved {count} recommendations but verification found "
        f"{verification.actual_count} of {verification.expected_count}"
    )


def _coerce_status(value: RecommendationStatus | str) -> RecommendationStatus:
    if isinstance(value, RecommendationStatus):
        return value
    if isinstance(value, str):
        try:
            return RecommendationStatus(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(item.value for item in RecommendationStatus)
    raise ValidationError(f"Invalid status {value!r}; expected one of: {allowed}", field="status")


def _is_plain_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


__all__ = [
    "DEFAULT_FETCH_RETRY_BACKOFF_MS",
    "DEFAULT_FETCH_RETRY_LIMIT",
    "DEFAULT_FETCH_TIMEOUT_MS",
    "NOTHING_TO_SAVE_MESSAGE",
    "RecommendationPersistence",
    "coerce_positive_id",
]
