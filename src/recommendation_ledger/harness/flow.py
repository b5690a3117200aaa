"""
recommendation-ledger — end-to-end flow verification

File: src/recommendation_ledger/harness/flow.py

Purpose
- Exercise save, fetch and audit against a disposable analysis and report per-phase results.

Phases
- ``setup``: create the analysis and ``record_count`` synthetic records.
- ``save``: fails unless every record is saved and the post-write count verifies.
- ``fetch``: fails unless exactly ``record_count`` rows come back.
- ``validate``: fails unless the auditor finds the analysis consistent.
- ``cleanup``: runs whenever setup created an analysis; its failure never flips the verdict.

A failed phase skips every later phase except cleanup.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Final

import structlog

from recommendation_ledger.domain.models import (
    FlowVerificationResult,
    JSONValue,
    PerformanceRating,
    PhaseResult,
)
from recommendation_ledger.errors import RecommendationLedgerError
from recommendation_ledger.harness.correlation import CorrelationTracker
from recommendation_ledger.observability.logging import correlation_scope
from recommendation_ledger.observability.performance import rate_duration, worst_rating
from recommendation_ledger.persistence.recommendations import RecommendationPersistence
from recommendation_ledger.persistence.store import utc_now
from recommendation_ledger.verification.auditor import ConsistencyAuditor

PHASES: Final[tuple[str, ...]] = ("setup", "save", "fetch", "validate", "cleanup")
DEFAULT_RECORD_COUNT: Final[int] = 10

_TEST_PRIORITIES: Final[tuple[str, ...]] = ("critical", "high", "medium", "low")
_TEST_EFFORTS: Final[tuple[str, ...]] = ("quick", "easy", "medium", "hard", "complex")
_TEST_CATEGORIES: Final[tuple[str, ...]] = (
    "meta",
    "content",
    "technical",
    "keywords",
    "readability",
)
_TEST_ANALYSIS_TITLE: Final[str] = "Flow Verification Test Analysis"
_TEST_ANALYSIS_CONTENT: Final[str] = (
    "<html><head><title>Test Content</title></head><body><h1>Test</h1></body></html>"
)


def generate_test_records(count: int) -> list[dict[str, object]]:
    """Deterministic synthetic records cycling through every priority, effort and category."""

    if count <= 0:
        raise ValueError("count must be > 0")
    records: list[dict[str, object]] = []
    for index in range(count):
        number = index + 1
        records.append(
            {
                "external_id": f"test-rec-{number}",
                "title": f"Test Recommendation {number}",
                "priority": _TEST_PRIORITIES[index % len(_TEST_PRIORITIES)],
                "category": _TEST_CATEGORIES[index % len(_TEST_CATEGORIES)],
                "effort": _TEST_EFFORTS[index % len(_TEST_EFFORTS)],
                "status": "pending",
                "description": f"This is a test recommendation {number} for flow verification",
                "estimated_time": f"{number * 5} minutes",
                "actions": [
                    {"step": 1, "action": f"First action for recommendation {number}"},
                    {"step": 2, "action": f"Second action for recommendation {number}"},
                ],
                "example": {
                    "before": f"Before example {number}",
                    "after": f"After example {number}",
                },
                "resources": [
                    {
                        "title": f"Resource {number}",
                        "url": f"https://example.com/resource-{number}",
                    }
                ],
            }
        )
    return records


@dataclass(frozen=True, slots=True)
class FlowReport:
    flow: FlowVerificationResult
    save_rating: PerformanceRating
    fetch_rating: PerformanceRating

    @property
    def performance_rating(self) -> PerformanceRating:
        return worst_rating(self.save_rating, self.fetch_rating)

    @property
    def overall_status(self) -> str:
        passed = self.flow.success and self.performance_rating is not PerformanceRating.CRITICAL
        return "PASS" if passed else "FAIL"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "overall_status": self.overall_status,
            "flow_test_status": "PASS" if self.flow.success else "FAIL",
            "performance_rating": self.performance_rating.value,
            "save_rating": self.save_rating.value,
            "fetch_rating": self.fetch_rating.value,
            "flow": self.flow.to_dict(),
        }


@dataclass(slots=True)
class _FlowState:
    record_count: int
    analysis_id: int | None = None
    records: list[dict[str, object]] | None = None
    integrity_score: int = 0


class FlowVerificationHarness:
    """Drive the persistence path end to end against a throwaway analysis."""

    def __init__(
        self,
        persistence: RecommendationPersistence,
        auditor: ConsistencyAuditor,
        *,
        tracker: CorrelationTracker | None = None,
        record_count: int = DEFAULT_RECORD_COUNT,
        max_duration_ms: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if record_count <= 0:
            raise ValueError("record_count must be > 0")
        self._persistence = persistence
        self._auditor = auditor
        self._tracker = tracker if tracker is not None else CorrelationTracker()
        self._record_count = record_count
        self._max_duration_ms = max_duration_ms
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def tracker(self) -> CorrelationTracker:
        return self._tracker

    async def run(self, record_count: int | None = None) -> FlowVerificationResult:
        count = self._record_count if record_count is None else record_count
        if count <= 0:
            raise ValueError("record_count must be > 0")

        test_id = f"flow-test-{uuid.uuid4().hex[:12]}"
        started_at = utc_now()
        started = time.perf_counter()
        state = _FlowState(record_count=count)
        phases: list[PhaseResult] = []

        with correlation_scope(test_id=test_id):
            self._logger.info("flow_verification_started", test_id=test_id, record_count=count)

            steps: tuple[tuple[str, Callable[[_FlowState], Awaitable[PhaseResult]]], ...] = (
                ("setup", self._setup),
                ("save", self._save),
                ("fetch", self._fetch),
                ("validate", self._validate),
            )
            failed_phase: str | None = None
            for name, step in steps:
                if failed_phase is not None:
                    phases.append(
                        PhaseResult(
                            name=name,
                            success=False,
                            duration_ms=0.0,
                            errors=(f"skipped after {failed_phase} failure",),
                            skipped=True,
                        )
                    )
                    continue
                result = await self._timed(name, step, state)
                phases.append(result)
                if state.analysis_id is not None:
                    self._tracker.track(
                        state.analysis_id,
                        name,
                        success=result.success,
                        details="; ".join(result.errors) or "ok",
                    )
                if not result.success:
                    failed_phase = name

            cleanup = await self._cleanup(state)
            phases.append(cleanup)
            if state.analysis_id is not None:
                self._tracker.track(
                    state.analysis_id,
                    "cleanup",
                    success=cleanup.success,
                    details="; ".join(cleanup.errors) or "ok",
                )

            total_ms = (time.perf_counter() - started) * 1000.0
            success = all(item.success for item in phases[:-1])
            errors = tuple(
                f"{item.name}: {message}"
                for item in phases
                if not item.skipped
                for message in item.errors
            )
            metrics: dict[str, JSONValue] = {
                "total_ms": round(total_ms, 3),
                "save_ms": round(_phase_duration(phases, "save"), 3),
                "fetch_ms": round(_phase_duration(phases, "fetch"), 3),
                "record_count": count,
                "integrity_score": state.integrity_score,
            }
            if self._max_duration_ms is not None:
                within_budget = total_ms <= self._max_duration_ms
                metrics["within_time_budget"] = within_budget
                if not within_budget:
                    self._logger.warning(
                        "flow_verification_slow",
                        total_ms=round(total_ms, 3),
                        max_duration_ms=self._max_duration_ms,
                    )

            result = FlowVerificationResult(
                test_id=test_id,
                analysis_id=state.analysis_id,
                started_at=started_at,
                phases=tuple(phases),
                metrics=metrics,
                errors=errors,
                success=success,
            )
            log = self._logger.info if success else self._logger.warning
            log(
                "flow_verification_completed",
                test_id=test_id,
                success=success,
                summary=result.summary,
                total_ms=round(total_ms, 3),
                integrity_score=state.integrity_score,
            )
            return result

    async def report(self, record_count: int | None = None) -> FlowReport:
        """Run the flow and rate the measured save and fetch durations."""

        flow = await self.run(record_count)
        return FlowReport(
            flow=flow,
            save_rating=_phase_rating(flow, "save"),
            fetch_rating=_phase_rating(flow, "fetch"),
        )

    async def _timed(
        self,
        name: str,
        step: Callable[[_FlowState], Awaitable[PhaseResult]],
        state: _FlowState,
    ) -> PhaseResult:
        started = time.perf_counter()
        try:
            result = await step(state)
        except RecommendationLedgerError as exc:
            self._logger.warning("flow_phase_error", phase=name, error=str(exc))
            return PhaseResult(
                name=name,
                success=False,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=(str(exc),),
            )
        return PhaseResult(
            name=name,
            success=result.success,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details=result.details,
            errors=result.errors,
        )

    async def _setup(self, state: _FlowState) -> PhaseResult:
        state.analysis_id = await self._persistence.create_analysis(
            _TEST_ANALYSIS_TITLE, content=_TEST_ANALYSIS_CONTENT, language="en"
        )
        state.records = generate_test_records(state.record_count)
        return PhaseResult(
            name="setup",
            success=True,
            duration_ms=0.0,
            details={"analysis_id": state.analysis_id, "record_count": len(state.records)},
        )

    async def _save(self, state: _FlowState) -> PhaseResult:
        assert state.analysis_id is not None and state.records is not None
        outcome = await self._persistence.save(state.analysis_id, state.records)
        errors: list[str] = list(outcome.errors)
        if outcome.success and outcome.saved_count != state.record_count:
            errors.append(f"saved {outcome.saved_count} of {state.record_count} records")
        verification = outcome.verification
        if outcome.success and (verification is None or not verification.verified):
            errors.append("post-write verification failed")
        if not outcome.success and not errors:
            errors.append(outcome.message)
        return PhaseResult(
            name="save",
            success=outcome.success and not errors,
            duration_ms=0.0,
            details={
                "saved_count": outcome.saved_count,
                "verification": None if verification is None else verification.to_dict(),
            },
            errors=tuple(errors),
        )

    async def _fetch(self, state: _FlowState) -> PhaseResult:
        assert state.analysis_id is not None
        outcome = await self._persistence.fetch(state.analysis_id)
        errors: list[str] = list(outcome.errors)
        if outcome.success and outcome.total_count != state.record_count:
            errors.append(f"fetched {outcome.total_count} of {state.record_count} records")
        return PhaseResult(
            name="fetch",
            success=outcome.success and not errors,
            duration_ms=0.0,
            details={"total_count": outcome.total_count, "error_type": outcome.error_type},
            errors=tuple(errors),
        )

    async def _validate(self, state: _FlowState) -> PhaseResult:
        assert state.analysis_id is not None and state.records is not None
        expected_ids = [str(item["external_id"]) for item in state.records]
        audit = await asyncio.to_thread(
            self._auditor.audit,
            state.analysis_id,
            state.record_count,
            expected_ids=expected_ids,
        )
        state.integrity_score = audit.integrity_score
        errors: tuple[str, ...] = ()
        if not audit.is_consistent:
            errors = (
                audit.error
                or f"Data consistency validation failed: score {audit.integrity_score}%",
            )
        return PhaseResult(
            name="validate",
            success=audit.is_consistent,
            duration_ms=0.0,
            details={
                "integrity_score": audit.integrity_score,
                "corrupted_count": audit.corrupted_count,
                "missing_ids": list(audit.missing_ids),
                "unexpected_ids": list(audit.unexpected_ids),
            },
            errors=errors,
        )

    async def _cleanup(self, state: _FlowState) -> PhaseResult:
        if state.analysis_id is None:
            return PhaseResult(
                name="cleanup",
                success=True,
                duration_ms=0.0,
                details={"reason": "no analysis was created"},
                skipped=True,
            )

        started = time.perf_counter()
        try:
            deleted = await self._persistence.delete(state.analysis_id)
            await self._persistence.delete_analysis(state.analysis_id)
        except RecommendationLedgerError as exc:
            self._logger.error(
                "flow_cleanup_failed", analysis_id=state.analysis_id, error=str(exc)
            )
            return PhaseResult(
                name="cleanup",
                success=False,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=(str(exc),),
            )
        return PhaseResult(
            name="cleanup",
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details={"deleted_records": deleted},
        )


def _phase_duration(phases: list[PhaseResult], name: str) -> float:
    for item in phases:
        if item.name == name:
            return item.duration_ms
    return 0.0


def _phase_rating(flow: FlowVerificationResult, name: str) -> PerformanceRating:
    phase = flow.phase(name)
    if phase.skipped or not phase.success:
        return PerformanceRating.CRITICAL
    return rate_duration(phase.duration_ms)


__all__ = [
    "DEFAULT_RECORD_COUNT",
    "FlowReport",
    "FlowVerificationHarness",
    "PHASES",
    "generate_test_records",
]
