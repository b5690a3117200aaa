"""
recommendation-ledger — boundary gateway contract.

File: src/recommendation_ledger/gateway.py

Purpose
- Translate persistence outcomes into plain request/response envelopes.
- Never raise for caller mistakes: every input or store failure becomes ``success=False``
  with a human-readable ``message`` and the raw error text in ``errors``.

Envelope rules
- An empty fetch is ``success=True`` with no records. Failed fetches and saves set ``error_type``
  (fetch: ``invalid_reference``, ``timeout``, ``unavailable``, ``query``; save adds
  ``invalid_payload``, ``validation`` and ``store``).
- ``verification_result`` is always present on save envelopes so callers can read
  ``verified`` without a presence check.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final

import structlog

from recommendation_ledger.domain.models import JSONValue, iso8601z
from recommendation_ledger.errors import (
    InvalidPayload,
    InvalidReference,
    StoreError,
    ValidationError,
)
from recommendation_ledger.observability.performance import rate_duration
from recommendation_ledger.persistence.recommendations import coerce_positive_id
from recommendation_ledger.persistence.store import utc_now

if TYPE_CHECKING:
    from recommendation_ledger.harness.flow import FlowVerificationHarness
    from recommendation_ledger.persistence.recommendations import RecommendationPersistence
    from recommendation_ledger.runtime import LedgerRuntime

INVALID_ANALYSIS_ID_MESSAGE: Final[str] = "Invalid analysis ID"
INVALID_RECOMMENDATION_ID_MESSAGE: Final[str] = "Invalid recommendation ID"
INVALID_PAYLOAD_MESSAGE: Final[str] = "Invalid payload format"
STORE_UNAVAILABLE_MESSAGE: Final[str] = "Record store is not available"
HEALTH_RESET_MESSAGE: Final[str] = "Health metrics have been reset"


class RecommendationGateway:
    """Dict-in/dict-out facade over the persistence layer, monitor and harness."""

    def __init__(
        self,
        persistence: RecommendationPersistence,
        *,
        harness: FlowVerificationHarness | None = None,
        logger: Any | None = None,
    ) -> None:
        self._persistence = persistence
        self._harness = harness
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_runtime(cls, runtime: LedgerRuntime) -> RecommendationGateway:
        return cls(runtime.persistence, harness=runtime.harness)

    async def create_analysis(self, title: str, *, content: str = "") -> dict[str, JSONValue]:
        if not isinstance(title, str) or not title.strip():
            return {"success": False, "message": "Analysis title is required"}
        try:
            analysis_id = await self._persistence.create_analysis(title.strip(), content=content)
        except StoreError as exc:
            return {"success": False, "message": STORE_UNAVAILABLE_MESSAGE, "errors": [str(exc)]}
        return {"success": True, "analysis_id": analysis_id, "message": "Analysis created"}

    async def save_recommendations(
        self,
        analysis_id: object,
        records: object,
        *,
        replace: bool = True,
    ) -> dict[str, JSONValue]:
        requested = _batch_length(records)
        try:
            outcome = await self._persistence.save(analysis_id, records, replace=replace)
        except InvalidReference as exc:
            return _save_failure(
                analysis_id, requested, INVALID_ANALYSIS_ID_MESSAGE, "invalid_reference", exc
            )
        except InvalidPayload as exc:
            return _save_failure(
                analysis_id, requested, INVALID_PAYLOAD_MESSAGE, "invalid_payload", exc
            )
        except ValidationError as exc:
            return _save_failure(analysis_id, requested, str(exc), "validation", exc)

        if not outcome.success:
            message = outcome.message
            if outcome.error_type == "unavailable":
                message = STORE_UNAVAILABLE_MESSAGE
            self._logger.warning(
                "gateway_save_failed",
                analysis_id=outcome.analysis_id,
                error_type=outcome.error_type,
            )
            return {
                "success": False,
                "saved_count": 0,
                "analysis_id": outcome.analysis_id,
                "verification_result": {
                    "expected_count": requested,
                    "actual_count": 0,
                    "verified": False,
                },
                "message": message,
                "error_type": outcome.error_type,
                "errors": list(outcome.errors),
            }

        if outcome.verification is None:
            verification: dict[str, JSONValue] = {
                "expected_count": 0,
                "actual_count": 0,
                "verified": True,
            }
        else:
            verification = outcome.verification.to_dict()
        return {
            "success": True,
            "saved_count": outcome.saved_count,
            "analysis_id": outcome.analysis_id,
            "verification_result": verification,
            "message": outcome.message,
        }

    async def get_recommendations(self, analysis_id: object) -> dict[str, JSONValue]:
        try:
            outcome = await self._persistence.fetch(analysis_id)
        except InvalidReference as exc:
            return {
                "success": False,
                "recommendations": [],
                "metadata": _fetch_metadata(None, 0, 0.0, utc_now()),
                "error_type": "invalid_reference",
                "message": INVALID_ANALYSIS_ID_MESSAGE,
                "errors": [str(exc)],
            }

        envelope: dict[str, JSONValue] = {
            "success": outcome.success,
            "recommendations": [record.to_dict() for record in outcome.records],
            "metadata": _fetch_metadata(
                outcome.analysis_id, outcome.total_count, outcome.duration_ms, outcome.fetched_at
            ),
        }
        if not outcome.success:
            envelope["error_type"] = outcome.error_type
            envelope["errors"] = list(outcome.errors)
        return envelope

    async def update_recommendation_status(
        self,
        recommendation_id: object,
        status: str,
        *,
        notes: str | None = None,
    ) -> dict[str, JSONValue]:
        try:
            updated = await self._persistence.update_status(recommendation_id, status, notes=notes)
        except InvalidReference as exc:
            return {
                "success": False,
                "message": INVALID_RECOMMENDATION_ID_MESSAGE,
                "errors": [str(exc)],
            }
        except ValidationError as exc:
            return {"success": False, "message": str(exc), "errors": [str(exc)]}

        if not updated:
            return {"success": False, "message": STORE_UNAVAILABLE_MESSAGE}
        return {
            "success": True,
            "recommendation_id": coerce_positive_id(recommendation_id, label="recommendation"),
            "status": status.strip().lower() if isinstance(status, str) else None,
            "message": "Recommendation status updated",
        }

    async def get_quick_wins(self, analysis_id: object, *, limit: int = 5) -> dict[str, JSONValue]:
        try:
            records = await self._persistence.quick_wins(analysis_id, limit=limit)
        except InvalidReference as exc:
            return {
                "success": False,
                "quick_wins": [],
                "message": INVALID_ANALYSIS_ID_MESSAGE,
                "errors": [str(exc)],
            }
        except StoreError as exc:
            return {
                "success": False,
                "quick_wins": [],
                "message": STORE_UNAVAILABLE_MESSAGE,
                "errors": [str(exc)],
            }
        return {
            "success": True,
            "quick_wins": [record.to_dict() for record in records],
            "count": len(records),
        }

    async def health_check(self) -> dict[str, JSONValue]:
        monitor = self._persistence.monitor
        status = await asyncio.to_thread(monitor.perform_health_check, self._persistence.store)
        return status.to_dict()

    def health_metrics(self) -> dict[str, JSONValue]:
        monitor = self._persistence.monitor
        payload = monitor.performance_stats().to_dict()
        current = monitor.current_status()
        payload["current_status"] = None if current is None else current.value
        return payload

    def health_reset(self) -> dict[str, JSONValue]:
        self._persistence.monitor.reset()
        self._logger.info("gateway_health_reset")
        return {"success": True, "message": HEALTH_RESET_MESSAGE}

    async def verify_flow(self, record_count: int | None = None) -> dict[str, JSONValue]:
        if self._harness is None:
            return {"success": False, "message": "Flow verification harness is not configured"}
        report = await self._harness.report(record_count)
        payload = report.to_dict()
        payload["success"] = report.flow.success
        return payload


def _batch_length(records: object) -> int:
    if isinstance(records, (str, bytes, bytearray)) or not isinstance(records, Sequence):
        return 0
    return len(records)


def _save_failure(
    analysis_id: object,
    requested: int,
    message: str,
    error_type: str,
    exc: Exception,
) -> dict[str, JSONValue]:
    return {
        "success": False,
        "saved_count": 0,
        "analysis_id": (
            analysis_id
            if isinstance(analysis_id, int) and not isinstance(analysis_id, bool)
            else None
        ),
        "verification_result": {
            "expected_count": requested,
            "actual_count": 0,
            "verified": False,
        },
        "message": message,
        "error_type": error_type,
        "errors": [str(exc)],
    }


def _fetch_metadata(
    analysis_id: int | None,
    total_count: int,
    duration_ms: float,
    fetched_at: datetime,
) -> dict[str, JSONValue]:
    return {
        "analysis_id": analysis_id,
        "total_count": total_count,
        "fetch_timestamp": iso8601z(fetched_at),
        "performance": {
            "fetch_time_ms": round(duration_ms, 3),
            "rating": rate_duration(duration_ms).value,
        },
    }


__all__ = [
    "HEALTH_RESET_MESSAGE",
    "INVALID_ANALYSIS_ID_MESSAGE",
    "INVALID_PAYLOAD_MESSAGE",
    "INVALID_RECOMMENDATION_ID_MESSAGE",
    "RecommendationGateway",
    "STORE_UNAVAILABLE_MESSAGE",
]
