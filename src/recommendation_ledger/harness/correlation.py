"""Per-analysis operation trail used by the flow-verification harness."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from recommendation_ledger.domain.models import JSONValue, iso8601z
from recommendation_ledger.persistence.store import utc_now


@dataclass(frozen=True, slots=True)
class TrackedOperation:
    timestamp: datetime
    operation: str
    success: bool
    details: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "timestamp": iso8601z(self.timestamp),
            "operation": self.operation,
            "success": self.success,
            "details": self.details,
        }


@dataclass(slots=True)
class _Trail:
    correlation_id: str
    operations: list[TrackedOperation] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CorrelationRecord:
    analysis_id: int
    correlation_id: str
    operations: tuple[TrackedOperation, ...]
    issues: tuple[str, ...]

    @property
    def operation_count(self) -> int:
        return len(self.operations)

    @property
    def data_consistency(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "analysis_id": self.analysis_id,
            "correlation_id": self.correlation_id,
            "operation_count": self.operation_count,
            "operations": [item.to_dict() for item in self.operations],
            "data_consistency": self.data_consistency,
            "issues": list(self.issues),
        }


class CorrelationTracker:
    """Thread-safe map from analysis id to the operations performed against it."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._lock = threading.RLock()
        self._trails: dict[int, _Trail] = {}
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def track(self, analysis_id: int, operation: str, *, success: bool, details: str) -> str:
        """Append one operation and return the analysis's correlation id."""

        now = utc_now()
        with self._lock:
            trail = self._trails.get(analysis_id)
            if trail is None:
                trail = _Trail(correlation_id=f"corr-{analysis_id}-{int(now.timestamp() * 1000)}")
                self._trails[analysis_id] = trail
            trail.operations.append(
                TrackedOperation(
                    timestamp=now, operation=operation, success=success, details=details
                )
            )
            if not success:
                trail.issues.append(f"{operation} failed: {details}")
            operation_count = len(trail.operations)
            correlation_id = trail.correlation_id

        self._logger.debug(
            "correlation_tracked",
            analysis_id=analysis_id,
            correlation_id=correlation_id,
            operation=operation,
            success=success,
            operation_count=operation_count,
        )
        return correlation_id

    def get(self, analysis_id: int) -> CorrelationRecord | None:
        with self._lock:
            trail = self._trails.get(analysis_id)
            if trail is None:
                return None
            return CorrelationRecord(
                analysis_id=analysis_id,
                correlation_id=trail.correlation_id,
                operations=tuple(trail.operations),
                issues=tuple(trail.issues),
            )

    def forget(self, analysis_id: int) -> None:
        with self._lock:
            self._trails.pop(analysis_id, None)

    def clear(self) -> None:
        with self._lock:
            self._trails.clear()


__all__ = ["CorrelationRecord", "CorrelationTracker", "TrackedOperation"]
