"""Dataclass domain models with strict validation and snake_case serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final, TypeVar

from recommendation_ledger.constants import (
    MAX_CATEGORY_LENGTH,
    MAX_EXTERNAL_ID_LENGTH,
    MAX_TITLE_LENGTH,
)
from recommendation_ledger.errors import ConsistencyViolation, ValidationError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=StrEnum)

_STRIPPED_CHARACTERS: Final[str] = "<>'\"&"
_STRIP_TABLE: Final[dict[int, None]] = {ord(char): None for char in _STRIPPED_CHARACTERS}

# Input keys that map onto columns; everything else is folded into the payload.
_COLUMN_KEYS: Final[frozenset[str]] = frozenset(
    {"id", "external_id", "externalId", "title", "priority", "category", "effort", "status"}
)


class Priority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Effort(StrEnum):
    QUICK = "quick"
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    COMPLEX = "complex"


class RecommendationStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class OperationType(StrEnum):
    SAVE = "save"
    FETCH = "fetch"
    UPDATE = "update"
    DELETE = "delete"


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _HEALTH_SEVERITY[self]


_HEALTH_SEVERITY: Final[dict[HealthStatus, int]] = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
}


class PerformanceRating(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    CRITICAL = "critical"


def worst_status(*statuses: HealthStatus) -> HealthStatus:
    """Return the most severe status; an empty call is healthy."""

    if not statuses:
        return HealthStatus.HEALTHY
    return max(statuses, key=lambda item: item.severity)


def sanitize_text(value: str, *, max_len: int) -> str:
    """Trim, drop markup-significant characters and truncate."""

    cleaned = value.strip().translate(_STRIP_TABLE).strip()
    return cleaned[:max_len]


def iso8601z(value: datetime) -> str:
    if value.tzinfo is None or value.utcoffset() is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class RecommendationInput:
    """One caller-supplied record after validation and sanitization."""

    external_id: str
    title: str
    priority: Priority
    category: str
    effort: Effort
    status: RecommendationStatus = RecommendationStatus.PENDING
    payload: dict[str, JSONValue] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, index: int, raw: Mapping[str, object]) -> RecommendationInput:
        """Validate one raw record; ``index`` is zero-based and only used for messages."""

        external_id = _input_external_id(index, raw)
        label = f"Recommendation {index} ({external_id})"

        title = _input_text(
            raw.get("title"), label, "title", max_len=MAX_TITLE_LENGTH, index=index
        )
        category = _input_text(
            raw.get("category"), label, "category", max_len=MAX_CATEGORY_LENGTH, index=index
        )
        priority = _input_enum(Priority, raw.get("priority"), label, "priority", index=index)
        effort = _input_enum(Effort, raw.get("effort"), label, "effort", index=index)
        raw_status = raw.get("status")
        status = (
            RecommendationStatus.PENDING
            if raw_status is None
            else _input_enum(RecommendationStatus, raw_status, label, "status", index=index)
        )

        payload = _input_payload(raw, label, index=index)
        return cls(
            external_id=external_id,
            title=title,
            priority=priority,
            category=category,
            effort=effort,
            status=status,
            payload=payload,
        )

    def payload_json(self) -> str:
        return json.dumps(self.payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class RecommendationRecord:
    """A stored row. Enumerated fields stay plain text so audits can see bad values."""

    id: int
    analysis_id: int
    external_id: str
    title: str
    priority: str
    category: str
    effort: str
    status: str
    payload: dict[str, JSONValue]
    created_at: str
    payload_decoded: bool = True

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "analysis_id": self.analysis_id,
            "external_id": self.external_id,
            "title": self.title,
            "priority": self.priority,
            "category": self.category,
            "effort": self.effort,
            "status": self.status,
            "payload": self.payload,
            "created_at": self.created_at,
        }


@dataclass(frozen=True, slots=True)
class HealthMetric:
    """One observation of a persistence operation."""

    operation_type: OperationType
    duration_ms: float
    success: bool
    timestamp: datetime
    analysis_id: int | None = None
    record_count: int | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.operation_type, OperationType):
            object.__setattr__(self, "operation_type", OperationType(self.operation_type))
        if isinstance(self.duration_ms, bool) or not isinstance(self.duration_ms, (int, float)):
            raise ValueError("HealthMetric.duration_ms must be numeric")
        if not math.isfinite(self.duration_ms) or self.duration_ms < 0:
            raise ValueError("HealthMetric.duration_ms must be a finite value >= 0")
        if self.timestamp.tzinfo is None:
            raise ValueError("HealthMetric.timestamp must be timezone-aware")
        if self.success and self.error_message is not None:
            raise ValueError("HealthMetric.error_message must be absent for successful operations")
        if not self.success and not (self.error_message and self.error_message.strip()):
            raise ValueError("HealthMetric.error_message is required for failed operations")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operation_type": self.operation_type.value,
            "duration_ms": round(self.duration_ms, 3),
            "success": self.success,
            "timestamp": iso8601z(self.timestamp),
            "analysis_id": self.analysis_id,
            "record_count": self.record_count,
            "error_message": self.error_message,
        }


@dataclass(frozen=True, slots=True)
class PerformanceStats:
    total_operations: int
    success_rate: float
    average_duration_ms: float
    operations_by_type: dict[str, int]
    recent_failures: tuple[HealthMetric, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "total_operations": self.total_operations,
            "success_rate": self.success_rate,
            "average_duration_ms": round(self.average_duration_ms, 3),
            "operations_by_type": dict(self.operations_by_type),
            "recent_failures": [item.to_dict() for item in self.recent_failures],
        }


@dataclass(frozen=True, slots=True)
class CorruptedRecord:
    record_id: int
    external_id: str
    issues: tuple[str, ...]

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "record_id": self.record_id,
            "external_id": self.external_id,
            "issues": list(self.issues),
        }


@dataclass(frozen=True, slots=True)
class ConsistencyResult:
    analysis_id: int
    expected_count: int
    actual_count: int
    missing_ids: tuple[str, ...]
    unexpected_ids: tuple[str, ...]
    corrupted: tuple[CorruptedRecord, ...]
    integrity_score: int
    is_consistent: bool
    checked_at: datetime
    error: str | None = None

    @property
    def corrupted_count(self) -> int:
        return len(self.corrupted)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "analysis_id": self.analysis_id,
            "expected_count": self.expected_count,
            "actual_count": self.actual_count,
            "missing_ids": list(self.missing_ids),
            "unexpected_ids": list(self.unexpected_ids),
            "corrupted": [item.to_dict() for item in self.corrupted],
            "integrity_score": self.integrity_score,
            "is_consistent": self.is_consistent,
            "checked_at": iso8601z(self.checked_at),
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class VerificationResult:
    analysis_id: int
    expected_count: int
    actual_count: int
    verified: bool
    details: str | None = None

    @property
    def violation(self) -> ConsistencyViolation | None:
        if self.verified:
            return None
        return ConsistencyViolation(self.analysis_id, self.expected_count, self.actual_count)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "expected_count": self.expected_count,
            "actual_count": self.actual_count,
            "verified": self.verified,
        }


@dataclass(frozen=True, slots=True)
class SaveOutcome:
    success: bool
    analysis_id: int
    saved_count: int
    message: str
    duration_ms: float
    verification: VerificationResult | None = None
    nothing_to_save: bool = False
    error_type: str | None = None
    errors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    success: bool
    analysis_id: int
    records: tuple[RecommendationRecord, ...]
    fetched_at: datetime
    duration_ms: float
    error_type: str | None = None
    errors: tuple[str, ...] = ()

    @property
    def total_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True, slots=True)
class PhaseResult:
    name: str
    success: bool
    duration_ms: float
    details: dict[str, JSONValue] = field(default_factory=dict)
    errors: tuple[str, ...] = ()
    skipped: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "success": self.success,
            "skipped": self.skipped,
            "duration_ms": round(self.duration_ms, 3),
            "details": dict(self.details),
            "errors": list(self.errors),
        }


@dataclass(frozen=True, slots=True)
class FlowVerificationResult:
    test_id: str
    analysis_id: int | None
    started_at: datetime
    phases: tuple[PhaseResult, ...]
    metrics: dict[str, JSONValue]
    errors: tuple[str, ...]
    success: bool

    def phase(self, name: str) -> PhaseResult:
        for item in self.phases:
            if item.name == name:
                return item
        raise KeyError(name)

    @property
    def summary(self) -> str:
        passed = sum(1 for item in self.phases if item.success)
        verdict = "PASS" if self.success else "FAIL"
        return f"{verdict}: {passed}/{len(self.phases)} phases passed"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "test_id": self.test_id,
            "analysis_id": self.analysis_id,
            "started_at": iso8601z(self.started_at),
            "success": self.success,
            "phases": {item.name: item.to_dict() for item in self.phases},
            "metrics": dict(self.metrics),
            "errors": list(self.errors),
            "summary": self.summary,
        }


@dataclass(frozen=True, slots=True)
class CheckResult:
    name: str
    status: HealthStatus
    response_time_ms: float
    message: str = ""
    details: dict[str, JSONValue] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "status": self.status.value,
            "message": self.message,
            "response_time_ms": round(self.response_time_ms, 3),
            "details": dict(self.details),
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class SystemHealthStatus:
    overall: HealthStatus
    database: CheckResult
    recommendations: CheckResult
    performance: dict[str, JSONValue]
    timestamp: datetime

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "overall": self.overall.value,
            "database": self.database.to_dict(),
            "recommendations": self.recommendations.to_dict(),
            "performance": dict(self.performance),
            "timestamp": iso8601z(self.timestamp),
        }


def _input_external_id(index: int, raw: Mapping[str, object]) -> str:
    candidate: object = None
    for key in ("external_id", "externalId", "id"):
        if raw.get(key) is not None:
            candidate = raw[key]
            break
    if isinstance(candidate, bool) or not isinstance(candidate, (str, int)):
        return f"rec_{index + 1}"
    cleaned = sanitize_text(str(candidate), max_len=MAX_EXTERNAL_ID_LENGTH)
    return cleaned or f"rec_{index + 1}"


def _input_text(value: object, label: str, field_name: str, *, max_len: int, index: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(
            f"{label}: {field_name} is required and must be a string",
            record_index=index,
            field=field_name,
        )
    cleaned = sanitize_text(value, max_len=max_len)
    if not cleaned:
        raise ValidationError(
            f"{label}: {field_name} must not be empty",
            record_index=index,
            field=field_name,
        )
    return cleaned


def _input_enum(
    enum_type: type[TEnum], value: object, label: str, field_name: str, *, index: int
) -> TEnum:
    if not isinstance(value, str):
        raise ValidationError(
            f"{label}: {field_name} is required and must be a string",
            record_index=index,
            field=field_name,
        )
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        allowed = ", ".join(item.value for item in enum_type)
        raise ValidationError(
            f"{label}: invalid {field_name} {value!r}; expected one of: {allowed}",
            record_index=index,
            field=field_name,
        ) from None


def _input_payload(raw: Mapping[str, object], label: str, *, index: int) -> dict[str, JSONValue]:
    payload: dict[str, object] = {}
    explicit = raw.get("payload")
    if explicit is not None:
        if not isinstance(explicit, Mapping):
            raise ValidationError(
                f"{label}: payload must be an object", record_index=index, field="payload"
            )
        payload.update({str(key): value for key, value in explicit.items()})
    for key, value in raw.items():
        if key in _COLUMN_KEYS or key == "payload":
            continue
        payload[str(key)] = value

    try:
        encoded = json.dumps(payload, sort_keys=True, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"{label}: payload is not JSON-serializable ({exc})",
            record_index=index,
            field="payload",
        ) from exc
    decoded: dict[str, JSONValue] = json.loads(encoded)
    return decoded


__all__ = [
    "ConsistencyResult",
    "CorruptedRecord",
    "Effort",
    "FetchOutcome",
    "FlowVerificationResult",
    "HealthMetric",
    "HealthStatus",
    "JSONScalar",
    "JSONValue",
    "OperationType",
    "PerformanceRating",
    "PerformanceStats",
    "PhaseResult",
    "Priority",
    "CheckResult",
    "RecommendationInput",
    "RecommendationRecord",
    "RecommendationStatus",
    "SaveOutcome",
    "SystemHealthStatus",
    "VerificationResult",
    "iso8601z",
    "sanitize_text",
    "worst_status",
]
