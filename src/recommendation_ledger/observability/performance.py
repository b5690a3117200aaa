"""Duration rating and single-operation performance measurement."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Final, TypeVar

import structlog

from recommendation_ledger.domain.models import JSONValue, OperationType, PerformanceRating

T = TypeVar("T")

_RATING_THRESHOLDS_MS: Final[tuple[tuple[float, PerformanceRating], ...]] = (
    (50.0, PerformanceRating.EXCELLENT),
    (200.0, PerformanceRating.GOOD),
    (1000.0, PerformanceRating.ACCEPTABLE),
    (5000.0, PerformanceRating.POOR),
)

_RATING_ORDER: Final[tuple[PerformanceRating, ...]] = (
    PerformanceRating.EXCELLENT,
    PerformanceRating.GOOD,
    PerformanceRating.ACCEPTABLE,
    PerformanceRating.POOR,
    PerformanceRating.CRITICAL,
)

_RATING_ADVICE: Final[dict[PerformanceRating, tuple[str, ...]]] = {
    PerformanceRating.EXCELLENT: (),
    PerformanceRating.GOOD: (),
    PerformanceRating.ACCEPTABLE: ("Consider optimizing database queries",),
    PerformanceRating.POOR: (
        "Performance issues detected - review database indexes",
        "Consider keeping record batches smaller",
    ),
    PerformanceRating.CRITICAL: (
        "Critical performance issues - immediate optimization required",
        "Review database schema and query plans",
    ),
}


@dataclass(frozen=True, slots=True)
class OperationMeasurement:
    operation_type: OperationType
    duration_ms: float
    throughput_per_second: float
    rating: PerformanceRating
    advice: tuple[str, ...]
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "operation_type": self.operation_type.value,
            "duration_ms": round(self.duration_ms, 3),
            "throughput_per_second": round(self.throughput_per_second, 3),
            "rating": self.rating.value,
            "advice": list(self.advice),
            "success": self.success,
            "error": self.error,
        }


def rate_duration(duration_ms: float) -> PerformanceRating:
    """Map a duration onto the fixed rating bands."""

    if duration_ms < 0:
        raise ValueError("duration_ms must be >= 0")
    for upper_bound, rating in _RATING_THRESHOLDS_MS:
        if duration_ms < upper_bound:
            return rating
    return PerformanceRating.CRITICAL


def worst_rating(*ratings: PerformanceRating) -> PerformanceRating:
    if not ratings:
        return PerformanceRating.EXCELLENT
    return max(ratings, key=_RATING_ORDER.index)


def advice_for(rating: PerformanceRating) -> tuple[str, ...]:
    return _RATING_ADVICE[rating]


async def measure_operation(
    operation_type: OperationType | str,
    fn: Callable[[], Awaitable[T]],
    *,
    logger: Any | None = None,
) -> tuple[T | None, OperationMeasurement]:
    """Await ``fn`` once and rate how long it took.

    A raised exception is captured into a critical measurement and the result slot is
    ``None``; the exception is not re-raised.
    """

    op = OperationType(operation_type)
    log = logger if logger is not None else structlog.get_logger(__name__)
    started = time.perf_counter()
    try:
        result = await fn()
    except Exception as exc:
        duration_ms = (time.perf_counter() - started) * 1000.0
        log.warning(
            "operation_measurement_failed",
            operation_type=op.value,
            duration_ms=round(duration_ms, 3),
            error=str(exc),
        )
        return None, OperationMeasurement(
            operation_type=op,
            duration_ms=duration_ms,
            throughput_per_second=0.0,
            rating=PerformanceRating.CRITICAL,
            advice=(f"Operation failed: {exc}",),
            success=False,
            error=str(exc),
        )

    duration_ms = (time.perf_counter() - started) * 1000.0
    rating = rate_duration(duration_ms)
    measurement = OperationMeasurement(
        operation_type=op,
        duration_ms=duration_ms,
        throughput_per_second=_throughput(duration_ms),
        rating=rating,
        advice=advice_for(rating),
    )
    log.info(
        "operation_measured",
        operation_type=op.value,
        duration_ms=round(duration_ms, 3),
        rating=rating.value,
    )
    return result, measurement


def _throughput(duration_ms: float) -> float:
    if duration_ms <= 0:
        return 0.0
    return 1000.0 / duration_ms


__all__ = [
    "OperationMeasurement",
    "advice_for",
    "measure_operation",
    "rate_duration",
    "worst_rating",
]
