"""
recommendation-ledger — error taxonomy

File: src/recommendation_ledger/errors.py

Purpose
- One place for every failure class raised by the ledger.

Propagation contract
- Input errors (``ValidationError``, ``InvalidPayload``, ``InvalidReference``) are raised
  before any store interaction and are never retried.
- Store failures derive from ``StoreError``; only ``StoreUnavailable`` is retried, and only
  for reads.
- ``FetchTimeout`` marks an abandoned read whose outcome is unknown.
- ``ConsistencyViolation`` describes a verification mismatch. Save never raises it; it is
  attached to an otherwise successful outcome.
"""

from __future__ import annotations


class RecommendationLedgerError(Exception):
    """Base class for ledger errors."""


class ValidationError(RecommendationLedgerError, ValueError):
    """Raised when caller input violates record invariants."""

    def __init__(
        self,
        message: str,
        *,
        record_index: int | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.record_index = record_index
        self.field = field


class InvalidPayload(ValidationError):
    """Raised when the batch argument is not a sequence of objects."""


class InvalidReference(RecommendationLedgerError, LookupError):
    """Raised when an analysis or recommendation id is malformed or unknown."""


class StoreError(RecommendationLedgerError, RuntimeError):
    """Base class for record store failures."""


class StoreUnavailable(StoreError):
    """Raised when the store handle is closed or cannot be opened."""


class StoreBusyError(StoreUnavailable):
    """Raised when bounded busy retries are exhausted."""


class StoreMigrationError(StoreError):
    """Raised when migrations cannot be applied safely."""


class StoreCorruptionError(StoreError):
    """Raised when SQLite reports possible corruption."""


class FetchTimeout(RecommendationLedgerError, TimeoutError):
    """Raised when a read exceeds its time budget."""


class ConsistencyViolation(RecommendationLedgerError):
    """Describes an expected/actual mismatch found after a write or during an audit."""

    def __init__(self, analysis_id: int, expected_count: int, actual_count: int) -> None:
        super().__init__(
            f"analysis {analysis_id}: expected {expected_count} record(s), found {actual_count}"
        )
        self.analysis_id = analysis_id
        self.expected_count = expected_count
        self.actual_count = actual_count


__all__ = [
    "ConsistencyViolation",
    "FetchTimeout",
    "InvalidPayload",
    "InvalidReference",
    "RecommendationLedgerError",
    "StoreBusyError",
    "StoreCorruptionError",
    "StoreError",
    "StoreMigrationError",
    "StoreUnavailable",
    "ValidationError",
]
