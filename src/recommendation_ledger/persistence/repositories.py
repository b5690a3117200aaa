"""
recommendation-ledger — row repositories

File: src/recommendation_ledger/persistence/repositories.py

Purpose
- Row-level read/write access for analyses and recommendations.

What is included in this file
- ``AnalysisRepo``: create, existence check, delete (cascades to recommendations).
- ``RecommendationRepo``: batch insert, ordered listing, counts, status transitions with
  history, quick-win selection and the check queries used by the health checks.

Functional requirements
- Every method accepts an optional connection so callers can compose one transaction.
- Rows come back in insertion order (``ORDER BY id ASC``).
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Final

from recommendation_ledger.constants import PRIORITY_WEIGHT
from recommendation_ledger.domain.models import (
    JSONValue,
    RecommendationInput,
    RecommendationRecord,
    RecommendationStatus,
)
from recommendation_ledger.errors import InvalidReference, StoreError
from recommendation_ledger.persistence.store import RecordStore, RowValue, utc_now_iso

if TYPE_CHECKING:
    import sqlite3

_RECORD_COLUMNS: Final[str] = (
    "id, analysis_id, external_id, title, priority, category, effort, status, "
    "payload_json, created_at"
)

_QUICK_WIN_PRIORITIES: Final[tuple[str, ...]] = ("critical", "high")


class _BaseRepo:
    def __init__(self, store: RecordStore) -> None:
        self._store = store

    @property
    def store(self) -> RecordStore:
        return self._store


class AnalysisRepo(_BaseRepo):
    """Repository for the parent analysis rows."""

    def create(
        self,
        title: str,
        *,
        content: str = "",
        language: str = "en",
        conn: sqlite3.Connection | None = None,
    ) -> int:
        title_text = _as_non_empty_str(title, "analyses.title")
        sql = "INSERT INTO analyses (title, content, language, created_at) VALUES (?, ?, ?, ?)"
        params = (title_text, content, language, utc_now_iso())
        if conn is not None:
            return self._store.insert(sql, params, conn=conn)
        with self._store.transaction() as tx:
            return self._store.insert(sql, params, conn=tx)

    def exists(self, analysis_id: int, *, conn: sqlite3.Connection | None = None) -> bool:
        row = self._store.query_one(
            "SELECT 1 AS present FROM analyses WHERE id = ?", (analysis_id,), conn=conn
        )
        return row is not None

    def delete(self, analysis_id: int, *, conn: sqlite3.Connection | None = None) -> bool:
        deleted = self._store.execute(
            "DELETE FROM analyses WHERE id = ?", (analysis_id,), conn=conn
        )
        return deleted > 0


class RecommendationRepo(_BaseRepo):
    """Repository for recommendation rows and their status history."""

    def insert_batch(
        self,
        analysis_id: int,
        records: Sequence[RecommendationInput],
        *,
        conn: sqlite3.Connection,
    ) -> tuple[int, ...]:
        created_at = utc_now_iso()
        row_ids: list[int] = []
        for record in records:
            row_ids.append(
                self._store.insert(
                    """
                    INSERT INTO recommendations (
                        analysis_id,
                        external_id,
                        title,
                        priority,
                        category,
                        effort,
                        status,
                        payload_json,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        analysis_id,
                        record.external_id,
                        record.title,
                        record.priority.value,
                        record.category,
                        record.effort.value,
                        record.status.value,
                        record.payload_json(),
                        created_at,
                    ),
                    conn=conn,
                )
            )
        return tuple(row_ids)

    def get(
        self, recommendation_id: int, *, conn: sqlite3.Connection | None = None
    ) -> RecommendationRecord | None:
        row = self._store.query_one(
            f"SELECT {_RECORD_COLUMNS} FROM recommendations WHERE id = ?",
            (recommendation_id,),
            conn=conn,
        )
        return None if row is None else _record_from_row(row)

    def list_for_analysis(
        self, analysis_id: int, *, conn: sqlite3.Connection | None = None
    ) -> list[RecommendationRecord]:
        rows = self._store.query_all(
            f"SELECT {_RECORD_COLUMNS} FROM recommendations WHERE analysis_id = ? ORDER BY id ASC",
            (analysis_id,),
            conn=conn,
        )
        return [_record_from_row(row) for row in rows]

    def count_for_analysis(
        self, analysis_id: int, *, conn: sqlite3.Connection | None = None
    ) -> int:
        row = self._store.query_one(
            "SELECT COUNT(*) AS total FROM recommendations WHERE analysis_id = ?",
            (analysis_id,),
            conn=conn,
        )
        return 0 if row is None else _row_int(row, "total")

    def delete_for_analysis(
        self, analysis_id: int, *, conn: sqlite3.Connection | None = None
    ) -> int:
        return self._store.execute(
            "DELETE FROM recommendations WHERE analysis_id = ?", (analysis_id,), conn=conn
        )

    def set_status(
        self,
        recommendation_id: int,
        status: RecommendationStatus,
        *,
        notes: str | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> str:
        """Update one row's status, append a history entry and return the old status."""

        if conn is None:
            with self._store.transaction() as tx:
                return self.set_status(recommendation_id, status, notes=notes, conn=tx)

        row = self._store.query_one(
            "SELECT status FROM recommendations WHERE id = ?", (recommendation_id,), conn=conn
        )
        if row is None:
            raise InvalidReference(f"Recommendation ID {recommendation_id} does not exist")
        old_status = str(row["status"])
        self._store.execute(
            "UPDATE recommendations SET status = ? WHERE id = ?",
            (status.value, recommendation_id),
            conn=conn,
        )
        self._store.execute(
            """
            INSERT INTO recommendation_status_history (
                recommendation_id, old_status, new_status, notes, changed_at
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (recommendation_id, old_status, status.value, notes, utc_now_iso()),
            conn=conn,
        )
        return old_status

    def status_history(self, recommendation_id: int) -> list[dict[str, RowValue]]:
        return self._store.query_all(
            """
            SELECT old_status, new_status, notes, changed_at
            FROM recommendation_status_history
            WHERE recommendation_id = ?
            ORDER BY id ASC
            """,
            (recommendation_id,),
        )

    def quick_wins(self, analysis_id: int, *, limit: int = 5) -> list[RecommendationRecord]:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        placeholders = ",".join("?" for _ in _QUICK_WIN_PRIORITIES)
        rows = self._store.query_all(
            f"""
            SELECT {_RECORD_COLUMNS}
            FROM recommendations
            WHERE analysis_id = ?
              AND effort = 'quick'
              AND status = 'pending'
              AND priority IN ({placeholders})
            ORDER BY id ASC
            """,
            (analysis_id, *_QUICK_WIN_PRIORITIES),
        )
        records = [_record_from_row(row) for row in rows]
        records.sort(key=lambda item: (-PRIORITY_WEIGHT.get(item.priority, 0), item.id))
        return records[:limit]

    def orphan_count(self) -> int:
        row = self._store.query_one(
            """
            SELECT COUNT(*) AS total
            FROM recommendations r
            LEFT JOIN analyses a ON a.id = r.analysis_id
            WHERE a.id IS NULL
            """
        )
        return 0 if row is None else _row_int(row, "total")

    def total_count(self) -> int:
        row = self._store.query_one("SELECT COUNT(*) AS total FROM recommendations")
        return 0 if row is None else _row_int(row, "total")

    def created_since(self, since_iso: str) -> int:
        row = self._store.query_one(
            "SELECT COUNT(*) AS total FROM recommendations WHERE created_at >= ?", (since_iso,)
        )
        return 0 if row is None else _row_int(row, "total")


def _record_from_row(row: Mapping[str, RowValue]) -> RecommendationRecord:
    payload = _decode_payload(row.get("payload_json"))
    return RecommendationRecord(
        id=_row_int(row, "id"),
        analysis_id=_row_int(row, "analysis_id"),
        external_id=_row_text(row, "external_id"),
        title=_row_text(row, "title"),
        priority=_row_text(row, "priority"),
        category=_row_text(row, "category"),
        effort=_row_text(row, "effort"),
        status=_row_text(row, "status"),
        payload=payload if payload is not None else {},
        created_at=_row_text(row, "created_at"),
        payload_decoded=payload is not None,
    )


def _decode_payload(raw: RowValue) -> dict[str, JSONValue] | None:
    """Stored payload object, or ``None`` when the column does not hold a JSON object."""

    if not isinstance(raw, str):
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _row_text(row: Mapping[str, RowValue], key: str) -> str:
    value = row.get(key)
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _row_int(row: Mapping[str, RowValue], key: str) -> int:
    value = row.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise StoreError(f"column {key!r} must be an integer, got {type(value).__name__}")
    return value


def _as_non_empty_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{path} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{path} must not be empty")
    return normalized


__all__ = ["AnalysisRepo", "RecommendationRepo"]
