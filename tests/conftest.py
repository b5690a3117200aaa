"""Shared fixtures: a migrated store per test, the persistence facade and record builders."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from recommendation_ledger.observability.health import HealthMonitor
from recommendation_ledger.persistence.recommendations import RecommendationPersistence
from recommendation_ledger.persistence.repositories import AnalysisRepo
from recommendation_ledger.persistence.store import RecordStore

RecordFactory = Callable[..., list[dict[str, Any]]]


def make_records(count: int, *, prefix: str = "rec", **overrides: Any) -> list[dict[str, Any]]:
    """Build ``count`` valid raw records; ``overrides`` apply to every record."""

    priorities = ("critical", "high", "medium", "low")
    efforts = ("quick", "easy", "medium", "hard", "complex")
    records: list[dict[str, Any]] = []
    for index in range(count):
        record: dict[str, Any] = {
            "external_id": f"{prefix}-{index + 1}",
            "title": f"Improve item {index + 1}",
            "priority": priorities[index % len(priorities)],
            "category": "technical",
            "effort": efforts[index % len(efforts)],
            "description": f"Details for item {index + 1}",
        }
        record.update(overrides)
        records.append(record)
    return records


def corrupt_row(store: RecordStore, row_id: int, **columns: str) -> None:
    """Write values the CHECK constraints would normally reject."""

    conn = sqlite3.connect(store.path, isolation_level=None)
    try:
        conn.execute("PRAGMA ignore_check_constraints=ON")
        for column, value in columns.items():
            conn.execute(f"UPDATE recommendations SET {column} = ? WHERE id = ?", (value, row_id))
    finally:
        conn.close()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[RecordStore]:
    record_store = RecordStore(tmp_path / "state" / "ledger.sqlite3")
    record_store.migrate()
    yield record_store
    record_store.close()


@pytest.fixture
def monitor() -> HealthMonitor:
    return HealthMonitor()


@pytest.fixture
def persistence(store: RecordStore, monitor: HealthMonitor) -> RecommendationPersistence:
    return RecommendationPersistence(store, monitor=monitor, fetch_retry_backoff_ms=0)


@pytest.fixture
def analysis_id(store: RecordStore) -> int:
    return AnalysisRepo(store).create("Homepage audit", content="<h1>Home</h1>")


@pytest.fixture
def record_factory() -> RecordFactory:
    return make_records


@pytest.fixture
def corrupt() -> Callable[..., None]:
    return corrupt_row
