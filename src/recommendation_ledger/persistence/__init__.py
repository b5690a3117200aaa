"""
recommendation-ledger persistence package.

File: src/recommendation_ledger/persistence/__init__.py

Purpose
- Export the record store and row repositories.
- ``RecommendationPersistence`` lives in ``persistence.recommendations`` and is imported
  from there; it depends on the verification and observability packages.
"""

from recommendation_ledger.persistence.repositories import AnalysisRepo, RecommendationRepo
from recommendation_ledger.persistence.store import (
    REQUIRED_TABLES,
    MigrationRecord,
    RecordStore,
    utc_now,
    utc_now_iso,
)

__all__ = [
    "AnalysisRepo",
    "MigrationRecord",
    "REQUIRED_TABLES",
    "RecommendationRepo",
    "RecordStore",
    "utc_now",
    "utc_now_iso",
]
