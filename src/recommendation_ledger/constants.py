"""Stable constants shared across the ledger components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
RECORD_STORE_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
DEFAULT_DB_PATH: Final[PurePosixPath] = STATE_DIR / "ledger.sqlite3"
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Enumerated record fields.
PRIORITIES: Final[tuple[str, ...]] = ("critical", "high", "medium", "low")
EFFORTS: Final[tuple[str, ...]] = ("quick", "easy", "medium", "hard", "complex")
STATUSES: Final[tuple[str, ...]] = ("pending", "in-progress", "completed", "dismissed")
OPERATION_TYPES: Final[tuple[str, ...]] = ("save", "fetch", "update", "delete")

PRIORITY_WEIGHT: Final[dict[str, int]] = {
    "critical": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}

# Input limits applied by the sanitizer.
MAX_BATCH_SIZE: Final[int] = 100
MAX_TITLE_LENGTH: Final[int] = 200
MAX_CATEGORY_LENGTH: Final[int] = 100
MAX_EXTERNAL_ID_LENGTH: Final[int] = 100

# Largest value SQLite stores in an INTEGER column.
MAX_ROW_ID: Final[int] = 2**63 - 1

# Integrity score weights.
INTEGRITY_COUNT_PENALTY: Final[int] = 10
INTEGRITY_CORRUPTION_PENALTY: Final[int] = 15

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_DB_PATH",
    "DEFAULT_LOG_DIR",
    "EFFORTS",
    "INTEGRITY_CORRUPTION_PENALTY",
    "INTEGRITY_COUNT_PENALTY",
    "MAX_BATCH_SIZE",
    "MAX_CATEGORY_LENGTH",
    "MAX_EXTERNAL_ID_LENGTH",
    "MAX_ROW_ID",
    "MAX_TITLE_LENGTH",
    "OPERATION_TYPES",
    "PRIORITIES",
    "PRIORITY_WEIGHT",
    "RECORD_STORE_SCHEMA_VERSION",
    "STATE_DIR",
    "STATUSES",
]
