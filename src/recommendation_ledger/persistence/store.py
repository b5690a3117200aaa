"""
recommendation-ledger — record store

File: src/recommendation_ledger/persistence/store.py

Purpose
- Own the SQLite file that holds analyses, their recommendation rows and the status
  history of each row.

Behavior
- Every connection is short-lived and opened with WAL journaling, foreign keys on and the
  configured busy timeout.
- ``migrate`` brings the file to ``RECORD_STORE_SCHEMA_VERSION``. Applied steps are
  recorded with a SHA-256 of their statements so an edited step is detected on the next run.
- ``transaction`` opens ``BEGIN IMMEDIATE`` on a fresh connection, or a savepoint when the
  given connection is already inside a transaction. Any exception undoes the whole scope.
- SQLITE_BUSY is retried with doubling backoff up to ``busy_retry_limit`` times; other
  SQLite failures are mapped onto the ``StoreError`` family.
- ``close`` only flips a flag. Every later call raises ``StoreUnavailable`` until
  ``reopen``.
"""

from __future__ import annotations

import hashlib
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from recommendation_ledger.constants import (
    EFFORTS,
    PRIORITIES,
    RECORD_STORE_SCHEMA_VERSION,
    STATUSES,
)
from recommendation_ledger.errors import (
    StoreBusyError,
    StoreCorruptionError,
    StoreError,
    StoreMigrationError,
    StoreUnavailable,
)

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

REQUIRED_TABLES: Final[tuple[str, ...]] = (
    "analyses",
    "recommendations",
    "recommendation_status_history",
)
_INSPECTABLE_TABLES: Final[frozenset[str]] = frozenset((*REQUIRED_TABLES, "schema_versions"))


def _one_of(values: Sequence[str]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"({quoted})"


_VERSION_TABLE: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_INITIAL_SCHEMA: Final[tuple[str, ...]] = (
    _VERSION_TABLE,
    """
    CREATE TABLE IF NOT EXISTS analyses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        language TEXT NOT NULL DEFAULT 'en',
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS recommendations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        analysis_id INTEGER NOT NULL REFERENCES analyses(id) ON DELETE CASCADE,
        external_id TEXT NOT NULL,
        title TEXT NOT NULL,
        priority TEXT NOT NULL CHECK (priority IN {_one_of(PRIORITIES)}),
        category TEXT NOT NULL,
        effort TEXT NOT NULL CHECK (effort IN {_one_of(EFFORTS)}),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN {_one_of(STATUSES)}),
        payload_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS recommendation_status_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        recommendation_id INTEGER NOT NULL REFERENCES recommendations(id) ON DELETE CASCADE,
        old_status TEXT NOT NULL,
        new_status TEXT NOT NULL CHECK (new_status IN {_one_of(STATUSES)}),
        notes TEXT,
        changed_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_recommendations_analysis ON recommendations(analysis_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_recommendations_quick_wins "
    "ON recommendations(analysis_id, effort, status)",
    "CREATE INDEX IF NOT EXISTS idx_status_history_recommendation "
    "ON recommendation_status_history(recommendation_id, changed_at DESC)",
)


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """A row of ``schema_versions``."""

    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class _Step:
    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            lines = (line.rstrip() for line in statement.strip().splitlines())
            digest.update("\n".join(lines).encode("utf-8") + b"\n--\n")
        return digest.hexdigest()


_STEPS: Final[tuple[_Step, ...]] = (
    _Step(1, "initial_recommendation_schema", _INITIAL_SCHEMA),
)


def _sqlite_codes(*names: str) -> frozenset[int]:
    codes = (getattr(sqlite3, name, None) for name in names)
    return frozenset(code for code in codes if isinstance(code, int))


_BUSY: Final[tuple[frozenset[int], tuple[str, ...]]] = (
    _sqlite_codes(
        "SQLITE_BUSY",
        "SQLITE_BUSY_RECOVERY",
        "SQLITE_BUSY_SNAPSHOT",
        "SQLITE_LOCKED",
        "SQLITE_LOCKED_SHAREDCACHE",
    ),
    ("is locked",),
)
_CORRUPT: Final[tuple[frozenset[int], tuple[str, ...]]] = (
    _sqlite_codes("SQLITE_CORRUPT", "SQLITE_NOTADB"),
    ("malformed", "file is not a database"),
)


def _matches(exc: sqlite3.Error, signature: tuple[frozenset[int], tuple[str, ...]]) -> bool:
    codes, fragments = signature
    if getattr(exc, "sqlite_errorcode", None) in codes:
        return True
    text = str(exc).lower()
    return any(fragment in text for fragment in fragments)


class RecordStore:
    """Handle on one ledger database file."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")

        self._path = Path(path).expanduser()
        self._timeout_s = busy_timeout_ms / 1000.0
        self._busy_timeout_ms = busy_timeout_ms
        self._attempts = busy_retry_limit + 1
        self._backoff_s = busy_retry_backoff_ms / 1000.0
        self._savepoints = 0
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def reopen(self) -> None:
        self._closed = False

    def __enter__(self) -> RecordStore:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    # connections

    def connect(self) -> sqlite3.Connection:
        """Open a new configured connection; the caller closes it."""

        if self._closed:
            raise StoreUnavailable(f"record store {self._path} is closed")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._open(self._path)
        except (OSError, sqlite3.Error) as exc:
            raise StoreUnavailable(f"cannot open record store {self._path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
            if mode is None or str(mode[0]).lower() != "wal":
                raise StoreError(f"cannot enable WAL journaling on {self._path}")
        except sqlite3.Error as exc:
            conn.close()
            raise self._translate(exc, "configure connection") from exc
        except StoreError:
            conn.close()
            raise
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Atomic scope; nests as a savepoint when ``conn`` already has one open."""

        if conn is None:
            with self.connection() as owned, self.transaction(conn=owned, immediate=immediate):
                yield owned
            return

        if conn.in_transaction:
            self._savepoints += 1
            name = f"sp_{self._savepoints}"
            opening = f"SAVEPOINT {name}"
            undo: tuple[str, ...] = (f"ROLLBACK TO SAVEPOINT {name}", f"RELEASE SAVEPOINT {name}")
            done: tuple[str, ...] = (f"RELEASE SAVEPOINT {name}",)
        else:
            opening = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            undo = ("ROLLBACK",)
            done = ("COMMIT",)

        self._run(conn, opening, (), "open transaction")
        try:
            yield conn
        except Exception:
            for statement in undo:
                self._run(conn, statement, (), "roll back transaction")
            raise
        for statement in done:
            self._run(conn, statement, (), "commit transaction")

    # schema

    def migrate(self) -> int:
        """Apply pending schema steps and return the resulting version."""

        known = [step.version for step in _STEPS]
        if known != list(range(1, len(known) + 1)) or RECORD_STORE_SCHEMA_VERSION > len(known):
            raise StoreMigrationError(
                f"no migration chain reaches schema version {RECORD_STORE_SCHEMA_VERSION}"
            )

        with self.connection() as conn:
            self._run(conn, _VERSION_TABLE, (), "create schema_versions")
            applied = self._applied(conn)
            newest = max(applied, default=0)
            if newest > RECORD_STORE_SCHEMA_VERSION:
                raise StoreMigrationError(
                    "database schema is newer than supported by this build "
                    f"(db={newest}, code={RECORD_STORE_SCHEMA_VERSION})"
                )

            for step in _STEPS[:RECORD_STORE_SCHEMA_VERSION]:
                existing = applied.get(step.version)
                if existing is not None:
                    if existing.checksum != step.checksum:
                        raise StoreMigrationError(
                            f"schema version {step.version} was applied from different "
                            f"statements (db={existing.checksum}, code={step.checksum})"
                        )
                    continue
                with self.transaction(conn=conn) as tx:
                    for statement in step.statements:
                        self._run(tx, statement, (), f"apply schema version {step.version}")
                    self._run(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (step.version, step.name, step.checksum, utc_now_iso()),
                        f"record schema version {step.version}",
                    )

            return self.schema_version(conn=conn)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions", conn=conn
        )
        version = 0 if row is None else row["version"]
        if not isinstance(version, int):
            raise StoreMigrationError("schema_versions.version must be an integer")
        return version

    def _applied(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        rows = self._run(
            conn,
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version",
            (),
            "read schema_versions",
        ).fetchall()
        records: dict[int, MigrationRecord] = {}
        for row in rows:
            version, checksum = row["version"], row["checksum"]
            if not isinstance(version, int) or not isinstance(checksum, str):
                raise StoreMigrationError(f"malformed schema_versions row: {tuple(row)!r}")
            records[version] = MigrationRecord(
                version, str(row["name"]), checksum, str(row["applied_at"])
            )
        return records

    # statements

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Run one write and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params, "execute statement").rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params, "execute statement").rowcount

    def insert(self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection) -> int:
        """Run an INSERT on ``conn`` and return the new row id."""

        row_id = self._run(conn, sql, params, "insert row").lastrowid
        if row_id is None:
            raise StoreError(f"insert on {self._path} did not assign a row id")
        return int(row_id)

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        if conn is not None:
            return [dict(row) for row in self._run(conn, sql, params, "query").fetchall()]
        with self.connection() as owned:
            return [dict(row) for row in self._run(owned, sql, params, "query").fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        rows = self.query_all(sql, params, conn=conn)
        return rows[0] if rows else None

    # inspection

    def table_names(self) -> frozenset[str]:
        rows = self.query_all(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        )
        return frozenset(str(row["name"]) for row in rows)

    def table_columns(self, table: str) -> tuple[str, ...]:
        if table not in _INSPECTABLE_TABLES:
            raise ValueError(f"unknown table: {table}")
        return tuple(str(row["name"]) for row in self.query_all(f"PRAGMA table_info({table})"))

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Problems reported by ``PRAGMA integrity_check``; empty when the file is sound."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        with self.connection() as conn:
            rows = self._run(conn, f"PRAGMA integrity_check({max_errors})", (), "integrity check")
            messages = tuple(str(row[0]) for row in rows.fetchall())
        return () if messages == ("ok",) else messages

    # internals

    def _open(self, path: Path) -> sqlite3.Connection:
        return sqlite3.connect(
            path, timeout=self._timeout_s, isolation_level=None, check_same_thread=False
        )

    def _run(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        what: str,
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError as exc:
                raise StoreError(f"{what} violated a constraint: {exc}") from exc
            except OverflowError as exc:
                raise StoreError(f"{what} got a parameter SQLite cannot store: {exc}") from exc
            except sqlite3.Error as exc:
                attempt += 1
                if attempt < self._attempts and _matches(exc, _BUSY):
                    time.sleep(self._backoff_s * 2 ** (attempt - 1))
                    continue
                raise self._translate(exc, what, attempts=attempt) from exc

    def _translate(self, exc: sqlite3.Error, what: str, *, attempts: int = 1) -> StoreError:
        if _matches(exc, _CORRUPT):
            return StoreCorruptionError(
                f"{what} failed for {self._path}: {exc}. "
                "Run `RecordStore.integrity_check()` before trusting the file again."
            )
        if _matches(exc, _BUSY):
            return StoreBusyError(
                f"{what} hit SQLITE_BUSY for {self._path} after {attempts} attempt(s): {exc}"
            )
        return StoreError(f"{what} failed for {self._path}: {exc}")


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MigrationRecord",
    "REQUIRED_TABLES",
    "RecordStore",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "utc_now",
    "utc_now_iso",
]
