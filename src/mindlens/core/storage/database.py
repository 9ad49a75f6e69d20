"""SQLite backing for the operational record store and the audit trail.

Schema changes are numbered migrations applied in order on open; the
highest applied number is kept in ``schema_version``.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from mindlens.core.errors import StoreUnavailable

logger = logging.getLogger(__name__)

_RECORDS_DDL = """
CREATE TABLE IF NOT EXISTS kv_records (
    key         TEXT PRIMARY KEY,
    value_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_AUDIT_DDL = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    operation       TEXT,
    user_hash       TEXT,
    input_hash      TEXT,
    llm_provider    TEXT,
    llm_disclosed   INTEGER DEFAULT 0,
    record_key      TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_user      ON audit_log(user_hash);
"""

# (version, label, ddl) applied in ascending order
_MIGRATIONS: tuple[tuple[int, str, str], ...] = (
    (1, "kv_records", _RECORDS_DDL),
    (2, "audit_log", _AUDIT_DDL),
)

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class RecordDatabase:
    """Owns the SQLite connection shared by the record store and audit logger.

    Pass ``":memory:"`` for a throwaway database (tests, demo runs).
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable("Record database is not open")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and bring the schema up to date. No-op when already open."""
        if self._conn is not None:
            return

        target = self._db_path
        try:
            if target != ":memory:":
                path = Path(target).expanduser()
                path.parent.mkdir(parents=True, exist_ok=True)
                target = str(path)
            conn = sqlite3.connect(target, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            self._conn = conn
            self._migrate()
        except sqlite3.Error as exc:
            if self._conn is not None:
                self._conn.close()
            self._conn = None
            raise StoreUnavailable(f"Cannot open record database: {exc}") from exc
        logger.info("Record database open: %s", self._db_path)

    def _migrate(self) -> None:
        conn = self.connection
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "version INTEGER NOT NULL, applied_at TEXT NOT NULL DEFAULT (datetime('now')))"
        )
        applied = self.get_schema_version()
        for version, label, ddl in _MIGRATIONS:
            if version <= applied:
                continue
            conn.executescript(ddl)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.info("Applied record schema migration %d (%s)", version, label)

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info("Record database closed")

    def __enter__(self) -> RecordDatabase:
        self.initialize()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
