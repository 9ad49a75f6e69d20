"""Append-only analytical sink for pseudonymized reporting rows.

The sink is an optional side channel: operational correctness never depends
on a write here succeeding. Writers report the outcome as a ``SinkResult``
so callers can tell "nothing to do" from "tried and failed".
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol, Sequence, runtime_checkable

from mindlens.core.analytics.schemas import ALL_TABLES, TableSchema
from mindlens.core.errors import StoreUnavailable, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SinkResult:
    """Outcome of an optional analytical write."""

    status: Literal["written", "skipped", "failed"]
    table: str = ""
    rows: int = 0
    reason: str = ""

    @classmethod
    def written(cls, table: str, rows: int = 1) -> SinkResult:
        return cls(status="written", table=table, rows=rows)

    @classmethod
    def skipped(cls, table: str, reason: str) -> SinkResult:
        return cls(status="skipped", table=table, reason=reason)

    @classmethod
    def failed(cls, table: str, reason: str) -> SinkResult:
        return cls(status="failed", table=table, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "table": self.table, "rows": self.rows, "reason": self.reason}


@runtime_checkable
class AnalyticalSink(Protocol):
    """Append-only warehouse abstraction."""

    def insert_rows(self, table: str, rows: Sequence[dict[str, Any]]) -> int: ...

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]: ...


_READ_ONLY_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)


def ensure_read_only(sql: str) -> str:
    """Accept a single SELECT (or WITH ... SELECT) statement.

    Raises:
        ValidationError: For anything else, including stacked statements.
    """
    statement = sql.strip().rstrip(";").strip()
    if not statement:
        raise ValidationError("SQL query is required")
    if ";" in statement:
        raise ValidationError("Only a single statement is allowed")
    if not _READ_ONLY_RE.match(statement):
        raise ValidationError("Only SELECT queries are allowed")
    return statement


class SQLiteAnalyticalSink:
    """AnalyticalSink stored in its own SQLite database.

    Usage::

        sink = SQLiteAnalyticalSink(":memory:")
        sink.initialize()
        sink.insert_rows("assessment_records", [row])
        sink.query("SELECT severity_level, COUNT(*) AS n FROM assessment_records GROUP BY 1")
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        tables: dict[str, TableSchema] | None = None,
    ) -> None:
        self._db_path = db_path
        self._tables = tables or ALL_TABLES
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailable("Analytical sink not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Open the database and create any missing tables. Idempotent."""
        if self._conn is not None:
            return
        try:
            if self._db_path != ":memory:":
                db_file = Path(self._db_path).expanduser()
                db_file.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(db_file), check_same_thread=False)
            else:
                self._conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            for schema in self._tables.values():
                self._conn.executescript(schema.ddl())
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn = None
            raise StoreUnavailable(f"Cannot open analytical sink: {exc}") from exc
        logger.info("Analytical sink initialized: %s (%d tables)", self._db_path, len(self._tables))

    def insert_rows(self, table: str, rows: Sequence[dict[str, Any]]) -> int:
        """Append rows to a table after schema validation.

        Returns:
            Number of rows inserted.
        """
        schema = self._tables.get(table)
        if schema is None:
            raise ValidationError(f"Unknown analytical table: {table!r}")
        clean = [schema.validate_row(row) for row in rows]
        if not clean:
            return 0

        columns = schema.column_names
        placeholders = ", ".join("?" for _ in columns)
        # Table and column names come from the fixed schema registry.
        sql = f"INSERT INTO {schema.name} ({', '.join(columns)}) VALUES ({placeholders})"
        conn = self.connection
        try:
            conn.executemany(sql, [tuple(r[c] for c in columns) for r in clean])
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Analytical insert failed: {exc}") from exc
        return len(clean)

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read-only query and return rows as dicts."""
        statement = ensure_read_only(sql)
        conn = self.connection
        try:
            conn.execute("PRAGMA query_only = ON")
            try:
                rows = conn.execute(statement, tuple(params)).fetchall()
            finally:
                conn.execute("PRAGMA query_only = OFF")
        except sqlite3.Error as exc:
            raise ValidationError(f"Query failed: {exc}") from exc
        return [dict(row) for row in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
