"""Audit logger: PHI-free access logging and LLM disclosure tracking.

Records data access, deletion, export and external-AI disclosure events:

* ``user_hash``   - pseudonymous user id (never the raw id or email).
* ``input_hash``  - SHA-256 of canonical JSON of the operation input.
* ``llm_disclosed`` - whether user text left the trust boundary.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from mindlens.core.errors import StoreUnavailable
from mindlens.core.storage.database import RecordDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'data_access' | 'data_write' | 'data_delete' | 'data_export'
    operation: str = ""
    user_hash: str | None = None
    input_hash: str = ""
    llm_provider: str | None = None
    llm_disclosed: bool = False
    record_key: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` table.

    All writes are committed immediately. A failed audit write is logged
    and reported as an empty event id; it never fails the operation.

    Usage::

        audit = AuditLogger(db)
        audit.log_operation(
            "send_message",
            user_hash=crypto.hash_identifier(user_id),
            llm_disclosed=True,
            llm_provider="gemini",
        )
    """

    def __init__(self, database: RecordDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":")) if event.metadata else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, operation, user_hash, input_hash,
                    llm_provider, llm_disclosed, record_key,
                    duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.operation or None,
                    event.user_hash,
                    event.input_hash or None,
                    event.llm_provider,
                    1 if event.llm_disclosed else 0,
                    event.record_key,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except (sqlite3.Error, StoreUnavailable):
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_operation(
        self,
        operation: str,
        *,
        action: str = "data_access",
        user_hash: str | None = None,
        operation_input: Any = None,
        llm_provider: str | None = None,
        llm_disclosed: bool = False,
        record_key: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper for logging one pipeline operation.

        Args:
            operation: Operation name, e.g. ``send_message``.
            action: Event category.
            user_hash: Pseudonymous id of the acting user.
            operation_input: Input data (hashed, never stored raw).
            llm_provider: AI provider used, if any.
            llm_disclosed: Whether user text was sent to an external AI provider.
            record_key: Store key touched, if it carries no direct identifier.
            duration_ms: Execution time.
            status: 'success' or 'failure'.
            error_type: Error code on failure.
            metadata: Additional non-PHI metadata.
        """
        return self.log_event(AuditEvent(
            action=action,
            operation=operation,
            user_hash=user_hash,
            input_hash=_hash_input(operation_input) if operation_input else "",
            llm_provider=llm_provider,
            llm_disclosed=llm_disclosed,
            record_key=record_key,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_data_delete(
        self,
        operation: str,
        *,
        user_hash: str | None = None,
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return self.log_event(AuditEvent(
            action="data_delete",
            operation=operation,
            user_hash=user_hash,
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    def get_events(
        self,
        *,
        action: str | None = None,
        operation: str | None = None,
        user_hash: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Audit rows matching every given filter, newest first."""
        filters = (
            ("action = ?", action),
            ("operation = ?", operation),
            ("user_hash = ?", user_hash),
            ("timestamp >= ?", since),
        )
        active = [(clause, value) for clause, value in filters if value]
        sql = "SELECT * FROM audit_log"
        if active:
            sql += " WHERE " + " AND ".join(clause for clause, _ in active)
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params = [value for _, value in active] + [limit]
        return [dict(row) for row in self._db.connection.execute(sql, params).fetchall()]

    def count_disclosures(
        self, *, user_hash: str | None = None, since: str | None = None
    ) -> int:
        """Number of events where user text went to an external AI provider."""
        sql = "SELECT COUNT(*) FROM audit_log WHERE llm_disclosed = 1"
        params: list[str] = []
        if user_hash:
            sql += " AND user_hash = ?"
            params.append(user_hash)
        if since:
            sql += " AND timestamp >= ?"
            params.append(since)
        return self._db.connection.execute(sql, params).fetchone()[0]
