"""Tests for the AuditLogger and related utilities."""

from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone

from mindlens.core.audit.logger import AuditEvent, AuditLogger, _hash_input


# ---------------------------------------------------------------------------
# _hash_input tests
# ---------------------------------------------------------------------------

class TestHashInput:
    def test_hashes_dict(self):
        h = _hash_input({"key": "value"})
        assert isinstance(h, str)
        assert len(h) == 64  # SHA-256 hex

    def test_order_independent(self):
        """Canonical JSON sorts keys, so order doesn't matter."""
        assert _hash_input({"z": 1, "a": 2}) == _hash_input({"a": 2, "z": 1})

    def test_different_inputs_differ(self):
        assert _hash_input({"a": 1}) != _hash_input({"a": 2})

    def test_non_serializable_returns_empty(self):
        assert _hash_input(object()) == ""


# ---------------------------------------------------------------------------
# AuditLogger.log_event / log_operation
# ---------------------------------------------------------------------------

class TestLogEvent:
    def test_log_event_returns_uuid(self, audit_logger: AuditLogger):
        eid = audit_logger.log_event(AuditEvent(action="data_access", operation="get_history"))
        assert len(eid) == 36

    def test_logged_operation_retrievable(self, audit_logger: AuditLogger):
        audit_logger.log_operation(
            "send_message",
            action="data_write",
            user_hash="u" * 64,
            operation_input={"conversationId": "CHAT-1"},
            llm_provider="gemini",
            llm_disclosed=True,
            duration_ms=12.5,
        )
        events = audit_logger.get_events()
        assert len(events) == 1
        event = events[0]
        assert event["operation"] == "send_message"
        assert event["action"] == "data_write"
        assert event["llm_disclosed"] == 1
        assert event["llm_provider"] == "gemini"
        assert len(event["input_hash"]) == 64
        assert event["status"] == "success"

    def test_raw_input_never_stored(self, audit_logger: AuditLogger):
        audit_logger.log_operation(
            "send_message", operation_input={"message": "I feel hopeless"}
        )
        row = audit_logger.get_events()[0]
        assert "hopeless" not in json.dumps(row)

    def test_failure_recorded(self, audit_logger: AuditLogger):
        audit_logger.log_operation(
            "send_message", status="failure", error_type="quota_exceeded"
        )
        event = audit_logger.get_events()[0]
        assert event["status"] == "failure"
        assert event["error_type"] == "quota_exceeded"

    def test_metadata_json_stored(self, audit_logger: AuditLogger):
        audit_logger.log_operation("x", metadata={"crisis": True})
        meta = json.loads(audit_logger.get_events()[0]["metadata_json"])
        assert meta == {"crisis": True}

    def test_closed_database_does_not_raise(self, record_db, audit_logger: AuditLogger):
        record_db.close()
        assert audit_logger.log_operation("send_message") == ""


class TestLogDataDelete:
    def test_log_delete_event(self, audit_logger: AuditLogger):
        eid = audit_logger.log_data_delete("delete_account", user_hash="h", count=4)
        assert len(eid) == 36

        events = audit_logger.get_events(action="data_delete")
        assert len(events) == 1
        assert json.loads(events[0]["metadata_json"])["records_deleted"] == 4


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestGetEvents:
    def test_filter_by_action_and_operation(self, audit_logger: AuditLogger):
        audit_logger.log_operation("get_history")
        audit_logger.log_data_delete("delete_conversation", count=1)
        audit_logger.log_operation("get_history")
        audit_logger.log_operation("list_conversations")

        assert len(audit_logger.get_events(action="data_access")) == 3
        assert len(audit_logger.get_events(operation="get_history")) == 2
        assert len(audit_logger.get_events(action="data_delete")) == 1

    def test_filter_by_user(self, audit_logger: AuditLogger):
        audit_logger.log_operation("a", user_hash="u1")
        audit_logger.log_operation("a", user_hash="u2")
        assert len(audit_logger.get_events(user_hash="u1")) == 1

    def test_limit_respected(self, audit_logger: AuditLogger):
        for i in range(10):
            audit_logger.log_operation(f"op_{i}")
        assert len(audit_logger.get_events(limit=3)) == 3

    def test_newest_first(self, audit_logger: AuditLogger):
        audit_logger.log_operation("first")
        time.sleep(0.01)
        audit_logger.log_operation("second")
        events = audit_logger.get_events()
        assert [e["operation"] for e in events] == ["second", "first"]

    def test_count_disclosures(self, audit_logger: AuditLogger):
        audit_logger.log_operation("t1", user_hash="u1", llm_disclosed=True)
        audit_logger.log_operation("t2", user_hash="u1", llm_disclosed=False)
        audit_logger.log_operation("t3", user_hash="u2", llm_disclosed=True)

        assert audit_logger.count_disclosures() == 2
        assert audit_logger.count_disclosures(user_hash="u1") == 1

    def test_count_disclosures_since(self, audit_logger: AuditLogger):
        audit_logger.log_operation("t1", user_hash="u1", llm_disclosed=True)
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

        assert audit_logger.count_disclosures(since=past) == 1
        assert audit_logger.count_disclosures(user_hash="u1", since=future) == 0


class TestSchema:
    def test_audit_log_indexes_exist(self, record_db):
        cursor = record_db.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND name LIKE 'idx_audit_%'"
        )
        indexes = {row[0] for row in cursor.fetchall()}
        assert {"idx_audit_timestamp", "idx_audit_action", "idx_audit_user"} <= indexes
