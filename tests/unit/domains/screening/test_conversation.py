"""Tests for the conversation orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeTransport, make_gateway
from mindlens.core.errors import NotFound, QuotaExceeded, TransientFailure, ValidationError
from mindlens.core.llm.system_prompt import COMPANION_SYSTEM_PROMPT
from mindlens.domains.screening.conversation import (
    MAX_MESSAGE_LENGTH,
    ConversationOrchestrator,
    build_prompt,
    history_key,
    index_key,
    validate_conversation_id,
)
from mindlens.domains.screening.crisis import detect_crisis, list_crisis_alerts
from mindlens.domains.screening.models import ChatMessage

FLASH = "models/gemini-1.5-flash"
USER = "user-1"


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _orchestrator(store, settings_store, crypto, audit_logger, transport, **kwargs):
    gateway = make_gateway(settings_store, transport)
    return ConversationOrchestrator(store, gateway, crypto, audit=audit_logger, **kwargs)


def _msg(role, content):
    return ChatMessage(role=role, content=content, timestamp="2025-01-01T00:00:00+00:00")


class TestBuildPrompt:
    def test_first_turn_carries_system_prompt(self):
        prompt = build_prompt([], "hi", 20)
        assert len(prompt) == 1
        assert prompt[0].role == "user"
        assert prompt[0].content.startswith(COMPANION_SYSTEM_PROMPT)

    def test_later_turns_replay_history(self):
        history = [_msg("user", "a"), _msg("assistant", "b")]
        prompt = build_prompt(history, "c", 20)
        assert [(p.role, p.content) for p in prompt] == [
            ("user", "a"), ("assistant", "b"), ("user", "c"),
        ]

    def test_window_is_bounded_and_starts_with_user(self):
        history = []
        for i in range(10):
            history += [_msg("user", f"u{i}"), _msg("assistant", f"a{i}")]
        prompt = build_prompt(history, "next", 5)
        assert len(prompt) <= 6
        assert prompt[0].role == "user"
        assert prompt[-1].content == "next"


class TestCrisisDetection:
    @pytest.mark.parametrize("text", [
        "I think about SUICIDE a lot",
        "sometimes I want to die",
        "I do not want to hurt myself",
    ])
    def test_matches(self, text):
        assert detect_crisis(text)

    def test_no_match(self):
        assert not detect_crisis("I had a rough day at work")


class TestValidateConversationId:
    @pytest.mark.parametrize("bad", ["", "has space", "a/b", "x" * 101, None, "conversations"])
    def test_rejects(self, bad):
        with pytest.raises(ValidationError):
            validate_conversation_id(bad)

    def test_accepts(self):
        assert validate_conversation_id("CHAT-123-abc_d") == "CHAT-123-abc_d"


class TestSendMessage:
    def test_new_conversation(self, orchestrator: ConversationOrchestrator, store):
        result = _run(orchestrator.send_message(USER, "Hello"))
        assert result.conversation_id.startswith("CHAT-")
        assert result.response == "I'm here for you."
        assert result.model_used == FLASH
        assert result.demo_mode is False
        assert store.get(index_key(USER)) == {"conversationIds": [result.conversation_id]}

        history = orchestrator.get_history(USER, result.conversation_id)
        assert [(m.role, m.content) for m in history.messages] == [
            ("user", "Hello"),
            ("assistant", "I'm here for you."),
        ]
        assert history.metadata.message_count == 2
        assert history.metadata.ai_provider == "gemini"

    def test_messages_encrypted_at_rest(self, orchestrator, store):
        result = _run(orchestrator.send_message(USER, "my private thoughts"))
        doc = store.get(history_key(USER, result.conversation_id))
        assert doc["messages_encrypted"] is True
        assert "private thoughts" not in str(doc)

    def test_continuing_conversation(self, store, settings_store, crypto, audit_logger):
        transport = FakeTransport()
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)

        async def main():
            first = await orchestrator.send_message(USER, "one")
            await orchestrator.send_message(USER, "two", first.conversation_id)
            return first.conversation_id

        conversation_id = _run(main())
        history = orchestrator.get_history(USER, conversation_id)
        assert [m.content for m in history.messages][::2] == ["one", "two"]
        assert orchestrator.conversation_ids(USER) == [conversation_id]

        # The system instruction is sent exactly once, on the first turn.
        first_prompt, second_prompt = transport.prompts
        assert COMPANION_SYSTEM_PROMPT in first_prompt[0].content
        assert all(COMPANION_SYSTEM_PROMPT not in m.content for m in second_prompt)
        assert [m.content for m in second_prompt] == ["one", "I'm here for you.", "two"]

    def test_history_window_bounds_prompt(self, store, settings_store, crypto, audit_logger):
        transport = FakeTransport()
        orchestrator = _orchestrator(
            store, settings_store, crypto, audit_logger, transport, max_history_messages=4
        )

        async def main():
            cid = (await orchestrator.send_message(USER, "m0")).conversation_id
            for i in range(1, 6):
                await orchestrator.send_message(USER, f"m{i}", cid)

        _run(main())
        assert len(transport.prompts[-1]) <= 5
        assert transport.prompts[-1][-1].content == "m5"

    @pytest.mark.parametrize("message", ["", "   ", None, "x" * (MAX_MESSAGE_LENGTH + 1)])
    def test_rejects_bad_message(self, orchestrator, message):
        with pytest.raises(ValidationError):
            _run(orchestrator.send_message(USER, message))

    def test_demo_turn_is_labelled(self, orchestrator, settings_store):
        settings_store.update(demo_mode=True)
        result = _run(orchestrator.send_message(USER, "hi"))
        assert result.demo_mode is True
        assert result.model_used == "demo"
        history = orchestrator.get_history(USER, result.conversation_id)
        assert history.metadata.demo_mode is True


class TestFailureAtomicity:
    def test_provider_failure_persists_nothing(self, store, settings_store, crypto, audit_logger):
        transport = FakeTransport(script={FLASH: [QuotaExceeded("429")]})
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)
        with pytest.raises(QuotaExceeded):
            _run(orchestrator.send_message(USER, "hello", "CHAT-fail"))
        assert store.get(history_key(USER, "CHAT-fail")) is None
        assert store.get(index_key(USER)) is None

        event = audit_logger.get_events(operation="send_message")[0]
        assert event["status"] == "failure"
        assert event["error_type"] == "quota_exceeded"

    def test_failed_turn_leaves_existing_history_intact(
        self, store, settings_store, crypto, audit_logger
    ):
        transport = FakeTransport()
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)
        cid = _run(orchestrator.send_message(USER, "first")).conversation_id

        transport.script[FLASH] = [TransientFailure("503"), TransientFailure("503")]
        with pytest.raises(TransientFailure):
            _run(orchestrator.send_message(USER, "second", cid))
        assert len(orchestrator.get_history(USER, cid).messages) == 2


class TestCrisisAlerts:
    def test_alert_written_once(self, orchestrator, store):
        result = _run(orchestrator.send_message(USER, "I want to end my life"))
        assert result.has_crisis_indicator is True
        alerts = list_crisis_alerts(store, USER)
        assert len(alerts) == 1
        assert alerts[0]["source"] == "ai-chat"
        assert alerts[0]["conversationId"] == result.conversation_id

        history = orchestrator.get_history(USER, result.conversation_id)
        assert history.metadata.has_crisis_indicator is True

    def test_no_alert_for_ordinary_message(self, orchestrator, store):
        result = _run(orchestrator.send_message(USER, "work was busy"))
        assert result.has_crisis_indicator is False
        assert list_crisis_alerts(store) == []

    def test_alert_survives_provider_failure(self, store, settings_store, crypto, audit_logger):
        transport = FakeTransport(script={FLASH: [QuotaExceeded("429")]})
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)
        with pytest.raises(QuotaExceeded):
            _run(orchestrator.send_message(USER, "thinking about suicide", "CHAT-c"))
        assert len(list_crisis_alerts(store, USER)) == 1
        assert store.get(history_key(USER, "CHAT-c")) is None


class TestConcurrency:
    def test_concurrent_sends_to_one_conversation(
        self, store, settings_store, crypto, audit_logger
    ):
        transport = FakeTransport(delay=0.02)
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)

        async def main():
            await asyncio.gather(
                orchestrator.send_message(USER, "a", "CHAT-same"),
                orchestrator.send_message(USER, "b", "CHAT-same"),
            )

        _run(main())
        history = orchestrator.get_history(USER, "CHAT-same")
        roles = [m.role for m in history.messages]
        assert roles == ["user", "assistant", "user", "assistant"]
        assert sorted(m.content for m in history.messages if m.role == "user") == ["a", "b"]
        assert orchestrator.conversation_ids(USER) == ["CHAT-same"]

    def test_concurrent_new_conversations_all_indexed(
        self, store, settings_store, crypto, audit_logger
    ):
        transport = FakeTransport(delay=0.01)
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)

        async def main():
            return await asyncio.gather(
                *(orchestrator.send_message(USER, f"m{i}", f"CHAT-{i}") for i in range(5))
            )

        _run(main())
        assert sorted(orchestrator.conversation_ids(USER)) == [f"CHAT-{i}" for i in range(5)]

    def test_cancelled_request_persists_nothing(
        self, store, settings_store, crypto, audit_logger
    ):
        transport = FakeTransport(delay=0.2)
        orchestrator = _orchestrator(store, settings_store, crypto, audit_logger, transport)

        async def main():
            task = asyncio.ensure_future(orchestrator.send_message(USER, "hello", "CHAT-cancel"))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            # Let the shielded provider call run to completion.
            await asyncio.sleep(0.3)

        _run(main())
        assert transport.calls == [FLASH]
        assert store.get(history_key(USER, "CHAT-cancel")) is None
        assert orchestrator.conversation_ids(USER) == []


class TestReadAndDelete:
    def test_get_missing(self, orchestrator):
        with pytest.raises(NotFound):
            orchestrator.get_history(USER, "CHAT-missing")

    def test_history_is_per_user(self, orchestrator):
        cid = _run(orchestrator.send_message(USER, "hi")).conversation_id
        with pytest.raises(NotFound):
            orchestrator.get_history("someone-else", cid)

    def test_list_most_recent_first(self, orchestrator):
        async def main():
            a = await orchestrator.send_message(USER, "a", "CHAT-a")
            await asyncio.sleep(0.01)
            b = await orchestrator.send_message(USER, "b", "CHAT-b")
            await asyncio.sleep(0.01)
            await orchestrator.send_message(USER, "again", a.conversation_id)
            return a, b

        _run(main())
        listed = [m.conversation_id for m in orchestrator.list_conversations(USER)]
        assert listed == ["CHAT-a", "CHAT-b"]

    def test_list_skips_orphaned_ids(self, orchestrator, store):
        _run(orchestrator.send_message(USER, "a", "CHAT-a"))
        store.set(index_key(USER), {"conversationIds": ["CHAT-a", "CHAT-gone"]})
        assert [m.conversation_id for m in orchestrator.list_conversations(USER)] == ["CHAT-a"]

    def test_delete(self, orchestrator, store, audit_logger):
        _run(orchestrator.send_message(USER, "a", "CHAT-a"))
        _run(orchestrator.send_message(USER, "b", "CHAT-b"))
        _run(orchestrator.delete_conversation(USER, "CHAT-a"))
        assert store.get(history_key(USER, "CHAT-a")) is None
        assert orchestrator.conversation_ids(USER) == ["CHAT-b"]
        assert len(audit_logger.get_events(action="data_delete")) == 1

    def test_delete_missing(self, orchestrator):
        with pytest.raises(NotFound):
            _run(orchestrator.delete_conversation(USER, "CHAT-missing"))

    def test_stored_ids_include_unindexed_history(self, orchestrator, store):
        _run(orchestrator.send_message(USER, "a", "CHAT-a"))
        _run(orchestrator.send_message(USER, "b", "CHAT-b"))
        _run(orchestrator.send_message(f"{USER}:x", "other", "CHAT-c"))
        store.set(index_key(USER), {"conversationIds": ["CHAT-a"]})

        assert orchestrator.conversation_ids(USER) == ["CHAT-a"]
        assert orchestrator.stored_conversation_ids(USER) == ["CHAT-a", "CHAT-b"]

    def test_delete_orphaned_index_entry(self, orchestrator, store):
        store.set(index_key(USER), {"conversationIds": ["CHAT-gone"]})
        _run(orchestrator.delete_conversation(USER, "CHAT-gone"))
        assert orchestrator.conversation_ids(USER) == []


class TestAudit:
    def test_live_turn_marks_disclosure(self, orchestrator, audit_logger):
        _run(orchestrator.send_message(USER, "hi"))
        event = audit_logger.get_events(operation="send_message")[0]
        assert event["llm_disclosed"] == 1
        assert event["status"] == "success"
        assert "hi" not in (event["metadata_json"] or "")

    def test_demo_turn_discloses_nothing(self, orchestrator, settings_store, audit_logger):
        settings_store.update(demo_mode=True)
        _run(orchestrator.send_message(USER, "hi"))
        assert audit_logger.count_disclosures() == 0
