"""Conversation orchestrator: one inbound message -> one persisted turn.

A turn is all-or-nothing: the user and assistant messages are appended
together after the AI call succeeds, or not at all. Crisis alerts are the
exception; they are written before the AI call and survive its failure.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from mindlens.core.errors import MindLensError, NotFound, ValidationError
from mindlens.core.llm.provider import PromptMessage
from mindlens.core.llm.system_prompt import build_first_turn
from mindlens.core.storage.record_store import KeyedLocks
from mindlens.domains.screening.crisis import detect_crisis, record_crisis_alert
from mindlens.domains.screening.models import (
    ChatMessage,
    ConversationHistory,
    ConversationMetadata,
    TurnResult,
)

if TYPE_CHECKING:
    from mindlens.core.audit.logger import AuditLogger
    from mindlens.core.crypto.encryption import CryptoService
    from mindlens.core.llm.gateway import AIProviderGateway, Completion
    from mindlens.core.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

ENCRYPTED_FIELDS = ("messages",)
MAX_MESSAGE_LENGTH = 4000

_CONVERSATION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
_INDEX_SUFFIX = "conversations"


def history_key(user_id: str, conversation_id: str) -> str:
    return f"chat:{user_id}:{conversation_id}"


def index_key(user_id: str) -> str:
    return f"chat:{user_id}:{_INDEX_SUFFIX}"


def new_conversation_id() -> str:
    return f"CHAT-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def validate_conversation_id(conversation_id: Any) -> str:
    if (
        not isinstance(conversation_id, str)
        or not _CONVERSATION_ID_RE.match(conversation_id)
        or conversation_id == _INDEX_SUFFIX
    ):
        raise ValidationError("Invalid conversation id")
    return conversation_id


def build_prompt(
    history: list[ChatMessage], message: str, max_history: int
) -> list[PromptMessage]:
    """Assemble the bounded, role-tagged model input for one turn.

    An empty history gets the system instruction prepended to the user
    message; otherwise the most recent messages are sent as-is, trimmed so
    the window starts on a user message.
    """
    if not history:
        return [PromptMessage(role="user", content=build_first_turn(message))]
    window = history[-max_history:] if max_history > 0 else []
    while window and window[0].role != "user":
        window = window[1:]
    prompt = [PromptMessage(role=m.role, content=m.content) for m in window]
    prompt.append(PromptMessage(role="user", content=message))
    return prompt


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationOrchestrator:
    """Turns user messages into answered, persisted conversation turns.

    Usage::

        orchestrator = ConversationOrchestrator(store, gateway, crypto)
        result = await orchestrator.send_message(user_id, "Hello")
        result.conversation_id
    """

    def __init__(
        self,
        store: RecordStore,
        gateway: AIProviderGateway,
        crypto: CryptoService,
        *,
        locks: KeyedLocks | None = None,
        audit: AuditLogger | None = None,
        max_history_messages: int = 20,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._crypto = crypto
        self._locks = locks or KeyedLocks()
        self._audit = audit
        self._max_history = max_history_messages
        # Gateway calls outlive a cancelled request; keep them referenced.
        self._in_flight: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_message(
        self, user_id: str, message: Any, conversation_id: str | None = None
    ) -> TurnResult:
        """Run one conversation turn.

        Raises:
            ValidationError: Empty or oversized message, malformed id.
            ProviderError: Any gateway failure; nothing is persisted.
            CryptoError: Stored history cannot be decrypted.
        """
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
        conversation_id = (
            validate_conversation_id(conversation_id) if conversation_id else new_conversation_id()
        )

        start = time.monotonic()
        async with self._locks.hold(history_key(user_id, conversation_id)):
            existing = self._load(user_id, conversation_id)
            history = existing.messages if existing else []
            prompt = build_prompt(history, message, self._max_history)

            crisis = detect_crisis(message)
            if crisis:
                record_crisis_alert(
                    self._store,
                    user_id=user_id,
                    source="ai-chat",
                    conversation_id=conversation_id,
                    action_taken="Crisis resources provided in chat response",
                )

            try:
                completion = await self._complete(prompt)
            except MindLensError as exc:
                self._audit_turn(user_id, status="failure", error_type=exc.code, crisis=crisis)
                raise
            except asyncio.CancelledError:
                logger.info(
                    "Request cancelled during AI call for conversation %s; result will be discarded",
                    conversation_id,
                )
                raise

            now = _now()
            metadata = existing.metadata if existing else ConversationMetadata(
                conversation_id=conversation_id,
                user_id=user_id,
                started_at=now,
                last_message_at=now,
            )
            messages = history + [
                ChatMessage(role="user", content=message, timestamp=now),
                ChatMessage(role="assistant", content=completion.text, timestamp=now),
            ]
            metadata.last_message_at = now
            metadata.message_count = len(messages)
            metadata.has_crisis_indicator = metadata.has_crisis_indicator or crisis
            metadata.demo_mode = completion.demo_mode
            metadata.ai_provider = completion.provider

            self._save(ConversationHistory(conversation_id, user_id, messages, metadata))
            self._register(user_id, conversation_id)

        self._audit_turn(
            user_id,
            completion=completion,
            crisis=crisis,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        return TurnResult(
            conversation_id=conversation_id,
            response=completion.text,
            has_crisis_indicator=crisis,
            timestamp=now,
            demo_mode=completion.demo_mode,
            model_used=completion.model,
            ai_provider=completion.provider,
        )

    async def _complete(self, prompt: list[PromptMessage]) -> Completion:
        task = asyncio.ensure_future(self._gateway.complete(prompt))
        self._in_flight.add(task)
        task.add_done_callback(self._finish_in_flight)
        return await asyncio.shield(task)

    def _finish_in_flight(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if not task.cancelled():
            # Mark the outcome retrieved; an awaiting caller already saw it.
            task.exception()

    # ------------------------------------------------------------------
    # Read / delete
    # ------------------------------------------------------------------

    def get_history(self, user_id: str, conversation_id: str) -> ConversationHistory:
        conversation_id = validate_conversation_id(conversation_id)
        history = self._load(user_id, conversation_id)
        if history is None:
            raise NotFound("Conversation not found")
        return history

    def list_conversations(self, user_id: str) -> list[ConversationMetadata]:
        """Conversation summaries, most recent first. Orphaned ids are skipped."""
        results: list[ConversationMetadata] = []
        for conversation_id in self._index(user_id):
            doc = self._store.get(history_key(user_id, conversation_id))
            if doc is None:
                continue
            results.append(ConversationMetadata.from_dict(doc["metadata"]))
        results.sort(key=lambda m: m.last_message_at, reverse=True)
        return results

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        conversation_id = validate_conversation_id(conversation_id)
        async with self._locks.hold(history_key(user_id, conversation_id)):
            ids = self._index(user_id)
            existed = self._store.delete(history_key(user_id, conversation_id))
            if conversation_id not in ids and not existed:
                raise NotFound("Conversation not found")
            # History first, then index: a crash in between leaves a dangling
            # index entry, which list_conversations skips.
            if conversation_id in ids:
                ids.remove(conversation_id)
                self._store.set(index_key(user_id), {"conversationIds": ids})
        if self._audit is not None:
            self._audit.log_data_delete(
                "delete_conversation", user_hash=self._crypto.hash_identifier(user_id), count=1
            )

    def conversation_ids(self, user_id: str) -> list[str]:
        return self._index(user_id)

    def stored_conversation_ids(self, user_id: str) -> list[str]:
        """Indexed ids plus any history saved before its index entry was written."""
        ids = self._index(user_id)
        prefix = history_key(user_id, "")
        for key in self._store.keys(prefix):
            conversation_id = key[len(prefix):]
            if conversation_id == _INDEX_SUFFIX or conversation_id in ids:
                continue
            doc = self._store.get(key)
            # Another user's id may extend this prefix ("u1" vs "u1:x").
            if doc is not None and doc.get("userId") == user_id:
                ids.append(conversation_id)
        return ids

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _load(self, user_id: str, conversation_id: str) -> ConversationHistory | None:
        doc = self._store.get(history_key(user_id, conversation_id))
        if doc is None:
            return None
        doc = self._crypto.decrypt_fields(doc, ENCRYPTED_FIELDS)
        return ConversationHistory(
            conversation_id=doc["conversationId"],
            user_id=doc["userId"],
            messages=[ChatMessage.from_dict(m) for m in doc.get("messages") or []],
            metadata=ConversationMetadata.from_dict(doc["metadata"]),
        )

    def _save(self, history: ConversationHistory) -> None:
        doc = self._crypto.encrypt_fields(history.to_dict(), ENCRYPTED_FIELDS)
        self._store.set(history_key(history.user_id, history.conversation_id), doc)

    def _index(self, user_id: str) -> list[str]:
        doc = self._store.get(index_key(user_id)) or {}
        return list(doc.get("conversationIds") or [])

    def _register(self, user_id: str, conversation_id: str) -> None:
        # No await between read and write, so index updates cannot interleave.
        ids = self._index(user_id)
        if conversation_id not in ids:
            ids.append(conversation_id)
            self._store.set(index_key(user_id), {"conversationIds": ids})

    def _audit_turn(
        self,
        user_id: str,
        *,
        completion: Completion | None = None,
        crisis: bool = False,
        status: str = "success",
        error_type: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        if self._audit is None:
            return
        demo = completion.demo_mode if completion else False
        self._audit.log_operation(
            "send_message",
            action="data_write",
            user_hash=self._crypto.hash_identifier(user_id),
            llm_provider=completion.provider if completion else self._gateway.provider,
            llm_disclosed=completion is not None and not demo,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata={"crisis_indicator": crisis, "demo_mode": demo},
        )
