"""Data models for screening records, conversations and alerts.

Stored documents use camelCase keys; the dataclasses convert at the edge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]


@dataclass
class EmotionAnalysis:
    """Derived emotion signal attached to an assessment."""

    primary_emotion: str
    confidence: float
    secondary_emotion: str | None = None
    facial_landmarks_detected: bool = False
    scores: dict[str, float] = field(default_factory=dict)  # sadness, anxiety, ...
    model_version: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "primaryEmotion": self.primary_emotion,
            "secondaryEmotion": self.secondary_emotion,
            "confidence": self.confidence,
            "facialLandmarksDetected": self.facial_landmarks_detected,
            "scores": dict(self.scores),
            "modelVersion": self.model_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EmotionAnalysis:
        return cls(
            primary_emotion=data["primaryEmotion"],
            confidence=float(data.get("confidence", 0.0)),
            secondary_emotion=data.get("secondaryEmotion"),
            facial_landmarks_detected=bool(data.get("facialLandmarksDetected", False)),
            scores=dict(data.get("scores") or {}),
            model_version=data.get("modelVersion", "unknown"),
        )


@dataclass
class AssessmentRecord:
    """A submitted PHQ-9 assessment.

    Immutable after submission except for ``ai_insights``.
    """

    session_id: str
    user_id: str
    timestamp: str  # ISO 8601
    responses: list[int]
    score: int
    requires_immediate_action: bool
    consent_to_research: bool
    encrypted: bool = False
    encrypted_payload: str | None = None
    emotion_analysis: EmotionAnalysis | None = None
    ai_insights: dict[str, Any] | None = None


@dataclass
class ChatMessage:
    role: Role
    content: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(role=data["role"], content=data["content"], timestamp=data["timestamp"])


@dataclass
class ConversationMetadata:
    conversation_id: str
    user_id: str
    started_at: str
    last_message_at: str
    message_count: int = 0
    has_crisis_indicator: bool = False
    demo_mode: bool = False
    ai_provider: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "userId": self.user_id,
            "startedAt": self.started_at,
            "lastMessageAt": self.last_message_at,
            "messageCount": self.message_count,
            "hasCrisisIndicator": self.has_crisis_indicator,
            "demoMode": self.demo_mode,
            "aiProvider": self.ai_provider,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMetadata:
        return cls(
            conversation_id=data["conversationId"],
            user_id=data["userId"],
            started_at=data["startedAt"],
            last_message_at=data["lastMessageAt"],
            message_count=int(data.get("messageCount", 0)),
            has_crisis_indicator=bool(data.get("hasCrisisIndicator", False)),
            demo_mode=bool(data.get("demoMode", False)),
            ai_provider=data.get("aiProvider"),
        )


@dataclass
class ConversationHistory:
    """Per-user, per-conversation message history."""

    conversation_id: str
    user_id: str
    messages: list[ChatMessage]
    metadata: ConversationMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "userId": self.user_id,
            "messages": [m.to_dict() for m in self.messages],
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class CrisisAlert:
    """Append-only record written when crisis signals are detected."""

    alert_id: str
    user_id: str
    source: Literal["ai-chat", "assessment"]
    timestamp: str
    severity: str = "critical"
    conversation_id: str | None = None
    session_id: str | None = None
    action_taken: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "userId": self.user_id,
            "source": self.source,
            "severity": self.severity,
            "timestamp": self.timestamp,
            "conversationId": self.conversation_id,
            "sessionId": self.session_id,
            "actionTaken": self.action_taken,
        }


@dataclass
class SessionOutcome:
    """Outcome of a counselling session, mirrored for reporting."""

    session_id: str
    user_id: str
    counselor_id: str
    session_date: str
    pre_session_phq9: int | None = None
    post_session_phq9: int | None = None
    session_duration_minutes: int | None = None
    satisfaction_rating: int | None = None
    follow_up_scheduled: bool | None = None


@dataclass
class TurnResult:
    """The caller-visible outcome of one conversation turn."""

    conversation_id: str
    response: str
    has_crisis_indicator: bool
    timestamp: str
    demo_mode: bool = False
    model_used: str | None = None
    ai_provider: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "response": self.response,
            "hasCrisisIndicator": self.has_crisis_indicator,
            "timestamp": self.timestamp,
            "demoMode": self.demo_mode,
            "modelUsed": self.model_used,
            "aiProvider": self.ai_provider,
        }
