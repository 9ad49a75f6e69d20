"""Parsing of generate-content responses.

Response shapes vary by model (for example "thinking" models split the
candidate into thought and answer parts). ``parse_generate_content`` tries the
known shapes in order and returns either ``TextProduced`` or a
``NoTextProduced`` carrying the diagnostic fields, never a guessed empty
string.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from mindlens.core.errors import ContentBlocked, ProviderError, TransientFailure

logger = logging.getLogger(__name__)

# finishReason values that mean the model refused on policy grounds.
BLOCKING_FINISH_REASONS = frozenset(
    {"SAFETY", "RECITATION", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
)


@dataclass(frozen=True)
class TextProduced:
    text: str
    finish_reason: str | None = None


@dataclass(frozen=True)
class NoTextProduced:
    finish_reason: str | None = None
    block_reason: str | None = None
    safety_ratings: list[dict[str, Any]] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return bool(self.block_reason) or self.finish_reason in BLOCKING_FINISH_REASONS


ParsedResponse = Union[TextProduced, NoTextProduced]


def _from_parts(content: dict[str, Any]) -> str | None:
    parts = content.get("parts")
    if not isinstance(parts, list):
        return None
    texts = [
        p["text"]
        for p in parts
        if isinstance(p, dict) and isinstance(p.get("text"), str) and not p.get("thought")
    ]
    joined = "".join(texts).strip()
    return joined or None


def _from_field(content: dict[str, Any], key: str) -> str | None:
    value = content.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


_SHAPES = (
    _from_parts,
    lambda c: _from_field(c, "text"),
    lambda c: _from_field(c, "message"),
)


def parse_generate_content(data: dict[str, Any]) -> ParsedResponse:
    """Extract the answer text from a generateContent response body."""
    prompt_feedback = data.get("promptFeedback") or {}
    block_reason = prompt_feedback.get("blockReason")

    candidates = data.get("candidates") or []
    if not candidates:
        return NoTextProduced(block_reason=block_reason)

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    finish_reason = candidate.get("finishReason")
    content = candidate.get("content")
    if isinstance(content, dict):
        for shape in _SHAPES:
            text = shape(content)
            if text:
                return TextProduced(text=text, finish_reason=finish_reason)

    return NoTextProduced(
        finish_reason=finish_reason,
        block_reason=block_reason,
        safety_ratings=list(candidate.get("safetyRatings") or []),
    )


def no_text_error(result: NoTextProduced) -> ProviderError:
    """Categorize a response without text.

    Policy refusals become ``ContentBlocked`` (never retried); anything else
    is treated as a transient failure of the provider.
    """
    if result.blocked:
        reason = result.block_reason or result.finish_reason or "UNSPECIFIED"
        logger.info("Provider blocked content: reason=%s", reason)
        return ContentBlocked(reason)
    logger.warning("Provider returned no text: finish_reason=%s", result.finish_reason)
    return TransientFailure(f"no text produced (finishReason={result.finish_reason})")
