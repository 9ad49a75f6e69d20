"""PHQ-9 response validation and severity banding.

``severity_band`` is the only place a score is mapped to a severity level;
every component that needs a band calls it.
"""

from __future__ import annotations

from typing import Any, Literal

from mindlens.core.errors import ValidationError

ITEM_COUNT = 9
MIN_ITEM = 0
MAX_ITEM = 3
MAX_SCORE = ITEM_COUNT * MAX_ITEM

SeverityBand = Literal["minimal", "mild", "moderate", "moderately-severe", "severe"]

SEVERITY_BANDS: tuple[SeverityBand, ...] = (
    "minimal",
    "mild",
    "moderate",
    "moderately-severe",
    "severe",
)


def severity_band(score: int) -> SeverityBand:
    """Map a PHQ-9 total score (0-27) to its severity band."""
    if score >= 20:
        return "severe"
    if score >= 15:
        return "moderately-severe"
    if score >= 10:
        return "moderate"
    if score >= 5:
        return "mild"
    return "minimal"


def validate_responses(responses: Any) -> list[int]:
    """Return the responses as a list of 9 ints in [0, 3].

    Raises:
        ValidationError: If the shape or any value is out of range.
    """
    if not isinstance(responses, (list, tuple)) or len(responses) != ITEM_COUNT:
        raise ValidationError(f"PHQ-9 requires exactly {ITEM_COUNT} responses")
    clean: list[int] = []
    for idx, value in enumerate(responses, start=1):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"PHQ-9 item {idx} must be an integer")
        if not MIN_ITEM <= value <= MAX_ITEM:
            raise ValidationError(f"PHQ-9 item {idx} must be between {MIN_ITEM} and {MAX_ITEM}")
        clean.append(value)
    return clean


def total_score(responses: list[int]) -> int:
    return sum(responses)


def requires_immediate_action(responses: list[int]) -> bool:
    """Item 9 (self-harm thoughts) at 2+ or a severe total needs follow-up."""
    return responses[8] >= 2 or total_score(responses) >= 20
