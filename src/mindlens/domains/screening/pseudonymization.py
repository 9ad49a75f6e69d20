"""Pseudonymization bridge: operational records -> analytical rows.

Direct identifiers are replaced with salted hashes and free-text fields are
dropped. Nothing is written for a record whose owner did not consent to
research. Writes are at-least-once and never affect operational state: an
unavailable sink yields a ``failed`` result and a warning, not an exception.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from statistics import mean
from typing import TYPE_CHECKING, Any

from mindlens.core.analytics.schemas import (
    ASSESSMENT_RECORDS,
    EMOTION_ANALYSIS,
    SESSION_OUTCOMES,
    USER_BEHAVIOR_PATTERNS,
)
from mindlens.core.analytics.sink import SinkResult
from mindlens.core.errors import StoreUnavailable, ValidationError
from mindlens.domains.screening.phq9 import severity_band

if TYPE_CHECKING:
    from mindlens.core.analytics.sink import AnalyticalSink
    from mindlens.core.crypto.encryption import CryptoService
    from mindlens.domains.screening.models import (
        AssessmentRecord,
        EmotionAnalysis,
        SessionOutcome,
    )

logger = logging.getLogger(__name__)

_EMOTION_SCORE_COLUMNS = ("sadness", "anxiety", "neutral", "happiness", "anger", "fear")

# Score trend: compare the mean of the last three scores with the three before.
_TREND_WINDOW = 3
_TREND_THRESHOLD = 2


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def score_trend(scores: list[int]) -> str:
    """Return 'improving', 'declining' or 'stable' (lower PHQ-9 is better)."""
    if len(scores) < 2:
        return "stable"
    recent = scores[-_TREND_WINDOW:]
    older = scores[-2 * _TREND_WINDOW:-_TREND_WINDOW]
    recent_avg = mean(recent)
    older_avg = mean(older) if older else recent_avg
    if recent_avg < older_avg - _TREND_THRESHOLD:
        return "improving"
    if recent_avg > older_avg + _TREND_THRESHOLD:
        return "declining"
    return "stable"


def engagement_level(assessment_count: int) -> str:
    if assessment_count >= 5:
        return "high"
    if assessment_count >= 2:
        return "medium"
    return "low"


def average_days_between(timestamps: list[str]) -> int | None:
    """Mean whole days between consecutive assessments, if there are two or more."""
    if len(timestamps) < 2:
        return None
    ordered = sorted(_parse_ts(t) for t in timestamps)
    gaps = [(b - a).total_seconds() / 86400 for a, b in zip(ordered, ordered[1:])]
    return int(round(mean(gaps)))


class PseudonymizationBridge:
    """Mirrors consenting records into the analytical sink.

    Usage::

        bridge = PseudonymizationBridge(crypto, sink)
        result = bridge.mirror_assessment(record)
        result.status  # "written" | "skipped" | "failed"
    """

    def __init__(self, crypto: CryptoService, sink: AnalyticalSink | None) -> None:
        self._crypto = crypto
        self._sink = sink

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    # ------------------------------------------------------------------
    # Pure row builders
    # ------------------------------------------------------------------

    def assessment_row(self, record: AssessmentRecord) -> dict[str, Any] | None:
        """Build the pseudonymized assessment row, or None without consent."""
        if not record.consent_to_research:
            return None
        row: dict[str, Any] = {
            "assessment_id": record.session_id,
            "user_hash": self._crypto.hash_identifier(record.user_id),
            "timestamp": record.timestamp,
            "phq9_total_score": record.score,
            "severity_level": severity_band(record.score),
            "requires_immediate_action": record.requires_immediate_action,
            "consent_research": True,
        }
        for idx, value in enumerate(record.responses, start=1):
            row[f"phq9_q{idx}"] = value
        return row

    def emotion_row(
        self, record: AssessmentRecord, analysis: EmotionAnalysis
    ) -> dict[str, Any] | None:
        if not record.consent_to_research:
            return None
        row: dict[str, Any] = {
            "analysis_id": f"EMOTION-{record.session_id}",
            "assessment_id": record.session_id,
            "user_hash": self._crypto.hash_identifier(record.user_id),
            "timestamp": record.timestamp,
            "primary_emotion": analysis.primary_emotion,
            "secondary_emotion": analysis.secondary_emotion,
            "confidence_score": float(analysis.confidence),
            "facial_landmarks_detected": analysis.facial_landmarks_detected,
            "model_version": analysis.model_version,
        }
        for name in _EMOTION_SCORE_COLUMNS:
            value = analysis.scores.get(name)
            row[f"{name}_score"] = float(value) if value is not None else None
        return row

    def behavior_row(
        self,
        user_id: str,
        assessments: list[AssessmentRecord],
        *,
        session_count: int | None = None,
        last_session_days_ago: int | None = None,
    ) -> dict[str, Any]:
        ordered = sorted(assessments, key=lambda a: a.timestamp)
        scores = [a.score for a in ordered]
        return {
            "behavior_id": f"BEH-{uuid.uuid4().hex[:12]}",
            "user_hash": self._crypto.hash_identifier(user_id),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "assessment_count": len(ordered),
            "days_between_assessments": average_days_between([a.timestamp for a in ordered]),
            "score_trend": score_trend(scores),
            "engagement_level": engagement_level(len(ordered)),
            "session_count": session_count,
            "last_session_days_ago": last_session_days_ago,
            "crisis_alerts_count": sum(1 for a in ordered if a.requires_immediate_action),
        }

    def session_outcome_row(self, outcome: SessionOutcome) -> dict[str, Any]:
        improvement = None
        if outcome.pre_session_phq9 is not None and outcome.post_session_phq9 is not None:
            improvement = outcome.pre_session_phq9 - outcome.post_session_phq9
        return {
            "session_id": outcome.session_id,
            "user_hash": self._crypto.hash_identifier(outcome.user_id),
            "counselor_hash": self._crypto.hash_identifier(outcome.counselor_id),
            "session_date": outcome.session_date,
            "pre_session_phq9": outcome.pre_session_phq9,
            "post_session_phq9": outcome.post_session_phq9,
            "score_improvement": improvement,
            "session_duration_minutes": outcome.session_duration_minutes,
            "user_satisfaction_rating": outcome.satisfaction_rating,
            "follow_up_scheduled": outcome.follow_up_scheduled,
        }

    # ------------------------------------------------------------------
    # Mirrors
    # ------------------------------------------------------------------

    def mirror_assessment(self, record: AssessmentRecord) -> SinkResult:
        return self._write(ASSESSMENT_RECORDS.name, self.assessment_row(record))

    def mirror_emotion_analysis(
        self, record: AssessmentRecord, analysis: EmotionAnalysis
    ) -> SinkResult:
        return self._write(EMOTION_ANALYSIS.name, self.emotion_row(record, analysis))

    def mirror_behavior(
        self,
        user_id: str,
        consent_to_research: bool,
        assessments: list[AssessmentRecord],
        **extra: int | None,
    ) -> SinkResult:
        """Write one behavior summary built from consenting assessments only."""
        if not consent_to_research:
            return self._write(USER_BEHAVIOR_PATTERNS.name, None)
        consenting = [a for a in assessments if a.consent_to_research]
        if not consenting:
            return SinkResult.skipped(USER_BEHAVIOR_PATTERNS.name, "no consenting assessments")
        return self._write(
            USER_BEHAVIOR_PATTERNS.name, self.behavior_row(user_id, consenting, **extra)
        )

    def mirror_session_outcome(
        self, outcome: SessionOutcome, consent_to_research: bool
    ) -> SinkResult:
        row = self.session_outcome_row(outcome) if consent_to_research else None
        return self._write(SESSION_OUTCOMES.name, row)

    def _write(self, table: str, row: dict[str, Any] | None) -> SinkResult:
        if row is None:
            return SinkResult.skipped(table, "no research consent")
        if self._sink is None:
            return SinkResult.skipped(table, "analytical sink disabled")
        try:
            count = self._sink.insert_rows(table, [row])
        except (StoreUnavailable, ValidationError) as exc:
            logger.warning("Analytical write to %s dropped: %s", table, exc)
            return SinkResult.failed(table, str(exc))
        return SinkResult.written(table, count)
