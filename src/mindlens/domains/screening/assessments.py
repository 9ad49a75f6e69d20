"""PHQ-9 assessment submission, insight annotation and analytics mirroring.

Operational writes complete first; the analytical mirror runs afterwards
and its outcome is reported, never raised.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from mindlens.core.errors import CryptoError, NotFound, ValidationError
from mindlens.core.llm.provider import PromptMessage
from mindlens.core.llm.system_prompt import build_insights_prompt, build_trend_prompt
from mindlens.core.storage.record_store import KeyedLocks
from mindlens.domains.screening import phq9
from mindlens.domains.screening.crisis import record_crisis_alert
from mindlens.domains.screening.models import AssessmentRecord, EmotionAnalysis

if TYPE_CHECKING:
    from mindlens.core.analytics.sink import SinkResult
    from mindlens.core.audit.logger import AuditLogger
    from mindlens.core.crypto.encryption import CryptoService
    from mindlens.core.llm.gateway import AIProviderGateway
    from mindlens.core.storage.record_store import RecordStore
    from mindlens.domains.screening.models import SessionOutcome
    from mindlens.domains.screening.pseudonymization import PseudonymizationBridge

logger = logging.getLogger(__name__)

ASSESSMENT_PREFIX = "assessment:"
INSIGHTS_FIELDS = ("aiInsights",)


def assessment_key(session_id: str) -> str:
    return f"{ASSESSMENT_PREFIX}{session_id}"


def history_key(user_id: str) -> str:
    return f"user:{user_id}:assessment-history"


def latest_key(user_id: str) -> str:
    return f"user:{user_id}:latest-assessment"


def trend_key(user_id: str) -> str:
    return f"user:{user_id}:trend-analysis"


def new_session_id() -> str:
    return f"MS-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def score_direction(scores: list[int]) -> str:
    """Compare latest with first score: 'improving', 'worsening' or 'stable'."""
    if scores[-1] < scores[0]:
        return "improving"
    if scores[-1] > scores[0]:
        return "worsening"
    return "stable"


class AssessmentService:
    """Stores encrypted assessments and mirrors consenting ones for reporting.

    Stored document layout (``assessment:{sessionId}``)::

        sessionId, userHash, timestamp, score, requiresImmediateAction,
        consentToResearch, encrypted, encryptedPayload, aiInsights?

    ``encryptedPayload`` seals the user id, item responses, score and any
    emotion analysis. ``aiInsights`` is the only field written after
    submission and is field-encrypted.
    """

    def __init__(
        self,
        store: RecordStore,
        crypto: CryptoService,
        bridge: PseudonymizationBridge,
        gateway: AIProviderGateway | None = None,
        *,
        locks: KeyedLocks | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._crypto = crypto
        self._bridge = bridge
        self._gateway = gateway
        self._locks = locks or KeyedLocks()
        self._audit = audit

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit(
        self,
        user_id: str,
        responses: Any,
        *,
        consent_to_research: Any = False,
        emotion_analysis: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Validate, score, encrypt and store one assessment.

        Raises:
            ValidationError: Malformed responses, consent flag or emotion data.
        """
        clean = phq9.validate_responses(responses)
        if not isinstance(consent_to_research, bool):
            raise ValidationError("consentToResearch must be true or false")
        analysis = None
        if emotion_analysis is not None:
            try:
                analysis = EmotionAnalysis.from_dict(emotion_analysis)
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError("Malformed emotion analysis") from exc

        score = phq9.total_score(clean)
        record = AssessmentRecord(
            session_id=new_session_id(),
            user_id=user_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            responses=clean,
            score=score,
            requires_immediate_action=phq9.requires_immediate_action(clean),
            consent_to_research=consent_to_research,
            emotion_analysis=analysis,
        )
        self._store.set(assessment_key(record.session_id), self._to_doc(record))

        history = self._history(user_id)
        history.append(record.session_id)
        self._store.set(history_key(user_id), {"sessionIds": history})
        self._store.set(
            latest_key(user_id),
            {"sessionId": record.session_id, "timestamp": record.timestamp, "score": score},
        )

        if record.requires_immediate_action:
            record_crisis_alert(
                self._store,
                user_id=user_id,
                source="assessment",
                session_id=record.session_id,
                action_taken="Crisis resources shown with assessment results",
            )

        analytics = self._mirror(record)
        if self._audit is not None:
            self._audit.log_operation(
                "submit_assessment",
                action="data_write",
                user_hash=self._crypto.hash_identifier(user_id),
                metadata={"analytics": {k: r.status for k, r in analytics.items()}},
            )
        logger.info("Assessment stored: %s (score=%d)", record.session_id, score)
        return {
            "sessionId": record.session_id,
            "timestamp": record.timestamp,
            "score": score,
            "severity": phq9.severity_band(score),
            "requiresImmediateAction": record.requires_immediate_action,
            "analytics": {k: r.to_dict() for k, r in analytics.items()},
        }

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, user_id: str, session_id: str) -> AssessmentRecord:
        """Load one of the user's assessments.

        Raises:
            NotFound: Unknown session id or owned by another user.
            CryptoError: The stored payload cannot be decrypted.
        """
        doc = self._store.get(assessment_key(session_id)) if isinstance(session_id, str) else None
        if doc is None or doc.get("userHash") != self._crypto.hash_identifier(user_id):
            raise NotFound("Assessment not found")
        return self._from_doc(doc)

    def summary(self, record: AssessmentRecord, *, detail: bool = True) -> dict[str, Any]:
        """Caller-facing view of one assessment; ``detail`` adds item responses."""
        view: dict[str, Any] = {
            "sessionId": record.session_id,
            "timestamp": record.timestamp,
            "score": record.score,
            "severity": phq9.severity_band(record.score),
            "requiresImmediateAction": record.requires_immediate_action,
            "consentToResearch": record.consent_to_research,
        }
        if detail:
            view["responses"] = record.responses
            view["emotionAnalysis"] = (
                record.emotion_analysis.to_dict() if record.emotion_analysis else None
            )
            view["aiInsights"] = record.ai_insights
        else:
            view["hasInsights"] = record.ai_insights is not None
        return view

    def summaries(self, user_id: str, *, detail: bool = True) -> list[dict[str, Any]]:
        """Views of every assessment in submission order.

        An unreadable record appears as ``{"sessionId", "error": "decryption_failed"}``.
        """
        views: list[dict[str, Any]] = []
        for session_id in self._history(user_id):
            try:
                record = self.get(user_id, session_id)
            except NotFound:
                continue
            except CryptoError:
                logger.warning("Assessment %s could not be decrypted", session_id)
                views.append({"sessionId": session_id, "error": "decryption_failed"})
                continue
            views.append(self.summary(record, detail=detail))
        return views

    def session_ids(self, user_id: str) -> list[str]:
        return self._history(user_id)

    def list_for_user(self, user_id: str) -> list[AssessmentRecord]:
        """All readable assessments, oldest first. Unreadable ones are skipped."""
        records: list[AssessmentRecord] = []
        for session_id in self._history(user_id):
            try:
                records.append(self.get(user_id, session_id))
            except NotFound:
                continue
            except CryptoError:
                logger.warning("Skipping undecryptable assessment %s", session_id)
        return sorted(records, key=lambda r: r.timestamp)

    # ------------------------------------------------------------------
    # AI insights
    # ------------------------------------------------------------------

    async def generate_insights(self, user_id: str, session_id: str) -> dict[str, Any]:
        """Attach a short AI summary to an assessment.

        Only the total score and severity band are sent to the provider.
        """
        if self._gateway is None:
            raise ValidationError("AI insights are not available")
        async with self._locks.hold(assessment_key(session_id)):
            record = self.get(user_id, session_id)
            severity = phq9.severity_band(record.score)
            prompt = build_insights_prompt(
                record.score, severity, record.requires_immediate_action
            )
            completion = await self._gateway.complete([PromptMessage(role="user", content=prompt)])

            insights = {
                "content": completion.text,
                "generatedAt": datetime.now(timezone.utc).isoformat(),
                "model": completion.model,
                "demoMode": completion.demo_mode,
            }
            record.ai_insights = insights
            self._store.set(assessment_key(session_id), self._to_doc(record))

        if self._audit is not None:
            self._audit.log_operation(
                "generate_assessment_insights",
                action="data_write",
                user_hash=self._crypto.hash_identifier(user_id),
                llm_provider=completion.provider,
                llm_disclosed=not completion.demo_mode,
            )
        return {
            "sessionId": session_id,
            "severity": severity,
            "insights": completion.text,
            "model": completion.model,
            "demoMode": completion.demo_mode,
            "generatedAt": insights["generatedAt"],
        }

    async def generate_trend_insights(self, user_id: str) -> dict[str, Any]:
        """Summarize the user's whole assessment history with the AI provider.

        Only the ordered scores and severity bands are disclosed. The result
        is stored encrypted under ``trend_key`` and replaces any earlier one.

        Raises:
            NotFound: The user has no readable assessments.
        """
        if self._gateway is None:
            raise ValidationError("AI insights are not available")
        records = self.list_for_user(user_id)
        if not records:
            raise NotFound("No assessments found. Complete an assessment first.")

        scores = [r.score for r in records]
        average = round(sum(scores) / len(scores), 1)
        direction = score_direction(scores)
        prompt = build_trend_prompt(
            [(s, phq9.severity_band(s)) for s in scores], average, direction
        )
        completion = await self._gateway.complete([PromptMessage(role="user", content=prompt)])

        trend = {
            "insights": completion.text,
            "assessmentCount": len(scores),
            "averageScore": average,
            "direction": direction,
            "scoreRange": {"min": min(scores), "max": max(scores)},
            "model": completion.model,
            "demoMode": completion.demo_mode,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
        }
        self._store.set(trend_key(user_id), {"envelope": self._crypto.encrypt(trend)})

        if self._audit is not None:
            self._audit.log_operation(
                "generate_trend_insights",
                action="data_write",
                user_hash=self._crypto.hash_identifier(user_id),
                llm_provider=completion.provider,
                llm_disclosed=not completion.demo_mode,
                metadata={"assessments": len(scores)},
            )
        return trend

    def latest_trend_insights(self, user_id: str) -> dict[str, Any] | None:
        """The last stored trend summary, or None.

        Raises:
            CryptoError: The stored summary cannot be decrypted.
        """
        doc = self._store.get(trend_key(user_id))
        if doc is None:
            return None
        return self._crypto.decrypt(doc["envelope"])

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def resync_user(self, user_id: str) -> dict[str, Any]:
        """Re-mirror every stored assessment of a user into the sink."""
        counts = {"written": 0, "skipped": 0, "failed": 0}
        errors: list[dict[str, str]] = []
        records: list[AssessmentRecord] = []
        for session_id in self._history(user_id):
            try:
                record = self.get(user_id, session_id)
            except NotFound:
                continue
            except CryptoError:
                errors.append({"sessionId": session_id, "error": "decryption_failed"})
                continue
            records.append(record)
            result = self._bridge.mirror_assessment(record)
            counts[result.status] += 1
            if result.status == "failed":
                errors.append({"sessionId": session_id, "error": result.reason})
            if record.emotion_analysis is not None:
                self._bridge.mirror_emotion_analysis(record, record.emotion_analysis)

        behavior = None
        if records:
            latest = max(records, key=lambda r: r.timestamp)
            behavior = self._bridge.mirror_behavior(
                user_id, latest.consent_to_research, records
            ).to_dict()
        logger.info(
            "Resync: %d written, %d skipped, %d failed",
            counts["written"], counts["skipped"], counts["failed"],
        )
        return {
            "total": len(records),
            **counts,
            "behavior": behavior,
            "errors": errors,
        }

    def record_session_outcome(
        self, outcome: SessionOutcome, *, consent_to_research: bool
    ) -> SinkResult:
        for name in ("pre_session_phq9", "post_session_phq9"):
            value = getattr(outcome, name)
            if value is not None and not (
                isinstance(value, int) and 0 <= value <= phq9.MAX_SCORE
            ):
                raise ValidationError(f"{name} must be between 0 and {phq9.MAX_SCORE}")
        return self._bridge.mirror_session_outcome(outcome, consent_to_research)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_for_user(self, user_id: str) -> int:
        """Delete every assessment owned by the user. Returns the count."""
        user_hash = self._crypto.hash_identifier(user_id)
        deleted = 0
        for key in self._store.keys(ASSESSMENT_PREFIX):
            doc = self._store.get(key)
            if doc is not None and doc.get("userHash") == user_hash:
                deleted += int(self._store.delete(key))
        self._store.delete(history_key(user_id))
        self._store.delete(latest_key(user_id))
        self._store.delete(trend_key(user_id))
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _history(self, user_id: str) -> list[str]:
        doc = self._store.get(history_key(user_id)) or {}
        return list(doc.get("sessionIds") or [])

    def _mirror(self, record: AssessmentRecord) -> dict[str, SinkResult]:
        results = {"assessment": self._bridge.mirror_assessment(record)}
        if record.emotion_analysis is not None:
            results["emotion"] = self._bridge.mirror_emotion_analysis(
                record, record.emotion_analysis
            )
        results["behavior"] = self._bridge.mirror_behavior(
            record.user_id, record.consent_to_research, self.list_for_user(record.user_id)
        )
        return results

    def _to_doc(self, record: AssessmentRecord) -> dict[str, Any]:
        payload = {
            "userId": record.user_id,
            "responses": record.responses,
            "score": record.score,
            "emotionAnalysis": (
                record.emotion_analysis.to_dict() if record.emotion_analysis else None
            ),
        }
        doc = {
            "sessionId": record.session_id,
            "userHash": self._crypto.hash_identifier(record.user_id),
            "timestamp": record.timestamp,
            "score": record.score,
            "requiresImmediateAction": record.requires_immediate_action,
            "consentToResearch": record.consent_to_research,
            "encrypted": True,
            "encryptedPayload": self._crypto.encrypt(payload),
            "aiInsights": record.ai_insights,
        }
        return self._crypto.encrypt_fields(doc, INSIGHTS_FIELDS)

    def _from_doc(self, doc: dict[str, Any]) -> AssessmentRecord:
        doc = self._crypto.decrypt_fields(doc, INSIGHTS_FIELDS)
        if not doc.get("encrypted"):
            raise CryptoError("Assessment is not encrypted")
        payload = self._crypto.decrypt(doc["encryptedPayload"])
        emotion = payload.get("emotionAnalysis")
        return AssessmentRecord(
            session_id=doc["sessionId"],
            user_id=payload["userId"],
            timestamp=doc["timestamp"],
            responses=list(payload["responses"]),
            score=int(payload["score"]),
            requires_immediate_action=bool(doc["requiresImmediateAction"]),
            consent_to_research=bool(doc["consentToResearch"]),
            encrypted=True,
            encrypted_payload=doc["encryptedPayload"],
            emotion_analysis=EmotionAnalysis.from_dict(emotion) if emotion else None,
            ai_insights=doc.get("aiInsights"),
        )
