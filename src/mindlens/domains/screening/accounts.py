"""User profile storage, data export and account deletion."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from mindlens.core.errors import CryptoError, NotFound, ValidationError
from mindlens.domains.screening.conversation import index_key
from mindlens.domains.screening.crisis import list_crisis_alerts

if TYPE_CHECKING:
    from mindlens.core.audit.logger import AuditLogger
    from mindlens.core.auth.identity import Identity
    from mindlens.core.crypto.encryption import CryptoService
    from mindlens.core.storage.record_store import RecordStore
    from mindlens.domains.screening.assessments import AssessmentService
    from mindlens.domains.screening.conversation import ConversationOrchestrator

logger = logging.getLogger(__name__)

# Identifying profile fields, sealed individually.
PROFILE_ENCRYPTED_FIELDS = ("name", "email", "phone", "dateOfBirth")
PROFILE_FIELDS = PROFILE_ENCRYPTED_FIELDS + ("ageRange", "gender", "timezone", "consentToResearch")

RETENTION_POLICY: dict[str, Any] = {
    "operationalRecords": {
        "contents": "profile, assessments, AI summaries, conversations",
        "encryption": "AES-256-GCM at rest for identifying and clinical fields",
        "retention": "until account deletion",
    },
    "crisisAlerts": {
        "contents": "alert id, source, timestamp",
        "retention": "retained after account deletion for safety follow-up",
    },
    "analytics": {
        "contents": "pseudonymized PHQ-9 scores and usage patterns",
        "identifiers": "salted SHA-256 hash; no names, emails or free text",
        "condition": "written only with research consent",
        "retention": "retained after account deletion; cannot be linked back without the salt",
    },
    "aiProvider": {
        "contents": "conversation messages sent for a reply",
        "condition": "never sent in demo mode",
    },
}


def profile_key(user_id: str) -> str:
    return f"user:{user_id}"


class AccountService:
    """Profile, export and deletion for a verified identity."""

    def __init__(
        self,
        store: RecordStore,
        crypto: CryptoService,
        conversations: ConversationOrchestrator,
        assessments: AssessmentService,
        *,
        audit: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._crypto = crypto
        self._conversations = conversations
        self._assessments = assessments
        self._audit = audit

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def save_profile(self, identity: Identity, updates: dict[str, Any]) -> dict[str, Any]:
        """Merge profile updates and store them with identifying fields sealed."""
        if not isinstance(updates, dict):
            raise ValidationError("Profile must be an object")
        unknown = set(updates) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        if "consentToResearch" in updates and not isinstance(updates["consentToResearch"], bool):
            raise ValidationError("consentToResearch must be true or false")

        profile = self.get_profile(identity) or {"email": identity.email}
        profile.update(updates)
        profile["updatedAt"] = datetime.now(timezone.utc).isoformat()
        self._store.set(
            profile_key(identity.user_id),
            self._crypto.encrypt_fields(profile, PROFILE_ENCRYPTED_FIELDS),
        )
        return profile

    def get_profile(self, identity: Identity) -> dict[str, Any] | None:
        doc = self._store.get(profile_key(identity.user_id))
        if doc is None:
            return None
        return self._crypto.decrypt_fields(doc, PROFILE_ENCRYPTED_FIELDS)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_user_data(self, identity: Identity) -> dict[str, Any]:
        """Everything stored about the user, decrypted.

        An assessment that cannot be decrypted is reported by id with
        ``error: decryption_failed``; it is never returned as ciphertext or
        guessed.
        """
        user_id = identity.user_id
        assessments = self._assessments.summaries(user_id)
        try:
            trend = self._assessments.latest_trend_insights(user_id)
        except CryptoError:
            logger.warning("Export: trend summary could not be decrypted")
            trend = {"error": "decryption_failed"}

        conversations: list[dict[str, Any]] = []
        for conversation_id in self._conversations.stored_conversation_ids(user_id):
            try:
                history = self._conversations.get_history(user_id, conversation_id)
            except NotFound:
                continue
            except CryptoError:
                conversations.append({"conversationId": conversation_id, "error": "decryption_failed"})
                continue
            conversations.append(history.to_dict())

        alerts = [
            {"alertId": a["alertId"], "source": a["source"], "timestamp": a["timestamp"]}
            for a in list_crisis_alerts(self._store, user_id)
        ]

        if self._audit is not None:
            self._audit.log_operation(
                "export_user_data",
                action="data_export",
                user_hash=self._crypto.hash_identifier(user_id),
                metadata={"assessments": len(assessments), "conversations": len(conversations)},
            )
        return {
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "user": {"userId": user_id, "email": identity.email},
            "profile": self.get_profile(identity),
            "assessments": assessments,
            "trendInsights": trend,
            "conversations": conversations,
            "crisisAlerts": alerts,
            "dataPolicy": RETENTION_POLICY,
        }

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_account(self, identity: Identity, confirmation_email: Any) -> dict[str, Any]:
        """Delete the user's operational records.

        Crisis alerts and pseudonymized analytical rows are retained.

        Raises:
            ValidationError: If the confirmation email does not match.
        """
        if (
            not isinstance(confirmation_email, str)
            or not identity.email
            or confirmation_email.strip().lower() != identity.email.strip().lower()
        ):
            raise ValidationError("Confirmation email does not match your account")

        user_id = identity.user_id
        conversation_count = 0
        for conversation_id in self._conversations.stored_conversation_ids(user_id):
            try:
                await self._conversations.delete_conversation(user_id, conversation_id)
            except NotFound:
                continue
            conversation_count += 1
        self._store.delete(index_key(user_id))
        assessment_count = self._assessments.delete_for_user(user_id)
        profile_deleted = self._store.delete(profile_key(user_id))

        if self._audit is not None:
            self._audit.log_data_delete(
                "delete_account",
                user_hash=self._crypto.hash_identifier(user_id),
                count=conversation_count + assessment_count + int(profile_deleted),
            )
        logger.info(
            "Account deleted: %d conversations, %d assessments",
            conversation_count, assessment_count,
        )
        return {
            "deleted": {
                "conversations": conversation_count,
                "assessments": assessment_count,
                "profile": profile_deleted,
            },
            "retained": ["crisisAlerts", "pseudonymizedAnalytics"],
        }
