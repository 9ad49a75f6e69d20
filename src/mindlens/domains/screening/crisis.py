"""Crisis keyword detection and append-only crisis alerts.

The keyword match is a plain case-insensitive substring test with no
stemming or negation handling: "I do not want to hurt myself" still
matches. Changing its sensitivity is a clinical decision.
"""

from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from mindlens.domains.screening.models import CrisisAlert

if TYPE_CHECKING:
    from mindlens.core.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

CRISIS_KEYWORDS: tuple[str, ...] = (
    "suicide",
    "kill myself",
    "end my life",
    "want to die",
    "self-harm",
    "hurt myself",
)

ALERT_PREFIX = "crisis-alert:"


def detect_crisis(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in CRISIS_KEYWORDS)


def new_alert_id() -> str:
    return f"ALERT-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def record_crisis_alert(
    store: RecordStore,
    *,
    user_id: str,
    source: str,
    conversation_id: str | None = None,
    session_id: str | None = None,
    action_taken: str = "",
) -> CrisisAlert:
    """Persist one crisis alert. Alerts are never updated or deleted."""
    alert = CrisisAlert(
        alert_id=new_alert_id(),
        user_id=user_id,
        source=source,  # type: ignore[arg-type]
        timestamp=datetime.now(timezone.utc).isoformat(),
        conversation_id=conversation_id,
        session_id=session_id,
        action_taken=action_taken,
    )
    store.set(f"{ALERT_PREFIX}{alert.alert_id}", alert.to_dict())
    logger.warning("Crisis alert recorded: %s (source=%s)", alert.alert_id, source)
    return alert


def list_crisis_alerts(store: RecordStore, user_id: str | None = None) -> list[dict]:
    alerts = [store.get(key) for key in store.keys(ALERT_PREFIX)]
    return [
        a for a in alerts
        if a is not None and (user_id is None or a.get("userId") == user_id)
    ]
