"""Model catalog cache and preference ranking."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Iterable

logger = logging.getLogger(__name__)

# Fastest / cheapest first.
PREFERRED_MODELS: tuple[str, ...] = (
    "models/gemini-1.5-flash-latest",
    "models/gemini-1.5-flash-8b-latest",
    "models/gemini-1.5-flash",
    "models/gemini-1.5-flash-8b",
    "models/gemini-1.5-pro-latest",
    "models/gemini-1.5-pro",
    "models/gemini-2.0-flash-exp",
    "models/gemini-exp-1206",
    "models/gemini-pro",
)


def rank_models(
    discovered: Iterable[str], preferred: Iterable[str] = PREFERRED_MODELS
) -> list[str]:
    """Order discovered models by the preference table.

    Discovered models missing from the table are appended in discovery
    order, so nothing discovered is ever dropped.
    """
    available = list(dict.fromkeys(discovered))
    present = set(available)
    ranked = [m for m in preferred if m in present]
    ranked_set = set(ranked)
    ranked.extend(m for m in available if m not in ranked_set)
    return ranked


def credential_fingerprint(credential: str) -> str:
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:16]


class ModelCatalogCache:
    """Discovered models and the pinned (last successful) model.

    One instance is owned by the gateway for the process lifetime. Writes
    are idempotent, so a race on first population is harmless. The cache is
    bound to a credential fingerprint and empties itself when the credential
    changes.
    """

    def __init__(self) -> None:
        self.models: list[str] | None = None
        self.discovered_at: datetime | None = None
        self.pinned_model: str | None = None
        self._fingerprint: str | None = None

    def bind(self, credential: str) -> None:
        fingerprint = credential_fingerprint(credential)
        if fingerprint != self._fingerprint:
            if self._fingerprint is not None:
                logger.info("Credential changed; model catalog reset")
            self.reset()
            self._fingerprint = fingerprint

    @property
    def is_populated(self) -> bool:
        return bool(self.models)

    def store_models(self, models: Iterable[str]) -> None:
        self.models = list(models)
        self.discovered_at = datetime.now(timezone.utc)

    def pin(self, model: str) -> None:
        if self.pinned_model != model:
            logger.info("Pinned model: %s", model)
        self.pinned_model = model

    def unpin(self, model: str | None = None) -> None:
        if model is None or self.pinned_model == model:
            self.pinned_model = None

    def reset(self) -> None:
        self.models = None
        self.discovered_at = None
        self.pinned_model = None

    def candidates(self, preferred: Iterable[str] = PREFERRED_MODELS) -> list[str]:
        """Pinned model first, then the ranked remainder."""
        ranked = rank_models(self.models or [], preferred)
        if self.pinned_model is None:
            return ranked
        return [self.pinned_model] + [m for m in ranked if m != self.pinned_model]
