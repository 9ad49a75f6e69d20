"""Mutable runtime settings: provider credential and demo-mode flag.

Resolution order: a value written through ``update`` wins over the
environment default, which is the initial value until the first update.
The credential is stored encrypted and is never returned by ``status``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from mindlens.core.errors import CryptoError, InvalidCredentialFormat, ValidationError

if TYPE_CHECKING:
    from mindlens.core.config.settings import Settings
    from mindlens.core.crypto.encryption import CryptoService
    from mindlens.core.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

DEMO_MODE_KEY = "settings:demo_mode"
CREDENTIAL_KEY = "settings:credential"

CREDENTIAL_PREFIXES: dict[str, str] = {
    "gemini": "AIza",
    "openai": "sk-",
    "anthropic": "sk-ant-",
}


def validate_credential_format(provider: str, credential: Any) -> str:
    """Return the stripped credential or raise InvalidCredentialFormat."""
    prefix = CREDENTIAL_PREFIXES[provider]
    if not isinstance(credential, str):
        raise InvalidCredentialFormat("API key must be a string")
    value = credential.strip()
    if not value.startswith(prefix) or len(value) <= len(prefix) or any(c.isspace() for c in value):
        raise InvalidCredentialFormat(f"Invalid API key format: {provider} keys start with '{prefix}'")
    return value


@dataclass(frozen=True)
class ResolvedSettings:
    """Effective settings for one gateway call."""

    provider: str
    demo_mode: bool
    credential: str
    source: str  # "store" | "environment"

    @property
    def credential_present(self) -> bool:
        return bool(self.credential)


class SettingsStore:
    """Store-then-environment settings resolution.

    Usage::

        store = SettingsStore(records, crypto, get_settings())
        store.update(credential="AIza...", demo_mode=False)
        store.resolve().credential
    """

    def __init__(self, records: RecordStore, crypto: CryptoService, env: Settings) -> None:
        self._records = records
        self._crypto = crypto
        self._env = env

    @property
    def provider(self) -> str:
        return self._env.llm_provider

    def resolve(self) -> ResolvedSettings:
        demo_doc = self._records.get(DEMO_MODE_KEY)
        cred_doc = self._records.get(CREDENTIAL_KEY)

        demo_mode = bool(demo_doc["value"]) if demo_doc else self._env.chat_demo_mode
        if cred_doc and cred_doc.get("provider") == self.provider:
            credential = self._crypto.decrypt(cred_doc["envelope"])
        else:
            credential = self._env.env_credential

        return ResolvedSettings(
            provider=self.provider,
            demo_mode=demo_mode,
            credential=credential,
            source="store" if (demo_doc or cred_doc) else "environment",
        )

    def status(self) -> dict[str, Any]:
        resolved = self.resolve()
        return {
            "demoMode": resolved.demo_mode,
            "credentialPresent": resolved.credential_present,
            "mode": self._mode(resolved),
            "provider": resolved.provider,
            "usingStore": resolved.source == "store",
        }

    def current_mode(self) -> str:
        """Mode for unauthenticated status checks; never raises on an unreadable credential."""
        try:
            resolved = self.resolve()
        except CryptoError:
            logger.error("Stored credential cannot be decrypted; was the encryption key rotated?")
            return "credential_unreadable"
        return self._mode(resolved)

    def _mode(self, resolved: ResolvedSettings) -> str:
        if resolved.demo_mode:
            return "demo"
        if resolved.credential_present:
            return "live"
        if self._env.demo_when_unconfigured:
            return "demo"
        return "unconfigured"

    def update(self, credential: Any = None, demo_mode: Any = None) -> list[str]:
        """Validate and apply settings updates.

        Both values are validated before either is written.

        Returns:
            Names of the settings that were updated.

        Raises:
            InvalidCredentialFormat: If the credential fails the prefix check.
            ValidationError: If demo_mode is not a boolean or nothing is given.
        """
        if credential is None and demo_mode is None:
            raise ValidationError("No settings to update")
        clean_credential = (
            validate_credential_format(self.provider, credential) if credential is not None else None
        )
        if demo_mode is not None and not isinstance(demo_mode, bool):
            raise ValidationError("demoMode must be true or false")

        now = datetime.now(timezone.utc).isoformat()
        applied: list[str] = []
        if clean_credential is not None:
            self._records.set(
                CREDENTIAL_KEY,
                {
                    "provider": self.provider,
                    "envelope": self._crypto.encrypt(clean_credential),
                    "updatedAt": now,
                },
            )
            applied.append("credential")
        if demo_mode is not None:
            self._records.set(DEMO_MODE_KEY, {"value": demo_mode, "updatedAt": now})
            applied.append("demo_mode")

        logger.info("Settings updated: %s", ", ".join(applied))
        return applied
