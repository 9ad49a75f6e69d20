"""AES-256-GCM envelope encryption and identifier pseudonymization.

Sensitive assessment content, conversation messages and identifying profile
fields are encrypted before they reach the Record Store. Each envelope is a
single base64 token holding a fresh 96-bit IV followed by the ciphertext and
its authentication tag, so the two are never stored apart.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mindlens.core.errors import CryptoError

if TYPE_CHECKING:
    from mindlens.core.config.settings import Settings

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12  # 96-bit GCM nonce
_TAG_LENGTH = 16

ENCRYPTED_FLAG_SUFFIX = "_encrypted"


@dataclass(frozen=True)
class EncryptedEnvelope:
    """An IV paired with its ciphertext (tag included)."""

    iv: bytes
    ciphertext: bytes

    def to_token(self) -> str:
        return base64.b64encode(self.iv + self.ciphertext).decode("ascii")

    @classmethod
    def from_token(cls, token: str) -> EncryptedEnvelope:
        if not isinstance(token, str) or not token:
            raise CryptoError("Envelope must be a non-empty string")
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise CryptoError("Envelope is not valid base64") from exc
        if len(raw) < IV_LENGTH + _TAG_LENGTH:
            raise CryptoError("Envelope is too short to contain an IV and tag")
        return cls(iv=raw[:IV_LENGTH], ciphertext=raw[IV_LENGTH:])


class CryptoService:
    """Encrypts JSON-serializable payloads with AES-256-GCM.

    Usage::

        crypto = CryptoService(key=load_key(settings), salt=settings.pseudonymization_salt)
        token = crypto.encrypt({"phqResponses": [1, 0, 2, 1, 0, 0, 1, 0, 0]})
        crypto.decrypt(token)  # {"phqResponses": [...]}
    """

    def __init__(self, key: bytes, salt: str) -> None:
        """Initialize with raw key material.

        Args:
            key: 32 bytes of key material, supplied externally.
            salt: Static application salt for identifier hashing.

        Raises:
            CryptoError: If the key is not exactly 32 bytes.
        """
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise CryptoError(f"Encryption key must be {KEY_LENGTH} bytes")
        self._aead = AESGCM(bytes(key))
        self._salt = salt

    # ------------------------------------------------------------------
    # Envelopes
    # ------------------------------------------------------------------

    def seal(self, payload: Any) -> EncryptedEnvelope:
        """Encrypt a payload into an envelope with a fresh IV."""
        try:
            plaintext = json.dumps(
                payload, sort_keys=True, separators=(",", ":"), allow_nan=False
            ).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise CryptoError(f"Payload is not serializable: {exc}") from exc

        iv = os.urandom(IV_LENGTH)
        return EncryptedEnvelope(iv=iv, ciphertext=self._aead.encrypt(iv, plaintext, None))

    def open(self, envelope: EncryptedEnvelope) -> Any:
        """Decrypt an envelope back into the original payload."""
        try:
            plaintext = self._aead.decrypt(envelope.iv, envelope.ciphertext, None)
        except InvalidTag as exc:
            raise CryptoError("Decryption failed: authentication tag mismatch") from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CryptoError("Decrypted payload is not valid JSON") from exc

    def encrypt(self, payload: Any) -> str:
        """Encrypt a payload to a single base64 token (IV ‖ ciphertext)."""
        return self.seal(payload).to_token()

    def decrypt(self, token: str) -> Any:
        """Decrypt a token produced by :meth:`encrypt`.

        Raises:
            CryptoError: On malformed input or tampering. Callers must not
                guess content when this is raised.
        """
        return self.open(EncryptedEnvelope.from_token(token))

    # ------------------------------------------------------------------
    # Field-level encryption
    # ------------------------------------------------------------------

    def encrypt_fields(self, doc: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Return a copy of ``doc`` with the named fields sealed.

        Each sealed field gets a companion ``<field>_encrypted = True`` flag so
        the rest of the document stays readable without the key. Missing and
        ``None`` fields are left alone.
        """
        result = dict(doc)
        for name in fields:
            if result.get(name) is None or result.get(name + ENCRYPTED_FLAG_SUFFIX):
                continue
            result[name] = self.encrypt(result[name])
            result[name + ENCRYPTED_FLAG_SUFFIX] = True
        return result

    def decrypt_fields(self, doc: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
        """Return a copy of ``doc`` with the named sealed fields opened.

        Raises:
            CryptoError: If a flagged field cannot be decrypted.
        """
        result = dict(doc)
        for name in fields:
            flag = name + ENCRYPTED_FLAG_SUFFIX
            if not result.get(flag):
                continue
            try:
                result[name] = self.decrypt(result[name])
            except CryptoError as exc:
                raise CryptoError(f"Failed to decrypt field {name!r}: {exc}") from exc
            del result[flag]
        return result

    # ------------------------------------------------------------------
    # Pseudonymization
    # ------------------------------------------------------------------

    def hash_identifier(self, identifier: str) -> str:
        """One-way SHA-256 of ``identifier + salt`` as hex.

        Deterministic so rows for the same user can be joined in the
        Analytical Sink without storing the identifier.
        """
        return hashlib.sha256((identifier + self._salt).encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    @staticmethod
    def generate_key() -> str:
        """Generate a new base64-encoded 256-bit key for provisioning."""
        return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


def load_key(settings: Settings) -> bytes:
    """Load key material from settings.

    Outside production a missing key falls back to an ephemeral key that is
    lost on restart; anything encrypted with it becomes unreadable.

    Raises:
        CryptoError: If the configured key is malformed, or missing in production.
    """
    encoded = settings.encryption_key_base64.strip()
    if encoded:
        try:
            key = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CryptoError("ENCRYPTION_KEY_BASE64 is not valid base64") from exc
        if len(key) != KEY_LENGTH:
            raise CryptoError(
                f"ENCRYPTION_KEY_BASE64 must decode to {KEY_LENGTH} bytes, got {len(key)}"
            )
        logger.info("AES-256-GCM encryption enabled with persistent key")
        return key

    if settings.mindlens_env == "production":
        raise CryptoError("ENCRYPTION_KEY_BASE64 must be set in production")

    logger.warning(
        "!!! USING AN EPHEMERAL ENCRYPTION KEY, NOT SUITABLE FOR PRODUCTION. "
        "Data encrypted in this process cannot be read after restart. "
        "Set ENCRYPTION_KEY_BASE64 to a persistent 256-bit key. !!!"
    )
    return AESGCM.generate_key(bit_length=256)
