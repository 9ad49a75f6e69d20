"""Closed error taxonomy for the protected health data pipeline.

Every error carries a stable ``code`` and a ``user_message`` that is safe to
show to an end user: no raw provider payloads, no credential material.
"""

from __future__ import annotations

from typing import Any


class MindLensError(Exception):
    """Base class for all pipeline errors."""

    code: str = "internal_error"
    user_message: str = "Something went wrong. Please try again."

    def to_payload(self) -> dict[str, Any]:
        return {"status": "error", "code": self.code, "message": self.user_message}


class CryptoError(MindLensError):
    """Raised when encryption or decryption fails."""

    code = "crypto_error"
    user_message = "This record could not be read securely. Please contact support."


class AuthError(MindLensError):
    """Raised when a bearer token is missing, expired or invalid."""

    code = "auth_error"
    user_message = "Your session is not valid. Please sign out and sign in again."


class Forbidden(AuthError):
    """Raised when a verified identity lacks the required role."""

    code = "forbidden"
    user_message = "You do not have permission to perform this action."


class ValidationError(MindLensError):
    """Raised on malformed input."""

    code = "validation_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.user_message = message


class InvalidCredentialFormat(ValidationError):
    """Raised when a credential fails the provider's fixed prefix check."""

    code = "invalid_credential_format"


class NotFound(MindLensError):
    """Raised when a requested record does not exist."""

    code = "not_found"

    def __init__(self, message: str = "The requested record was not found.") -> None:
        super().__init__(message)
        self.user_message = message


class StoreUnavailable(MindLensError):
    """Raised when the Record Store or Analytical Sink cannot be reached."""

    code = "store_unavailable"
    user_message = "Storage is temporarily unavailable. Please try again shortly."


# ---------------------------------------------------------------------------
# AI provider taxonomy
# ---------------------------------------------------------------------------

class ProviderError(MindLensError):
    """Base class for AI provider failures surfaced to callers."""


class NoCredential(ProviderError):
    code = "no_credential"
    user_message = (
        "No AI provider key is configured. Add an API key in settings "
        "or enable demo mode."
    )


class InvalidCredential(ProviderError):
    code = "invalid_credential"
    user_message = (
        "The configured AI provider key was rejected. Create a new key "
        "and update it in settings."
    )


class NoModelsAvailable(ProviderError):
    code = "no_models_available"
    user_message = (
        "Your AI provider key does not have access to any usable models. "
        "Check that the key was created for the generative language API, "
        "or enable demo mode."
    )


class QuotaExceeded(ProviderError):
    code = "quota_exceeded"
    user_message = "The AI provider quota has been exceeded. Check your usage and billing."


class ContentBlocked(ProviderError):
    code = "content_blocked"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.user_message = (
            "I can't respond to that message because of content safety rules. "
            "Please try rephrasing it."
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["reason"] = self.reason
        return payload


class TransientFailure(ProviderError):
    code = "transient_failure"
    user_message = "The AI service did not respond in time. Please try again."


class ModelNotFound(ProviderError):
    """A single model is unavailable for this credential.

    Internal signal that drives fallback to the next candidate; never
    surfaced to callers directly.
    """

    code = "model_not_found"

    def __init__(self, model: str) -> None:
        super().__init__(model)
        self.model = model
