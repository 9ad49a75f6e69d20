"""Bearer-token identity verification.

The identity provider is external; the pipeline only needs ``token ->
Identity`` or an ``AuthError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from mindlens.core.errors import AuthError, Forbidden


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def require_admin(identity: Identity) -> Identity:
    if not identity.is_admin:
        raise Forbidden("admin role required")
    return identity


@runtime_checkable
class TokenVerifier(Protocol):
    def verify(self, token: str) -> Identity: ...


class StaticTokenVerifier:
    """Verifier backed by a fixed token table (development and tests).

    Table entries look like ``{"user_id": ..., "email": ..., "role": "admin"}``;
    ``role`` is optional.
    """

    def __init__(self, tokens: dict[str, dict[str, str]] | None = None) -> None:
        self._tokens = {
            token: Identity(
                user_id=entry["user_id"],
                email=entry.get("email", ""),
                role=entry.get("role", "user"),
            )
            for token, entry in (tokens or {}).items()
        }

    def verify(self, token: str) -> Identity:
        if not token:
            raise AuthError("missing access token")
        identity = self._tokens.get(token.removeprefix("Bearer ").strip())
        if identity is None:
            raise AuthError("unknown access token")
        return identity
