"""Tools for reviewing the PHI-free audit trail.

Events carry pseudonymous user hashes and input hashes only, never message
text or assessment content.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP

from mindlens.core.auth.identity import require_admin
from mindlens.core.errors import ValidationError
from mindlens.domains.screening.tools.common import run_tool

if TYPE_CHECKING:
    from mindlens.core.audit.logger import AuditLogger
    from mindlens.core.auth.identity import Identity, TokenVerifier
    from mindlens.core.crypto.encryption import CryptoService

MAX_DAYS = 365
RECENT_EVENTS = 20

_NOTE = (
    "The audit trail contains no health data. It records which operations "
    "ran and whether text was sent to an external AI provider."
)


def _display(event: dict[str, Any]) -> dict[str, Any]:
    return {
        "timestamp": event.get("timestamp"),
        "action": event.get("action"),
        "operation": event.get("operation"),
        "llm_provider": event.get("llm_provider"),
        "llm_disclosed": bool(event.get("llm_disclosed")),
        "status": event.get("status"),
        "error_type": event.get("error_type"),
        "duration_ms": event.get("duration_ms"),
    }


def register_audit_tools(
    mcp: FastMCP,
    verifier: TokenVerifier,
    audit: AuditLogger,
    crypto: CryptoService,
) -> None:
    """Register audit trail tools on the MCP server."""

    def summarize(days: int, user_hash: str | None) -> dict[str, Any]:
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_DAYS:
            raise ValidationError(f"days must be between 1 and {MAX_DAYS}")
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        events = audit.get_events(user_hash=user_hash, since=since, limit=RECENT_EVENTS)
        return {
            "period_days": days,
            "llm_disclosures": audit.count_disclosures(user_hash=user_hash, since=since),
            "recent_events": [_display(e) for e in events],
            "note": _NOTE,
        }

    @mcp.tool
    async def my_audit_trail(access_token: str, days: int = 30) -> str:
        """Review recent access to your own records and AI disclosures.

        Args:
            access_token: Bearer token of the signed-in user.
            days: Number of days to look back (default: 30).
        """
        return await run_tool(
            "my_audit_trail",
            verifier,
            access_token,
            lambda identity: summarize(days, crypto.hash_identifier(identity.user_id)),
        )

    @mcp.tool
    async def audit_summary(access_token: str, days: int = 30, user_id: str | None = None) -> str:
        """Audit events and AI disclosure counts across users (admin only).

        Args:
            access_token: Bearer token of an admin user.
            days: Number of days to look back (default: 30).
            user_id: Restrict to one user; matched by its pseudonymous hash.
        """

        def handler(identity: Identity) -> dict:
            require_admin(identity)
            user_hash = crypto.hash_identifier(user_id) if user_id else None
            return {"filtered": user_hash is not None, **summarize(days, user_hash)}

        return await run_tool("audit_summary", verifier, access_token, handler)
