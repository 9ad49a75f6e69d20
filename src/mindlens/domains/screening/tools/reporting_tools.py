"""Administrative reporting tools over pseudonymized analytics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastmcp import FastMCP

from mindlens.core.auth.identity import require_admin
from mindlens.domains.screening.tools.common import run_tool

if TYPE_CHECKING:
    from mindlens.core.auth.identity import Identity, TokenVerifier
    from mindlens.domains.screening.reporting import ReportingService


def register_reporting_tools(
    mcp: FastMCP,
    verifier: TokenVerifier,
    reporting: ReportingService,
) -> None:
    """Register reporting tools on the MCP server."""

    @mcp.tool
    async def dashboard_statistics(access_token: str) -> str:
        """Aggregate screening statistics: totals, severity and emotion mix (admin only).

        Args:
            access_token: Bearer token of an admin user.
        """

        def handler(identity: Identity) -> dict:
            require_admin(identity)
            return {"statistics": reporting.dashboard_statistics()}

        return await run_tool("dashboard_statistics", verifier, access_token, handler)

    @mcp.tool
    async def analytics_query(access_token: str, sql: str) -> str:
        """Run a single read-only SELECT against the analytics tables (admin only).

        Tables: assessment_records, emotion_analysis, user_behavior_patterns,
        session_outcomes.

        Args:
            access_token: Bearer token of an admin user.
            sql: One SELECT statement.
        """

        def handler(identity: Identity) -> dict:
            require_admin(identity)
            return reporting.query(sql)

        return await run_tool("analytics_query", verifier, access_token, handler)

    @mcp.tool
    async def user_analytics(access_token: str) -> str:
        """Return the user's own pseudonymized score history and engagement pattern.

        Only data mirrored with research consent appears here.

        Args:
            access_token: Bearer token of the signed-in user.
        """
        return await run_tool(
            "user_analytics",
            verifier,
            access_token,
            lambda identity: {"analytics": reporting.user_analytics(identity.user_id)},
        )
