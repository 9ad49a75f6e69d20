"""Tools for the user's profile and their rights over stored data.

Export and deletion are audit-logged by the account service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP

from mindlens.domains.screening.accounts import RETENTION_POLICY
from mindlens.domains.screening.tools.common import run_tool

if TYPE_CHECKING:
    from mindlens.core.auth.identity import Identity, TokenVerifier
    from mindlens.domains.screening.accounts import AccountService


def register_account_tools(
    mcp: FastMCP,
    verifier: TokenVerifier,
    accounts: AccountService,
) -> None:
    """Register profile and data-rights tools on the MCP server."""

    @mcp.tool
    async def get_profile(access_token: str) -> str:
        """Return the user's profile.

        Args:
            access_token: Bearer token of the signed-in user.
        """
        return await run_tool(
            "get_profile",
            verifier,
            access_token,
            lambda identity: {"profile": accounts.get_profile(identity)},
        )

    @mcp.tool
    async def update_profile(access_token: str, profile: dict[str, Any]) -> str:
        """Update profile fields. Name, email, phone and date of birth are stored encrypted.

        Args:
            access_token: Bearer token of the signed-in user.
            profile: Fields to change.
        """
        return await run_tool(
            "update_profile",
            verifier,
            access_token,
            lambda identity: {"profile": accounts.save_profile(identity, profile)},
        )

    @mcp.tool
    async def export_user_data(access_token: str) -> str:
        """Export everything stored about the user, decrypted.

        Args:
            access_token: Bearer token of the signed-in user.
        """
        return await run_tool(
            "export_user_data",
            verifier,
            access_token,
            lambda identity: {"export": accounts.export_user_data(identity)},
        )

    @mcp.tool
    async def delete_account(access_token: str, confirmation_email: str) -> str:
        """Permanently delete the user's profile, assessments and conversations.

        Crisis alerts and pseudonymized research rows are kept. This cannot
        be undone.

        Args:
            access_token: Bearer token of the signed-in user.
            confirmation_email: Must equal the account's email. Safety gate.
        """

        async def handler(identity: Identity) -> dict:
            return await accounts.delete_account(identity, confirmation_email)

        return await run_tool("delete_account", verifier, access_token, handler)

    @mcp.tool
    async def retention_policy(access_token: str) -> str:
        """Describe what is stored, how it is protected and how long it is kept.

        Args:
            access_token: Bearer token of the signed-in user.
        """
        return await run_tool(
            "retention_policy",
            verifier,
            access_token,
            lambda _identity: {"policy": RETENTION_POLICY},
        )
