"""Tools for AI provider settings."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP

from mindlens.core.auth.identity import require_admin
from mindlens.domains.screening.tools.common import run_tool

if TYPE_CHECKING:
    from mindlens.core.auth.identity import Identity, TokenVerifier
    from mindlens.core.config.store import SettingsStore
    from mindlens.core.llm.gateway import AIProviderGateway


def register_settings_tools(
    mcp: FastMCP,
    verifier: TokenVerifier,
    settings_store: SettingsStore,
    gateway: AIProviderGateway,
) -> None:
    """Register settings tools on the MCP server."""

    @mcp.tool
    async def get_settings(access_token: str) -> str:
        """Report whether a credential is configured and whether demo mode is on.

        The credential itself is never returned.

        Args:
            access_token: Bearer token of the signed-in user.
        """
        return await run_tool(
            "get_settings", verifier, access_token, lambda _identity: settings_store.status()
        )

    @mcp.tool
    async def update_settings(
        access_token: str,
        api_key: str | None = None,
        demo_mode: Any = None,
    ) -> str:
        """Update the AI provider credential and/or the demo-mode flag (admin only).

        The key must carry the configured provider's prefix. Stored values
        take precedence over environment defaults.

        Args:
            access_token: Bearer token of an admin user.
            api_key: New provider API key.
            demo_mode: true to answer with simulated replies.
        """

        def handler(identity: Identity) -> dict:
            require_admin(identity)
            applied = settings_store.update(credential=api_key, demo_mode=demo_mode)
            return {"updated": applied, "settings": settings_store.status()}

        return await run_tool("update_settings", verifier, access_token, handler)

    @mcp.tool
    async def test_credential(access_token: str, api_key: str) -> str:
        """Check an API key by listing models and making one short call (admin only).

        The key is not stored.

        Args:
            access_token: Bearer token of an admin user.
            api_key: Provider API key to check.
        """

        async def handler(identity: Identity) -> dict:
            require_admin(identity)
            return await gateway.test_credential(api_key)

        return await run_tool("test_credential", verifier, access_token, handler)
