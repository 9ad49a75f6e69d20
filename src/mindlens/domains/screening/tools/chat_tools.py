"""Tools for the AI companion chat."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastmcp import FastMCP

from mindlens.domains.screening.tools.common import run_tool

if TYPE_CHECKING:
    from mindlens.core.auth.identity import Identity, TokenVerifier
    from mindlens.domains.screening.conversation import ConversationOrchestrator


def register_chat_tools(
    mcp: FastMCP,
    verifier: TokenVerifier,
    orchestrator: ConversationOrchestrator,
) -> None:
    """Register conversation tools on the MCP server."""

    @mcp.tool
    async def send_message(
        access_token: str,
        message: str,
        conversation_id: str | None = None,
    ) -> str:
        """Send a message to the AI companion and get its reply.

        Starts a new conversation when no conversation_id is given. If the
        AI provider fails, nothing is saved and the message can be resent.

        Args:
            access_token: Bearer token of the signed-in user.
            message: The user's message.
            conversation_id: Existing conversation to continue.
        """

        async def handler(identity: Identity) -> dict:
            result = await orchestrator.send_message(identity.user_id, message, conversation_id)
            return result.to_dict()

        return await run_tool("send_message", verifier, access_token, handler)

    @mcp.tool
    async def get_history(access_token: str, conversation_id: str) -> str:
        """Return the messages and metadata of one conversation.

        Args:
            access_token: Bearer token of the signed-in user.
            conversation_id: Conversation to load.
        """
        return await run_tool(
            "get_history",
            verifier,
            access_token,
            lambda identity: orchestrator.get_history(identity.user_id, conversation_id).to_dict(),
        )

    @mcp.tool
    async def list_conversations(access_token: str) -> str:
        """List the user's conversations, most recent first.

        Args:
            access_token: Bearer token of the signed-in user.
        """

        def handler(identity: Identity) -> dict:
            items = orchestrator.list_conversations(identity.user_id)
            return {"conversations": [m.to_dict() for m in items], "count": len(items)}

        return await run_tool("list_conversations", verifier, access_token, handler)

    @mcp.tool
    async def delete_conversation(access_token: str, conversation_id: str) -> str:
        """Permanently delete one conversation.

        Args:
            access_token: Bearer token of the signed-in user.
            conversation_id: Conversation to delete.
        """

        async def handler(identity: Identity) -> dict:
            await orchestrator.delete_conversation(identity.user_id, conversation_id)
            return {"deleted": conversation_id}

        return await run_tool("delete_conversation", verifier, access_token, handler)
