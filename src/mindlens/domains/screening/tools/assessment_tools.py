"""Tools for PHQ-9 assessments."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP

from mindlens.core.auth.identity import require_admin
from mindlens.domains.screening.models import SessionOutcome
from mindlens.domains.screening.tools.common import run_tool

if TYPE_CHECKING:
    from mindlens.core.auth.identity import Identity, TokenVerifier
    from mindlens.domains.screening.assessments import AssessmentService


def register_assessment_tools(
    mcp: FastMCP,
    verifier: TokenVerifier,
    assessments: AssessmentService,
) -> None:
    """Register assessment tools on the MCP server."""

    @mcp.tool
    async def submit_assessment(
        access_token: str,
        responses: list[int],
        consent_to_research: bool = False,
        emotion_analysis: dict[str, Any] | None = None,
    ) -> str:
        """Submit a completed PHQ-9 questionnaire.

        The answers are stored encrypted. With research consent, a
        pseudonymized copy is added to the reporting tables.

        Args:
            access_token: Bearer token of the signed-in user.
            responses: Nine answers, each 0-3.
            consent_to_research: Whether pseudonymized results may be used for research.
            emotion_analysis: Optional emotion signal captured with the assessment.
        """
        return await run_tool(
            "submit_assessment",
            verifier,
            access_token,
            lambda identity: assessments.submit(
                identity.user_id,
                responses,
                consent_to_research=consent_to_research,
                emotion_analysis=emotion_analysis,
            ),
        )

    @mcp.tool
    async def generate_assessment_insights(access_token: str, session_id: str) -> str:
        """Generate a short supportive AI summary for one of the user's assessments.

        Only the total score and severity level are shared with the AI provider.

        Args:
            access_token: Bearer token of the signed-in user.
            session_id: The assessment's session id (MS-...).
        """

        async def handler(identity: Identity) -> dict:
            return await assessments.generate_insights(identity.user_id, session_id)

        return await run_tool("generate_assessment_insights", verifier, access_token, handler)

    @mcp.tool
    async def get_assessment(access_token: str, session_id: str) -> str:
        """Read back one of the user's assessments, including any AI summary.

        Args:
            access_token: Bearer token of the signed-in user.
            session_id: The assessment's session id (MS-...).
        """
        return await run_tool(
            "get_assessment",
            verifier,
            access_token,
            lambda identity: {
                "assessment": assessments.summary(assessments.get(identity.user_id, session_id))
            },
        )

    @mcp.tool
    async def list_assessments(access_token: str) -> str:
        """List the user's assessments, oldest first, with the latest trend summary.

        Item responses are omitted; use get_assessment for the full record.

        Args:
            access_token: Bearer token of the signed-in user.
        """

        def handler(identity: Identity) -> dict:
            items = assessments.summaries(identity.user_id, detail=False)
            return {
                "assessments": items,
                "count": len(items),
                "trendInsights": assessments.latest_trend_insights(identity.user_id),
            }

        return await run_tool("list_assessments", verifier, access_token, handler)

    @mcp.tool
    async def generate_trend_insights(access_token: str) -> str:
        """Generate an AI summary of how the user's scores have changed over time.

        Only the ordered total scores and severity levels are shared with the
        AI provider.

        Args:
            access_token: Bearer token of the signed-in user.
        """

        async def handler(identity: Identity) -> dict:
            return await assessments.generate_trend_insights(identity.user_id)

        return await run_tool("generate_trend_insights", verifier, access_token, handler)

    @mcp.tool
    async def sync_user_analytics(access_token: str) -> str:
        """Re-send the user's assessments to the reporting tables.

        Args:
            access_token: Bearer token of the signed-in user.
        """
        return await run_tool(
            "sync_user_analytics",
            verifier,
            access_token,
            lambda identity: assessments.resync_user(identity.user_id),
        )

    @mcp.tool
    async def record_session_outcome(
        access_token: str,
        session_id: str,
        user_id: str,
        counselor_id: str,
        session_date: str,
        consent_to_research: bool,
        pre_session_phq9: int | None = None,
        post_session_phq9: int | None = None,
        session_duration_minutes: int | None = None,
        satisfaction_rating: int | None = None,
        follow_up_scheduled: bool | None = None,
    ) -> str:
        """Record a counselling session outcome in the reporting tables (admin only).

        User and counselor ids are hashed before storage. Nothing is written
        without the user's research consent.

        Args:
            access_token: Bearer token of an admin user.
            session_id: Counselling session id.
            user_id: The client's user id.
            counselor_id: The counselor's id.
            session_date: ISO 8601 date of the session.
            consent_to_research: Whether the client consented to research use.
            pre_session_phq9: PHQ-9 total before the session.
            post_session_phq9: PHQ-9 total after the session.
            session_duration_minutes: Session length.
            satisfaction_rating: Client satisfaction rating.
            follow_up_scheduled: Whether a follow-up was booked.
        """

        def handler(identity: Identity) -> dict:
            require_admin(identity)
            outcome = SessionOutcome(
                session_id=session_id,
                user_id=user_id,
                counselor_id=counselor_id,
                session_date=session_date,
                pre_session_phq9=pre_session_phq9,
                post_session_phq9=post_session_phq9,
                session_duration_minutes=session_duration_minutes,
                satisfaction_rating=satisfaction_rating,
                follow_up_scheduled=follow_up_scheduled,
            )
            result = assessments.record_session_outcome(
                outcome, consent_to_research=consent_to_research
            )
            return {"analytics": result.to_dict()}

        return await run_tool("record_session_outcome", verifier, access_token, handler)
