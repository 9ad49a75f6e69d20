"""Read-only reporting over the pseudonymized analytical tables."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mindlens.core.errors import StoreUnavailable
from mindlens.domains.screening.phq9 import SEVERITY_BANDS

if TYPE_CHECKING:
    from mindlens.core.analytics.sink import AnalyticalSink
    from mindlens.core.crypto.encryption import CryptoService

logger = logging.getLogger(__name__)

MAX_QUERY_ROWS = 1000


class ReportingService:
    """Dashboard statistics, per-user trends and ad-hoc read-only queries."""

    def __init__(self, sink: AnalyticalSink | None, crypto: CryptoService) -> None:
        self._sink = sink
        self._crypto = crypto

    def _require_sink(self) -> AnalyticalSink:
        if self._sink is None:
            raise StoreUnavailable("analytical sink disabled")
        return self._sink

    def dashboard_statistics(self) -> dict[str, Any]:
        sink = self._require_sink()
        totals = sink.query(
            """SELECT COUNT(*) AS total_assessments,
                      COUNT(DISTINCT user_hash) AS unique_users,
                      AVG(phq9_total_score) AS average_score,
                      SUM(requires_immediate_action) AS crisis_count
               FROM assessment_records"""
        )[0]
        severity_rows = sink.query(
            "SELECT severity_level, COUNT(*) AS n FROM assessment_records GROUP BY severity_level"
        )
        emotion_rows = sink.query(
            "SELECT primary_emotion, COUNT(*) AS n FROM emotion_analysis "
            "GROUP BY primary_emotion ORDER BY n DESC"
        )

        severity = {band: 0 for band in SEVERITY_BANDS}
        for row in severity_rows:
            severity[row["severity_level"]] = row["n"]
        average = totals["average_score"]
        return {
            "totalAssessments": totals["total_assessments"],
            "uniqueUsers": totals["unique_users"],
            "averageScore": round(average, 2) if average is not None else None,
            "crisisCount": totals["crisis_count"] or 0,
            "severityDistribution": severity,
            "emotionDistribution": {r["primary_emotion"]: r["n"] for r in emotion_rows},
        }

    def user_analytics(self, user_id: str) -> dict[str, Any]:
        """Score history and latest behaviour pattern for one user, by hash."""
        sink = self._require_sink()
        user_hash = self._crypto.hash_identifier(user_id)
        scores = sink.query(
            "SELECT timestamp, phq9_total_score AS score, severity_level AS severity "
            "FROM assessment_records WHERE user_hash = ? ORDER BY timestamp",
            (user_hash,),
        )
        behavior = sink.query(
            "SELECT assessment_count, days_between_assessments, score_trend, "
            "engagement_level, crisis_alerts_count FROM user_behavior_patterns "
            "WHERE user_hash = ? ORDER BY timestamp DESC LIMIT 1",
            (user_hash,),
        )
        return {
            "userHash": user_hash,
            "assessments": scores,
            "behavior": behavior[0] if behavior else None,
        }

    def query(self, sql: str) -> dict[str, Any]:
        rows = self._require_sink().query(sql)
        truncated = len(rows) > MAX_QUERY_ROWS
        if truncated:
            logger.info("Ad-hoc query truncated to %d rows", MAX_QUERY_ROWS)
        return {
            "rows": rows[:MAX_QUERY_ROWS],
            "rowCount": len(rows),
            "truncated": truncated,
        }
