"""Tests for the pseudonymization bridge and behavior summaries."""

from __future__ import annotations

import json
import random

import pytest

from mindlens.core.analytics.sink import SQLiteAnalyticalSink
from mindlens.core.errors import StoreUnavailable
from mindlens.domains.screening.models import AssessmentRecord, EmotionAnalysis, SessionOutcome
from mindlens.domains.screening.pseudonymization import (
    PseudonymizationBridge,
    average_days_between,
    engagement_level,
    score_trend,
)

USER_ID = "user-42"


def _record(
    session_id="MS-1",
    responses=None,
    consent=True,
    timestamp="2025-03-01T10:00:00+00:00",
    user_id=USER_ID,
) -> AssessmentRecord:
    responses = responses if responses is not None else [1, 1, 1, 1, 1, 1, 1, 1, 0]
    score = sum(responses)
    return AssessmentRecord(
        session_id=session_id,
        user_id=user_id,
        timestamp=timestamp,
        responses=responses,
        score=score,
        requires_immediate_action=responses[8] >= 2 or score >= 20,
        consent_to_research=consent,
    )


class _DownSink:
    def insert_rows(self, table, rows):
        raise StoreUnavailable("warehouse offline")

    def query(self, sql, params=()):
        raise StoreUnavailable("warehouse offline")


class TestHelpers:
    def test_score_trend(self):
        assert score_trend([20]) == "stable"
        assert score_trend([20, 21, 22, 10, 9, 8]) == "improving"
        assert score_trend([5, 5, 5, 15, 16, 17]) == "declining"
        assert score_trend([10, 11, 10, 11, 10, 11]) == "stable"

    def test_engagement_level(self):
        assert engagement_level(1) == "low"
        assert engagement_level(2) == "medium"
        assert engagement_level(5) == "high"

    def test_average_days_between(self):
        assert average_days_between(["2025-01-01T00:00:00Z"]) is None
        assert average_days_between([
            "2025-01-15T00:00:00+00:00",
            "2025-01-01T00:00:00+00:00",
            "2025-01-08T00:00:00+00:00",
        ]) == 7


class TestAssessmentRow:
    def test_identifiers_hashed(self, bridge: PseudonymizationBridge, crypto):
        row = bridge.assessment_row(_record())
        assert row["user_hash"] == crypto.hash_identifier(USER_ID)
        assert USER_ID not in json.dumps(row)

    def test_items_and_band(self, bridge: PseudonymizationBridge):
        row = bridge.assessment_row(_record(responses=[2, 2, 2, 2, 2, 2, 0, 0, 0]))
        assert [row[f"phq9_q{i}"] for i in range(1, 10)] == [2, 2, 2, 2, 2, 2, 0, 0, 0]
        assert row["phq9_total_score"] == 12
        assert row["severity_level"] == "moderate"

    def test_no_consent_no_row(self, bridge: PseudonymizationBridge):
        assert bridge.assessment_row(_record(consent=False)) is None


class TestMirrors:
    def test_written(self, bridge: PseudonymizationBridge, sink: SQLiteAnalyticalSink):
        result = bridge.mirror_assessment(_record())
        assert result.status == "written"
        assert sink.query("SELECT COUNT(*) AS n FROM assessment_records")[0]["n"] == 1

    def test_skipped_without_consent(self, bridge, sink):
        result = bridge.mirror_assessment(_record(consent=False))
        assert result.status == "skipped"
        assert result.reason == "no research consent"
        assert sink.query("SELECT COUNT(*) AS n FROM assessment_records")[0]["n"] == 0

    def test_disabled_sink(self, crypto):
        bridge = PseudonymizationBridge(crypto, None)
        assert not bridge.enabled
        assert bridge.mirror_assessment(_record()).reason == "analytical sink disabled"

    def test_unavailable_sink_fails_softly(self, crypto, caplog):
        bridge = PseudonymizationBridge(crypto, _DownSink())
        with caplog.at_level("WARNING"):
            result = bridge.mirror_assessment(_record())
        assert result.status == "failed"
        assert "warehouse offline" in result.reason
        assert "dropped" in caplog.text

    def test_emotion_row(self, bridge, sink):
        analysis = EmotionAnalysis(
            primary_emotion="sadness",
            confidence=0.8,
            scores={"sadness": 0.8, "neutral": 0.1},
            model_version="v2",
        )
        assert bridge.mirror_emotion_analysis(_record(), analysis).status == "written"
        row = sink.query("SELECT * FROM emotion_analysis")[0]
        assert row["analysis_id"] == "EMOTION-MS-1"
        assert row["sadness_score"] == pytest.approx(0.8)
        assert row["anger_score"] is None

    def test_behavior(self, bridge, sink):
        records = [
            _record("MS-1", timestamp="2025-01-01T00:00:00+00:00"),
            _record("MS-2", responses=[0] * 8 + [2], timestamp="2025-01-11T00:00:00+00:00"),
        ]
        result = bridge.mirror_behavior(USER_ID, True, records, session_count=3)
        assert result.status == "written"
        row = sink.query("SELECT * FROM user_behavior_patterns")[0]
        assert row["assessment_count"] == 2
        assert row["days_between_assessments"] == 10
        assert row["engagement_level"] == "medium"
        assert row["crisis_alerts_count"] == 1
        assert row["session_count"] == 3

    def test_behavior_without_assessments(self, bridge):
        assert bridge.mirror_behavior(USER_ID, True, []).reason == "no consenting assessments"

    def test_behavior_counts_only_consenting_records(self, bridge, sink):
        severe = [3, 3, 3, 3, 3, 3, 3, 0, 0]
        records = [
            _record(f"MS-{i}", responses=severe, consent=False,
                    timestamp=f"2025-01-0{i}T00:00:00+00:00")
            for i in range(1, 4)
        ]
        records.append(_record("MS-4", timestamp="2025-01-09T00:00:00+00:00"))

        assert bridge.mirror_behavior(USER_ID, True, records).status == "written"
        row = sink.query("SELECT * FROM user_behavior_patterns")[0]
        assert row["assessment_count"] == 1
        assert row["crisis_alerts_count"] == 0
        assert row["score_trend"] == "stable"
        assert row["engagement_level"] == "low"

    def test_behavior_all_records_withheld(self, bridge, sink):
        records = [_record("MS-1", consent=False), _record("MS-2", consent=False)]
        result = bridge.mirror_behavior(USER_ID, True, records)
        assert result.status == "skipped"
        assert sink.query("SELECT COUNT(*) AS n FROM user_behavior_patterns")[0]["n"] == 0

    def test_behavior_without_consent(self, bridge):
        assert bridge.mirror_behavior(USER_ID, False, [_record()]).status == "skipped"

    def test_session_outcome(self, bridge, sink, crypto):
        outcome = SessionOutcome(
            session_id="S-1",
            user_id=USER_ID,
            counselor_id="counselor-7",
            session_date="2025-02-01T09:00:00+00:00",
            pre_session_phq9=14,
            post_session_phq9=9,
            follow_up_scheduled=True,
        )
        assert bridge.mirror_session_outcome(outcome, True).status == "written"
        row = sink.query("SELECT * FROM session_outcomes")[0]
        assert row["score_improvement"] == 5
        assert row["counselor_hash"] == crypto.hash_identifier("counselor-7")
        assert row["follow_up_scheduled"] == 1


class TestConsentProperty:
    def test_only_consenting_users_reach_the_sink(self, bridge, sink, crypto):
        rng = random.Random(20250301)
        consenting: set[str] = set()
        for i in range(60):
            user_id = f"user-{rng.randint(0, 15)}"
            consent = rng.random() < 0.5
            if consent:
                consenting.add(crypto.hash_identifier(user_id))
            bridge.mirror_assessment(_record(
                session_id=f"MS-{i}",
                responses=[rng.randint(0, 3) for _ in range(9)],
                consent=consent,
                user_id=user_id,
            ))

        rows = sink.query("SELECT user_hash, consent_research FROM assessment_records")
        assert {r["user_hash"] for r in rows} <= consenting
        assert all(r["consent_research"] == 1 for r in rows)
