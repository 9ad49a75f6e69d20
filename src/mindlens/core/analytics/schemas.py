"""Row schemas for the analytical warehouse tables."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from mindlens.core.errors import ValidationError

ColumnType = Literal["STRING", "INTEGER", "FLOAT", "BOOLEAN", "TIMESTAMP"]

_SQL_TYPES: dict[str, str] = {
    "STRING": "TEXT",
    "INTEGER": "INTEGER",
    "FLOAT": "REAL",
    "BOOLEAN": "INTEGER",
    "TIMESTAMP": "TEXT",
}


@dataclass(frozen=True)
class Column:
    name: str
    type: ColumnType
    required: bool = False


@dataclass(frozen=True)
class TableSchema:
    """A named, typed table definition."""

    name: str
    columns: tuple[Column, ...]

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def ddl(self) -> str:
        cols = ",\n    ".join(
            f"{c.name} {_SQL_TYPES[c.type]}{' NOT NULL' if c.required else ''}"
            for c in self.columns
        )
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n    {cols}\n);"

    def validate_row(self, row: dict[str, Any]) -> dict[str, Any]:
        """Check a row against the schema and coerce booleans.

        Raises:
            ValidationError: On unknown columns, missing required values
                or values of the wrong type.
        """
        unknown = set(row) - set(self.column_names)
        if unknown:
            raise ValidationError(f"Unknown columns for {self.name}: {sorted(unknown)}")

        clean: dict[str, Any] = {}
        for col in self.columns:
            value = row.get(col.name)
            if value is None:
                if col.required:
                    raise ValidationError(f"{self.name}.{col.name} is required")
                clean[col.name] = None
                continue
            clean[col.name] = _coerce(self.name, col, value)
        return clean


def _coerce(table: str, col: Column, value: Any) -> Any:
    ok: bool
    if col.type == "BOOLEAN":
        ok = isinstance(value, bool)
        value = int(value) if ok else value
    elif col.type == "INTEGER":
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif col.type == "FLOAT":
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, str)
    if not ok:
        raise ValidationError(f"{table}.{col.name} expects {col.type}, got {type(value).__name__}")
    return value


ASSESSMENT_RECORDS = TableSchema(
    name="assessment_records",
    columns=(
        Column("assessment_id", "STRING", required=True),
        Column("user_hash", "STRING", required=True),
        Column("timestamp", "TIMESTAMP", required=True),
        *(Column(f"phq9_q{i}", "INTEGER", required=True) for i in range(1, 10)),
        Column("phq9_total_score", "INTEGER", required=True),
        Column("severity_level", "STRING", required=True),
        Column("requires_immediate_action", "BOOLEAN", required=True),
        Column("age_range", "STRING"),
        Column("gender", "STRING"),
        Column("timezone", "STRING"),
        Column("consent_research", "BOOLEAN", required=True),
    ),
)

EMOTION_ANALYSIS = TableSchema(
    name="emotion_analysis",
    columns=(
        Column("analysis_id", "STRING", required=True),
        Column("assessment_id", "STRING", required=True),
        Column("user_hash", "STRING", required=True),
        Column("timestamp", "TIMESTAMP", required=True),
        Column("primary_emotion", "STRING", required=True),
        Column("secondary_emotion", "STRING"),
        Column("confidence_score", "FLOAT", required=True),
        Column("facial_landmarks_detected", "BOOLEAN", required=True),
        Column("sadness_score", "FLOAT"),
        Column("anxiety_score", "FLOAT"),
        Column("neutral_score", "FLOAT"),
        Column("happiness_score", "FLOAT"),
        Column("anger_score", "FLOAT"),
        Column("fear_score", "FLOAT"),
        Column("model_version", "STRING", required=True),
    ),
)

USER_BEHAVIOR_PATTERNS = TableSchema(
    name="user_behavior_patterns",
    columns=(
        Column("behavior_id", "STRING", required=True),
        Column("user_hash", "STRING", required=True),
        Column("timestamp", "TIMESTAMP", required=True),
        Column("assessment_count", "INTEGER", required=True),
        Column("days_between_assessments", "INTEGER"),
        Column("score_trend", "STRING"),
        Column("engagement_level", "STRING"),
        Column("session_count", "INTEGER"),
        Column("last_session_days_ago", "INTEGER"),
        Column("crisis_alerts_count", "INTEGER"),
    ),
)

SESSION_OUTCOMES = TableSchema(
    name="session_outcomes",
    columns=(
        Column("session_id", "STRING", required=True),
        Column("user_hash", "STRING", required=True),
        Column("counselor_hash", "STRING", required=True),
        Column("session_date", "TIMESTAMP", required=True),
        Column("pre_session_phq9", "INTEGER"),
        Column("post_session_phq9", "INTEGER"),
        Column("score_improvement", "INTEGER"),
        Column("session_duration_minutes", "INTEGER"),
        Column("user_satisfaction_rating", "INTEGER"),
        Column("follow_up_scheduled", "BOOLEAN"),
    ),
)

ALL_TABLES: dict[str, TableSchema] = {
    t.name: t
    for t in (ASSESSMENT_RECORDS, EMOTION_ANALYSIS, USER_BEHAVIOR_PATTERNS, SESSION_OUTCOMES)
}
