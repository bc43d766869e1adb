"""
Data access for the analyzer stores.

Change log and metrics are append-only, predictions are latest-wins per flag,
anomalies are append-only except for the externally driven resolved flag.
"""

import json
import sqlite3
from typing import Any, List, Optional, Tuple

from .db import get_db
from .schema import (
    Anomaly,
    ConversationMessage,
    FeatureFlag,
    FlagChange,
    ImpactMetrics,
    ImpactPrediction,
    snapshot_to_jsonable,
    utc_now_iso,
)


def _loads(raw: Optional[str], default: Any) -> Any:
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def _row_to_flag(row: sqlite3.Row) -> FeatureFlag:
    return FeatureFlag(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        enabled=bool(row["enabled"]),
        rollout_percentage=row["rollout_percentage"] or 0,
        target_environment=row["target_environment"] or "development",
        owner=row["owner"] or "system",
        tags=_loads(row["tags"], []),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_change(row: sqlite3.Row) -> FlagChange:
    return FlagChange(
        id=row["id"],
        flag_id=row["flag_id"],
        flag_name=row["flag_name"] or "",
        change_type=row["change_type"],
        previous_value=_loads(row["previous_value"], None),
        new_value=_loads(row["new_value"], None),
        changed_by=row["changed_by"] or "system",
        changed_at=row["changed_at"],
        environment=row["environment"] or "development",
    )


def _row_to_metrics(row: sqlite3.Row) -> ImpactMetrics:
    return ImpactMetrics(
        flag_id=row["flag_id"],
        timestamp=row["timestamp"],
        error_rate=row["error_rate"],
        latency_p50=row["latency_p50"],
        latency_p99=row["latency_p99"] or 0.0,
        request_count=row["request_count"] or 0,
        conversion_rate=row["conversion_rate"] or 0.0,
        user_satisfaction_score=row["user_satisfaction_score"] or 0.0,
    )


def _row_to_prediction(row: sqlite3.Row) -> ImpactPrediction:
    return ImpactPrediction(
        flag_id=row["flag_id"],
        flag_name=row["flag_name"] or "",
        risk_level=row["risk_level"],
        risk_score=row["risk_score"],
        predicted_impact=_loads(row["predicted_impact"], {}),
        recommendations=_loads(row["recommendations"], []),
        reasoning=row["reasoning"] or "",
        confidence=row["confidence"],
        generated_at=row["generated_at"],
    )


def _row_to_anomaly(row: sqlite3.Row) -> Anomaly:
    return Anomaly(
        id=row["id"],
        flag_id=row["flag_id"],
        flag_name=row["flag_name"] or row["flag_id"],
        type=row["type"],
        severity=row["severity"],
        detected_at=row["detected_at"],
        metrics=_loads(row["metrics"], {}),
        message=row["message"] or "",
        resolved=row["resolved"] == 1,
    )


# Flags

def create_flag(flag: FeatureFlag) -> FeatureFlag:
    """Insert a new flag row."""
    with get_db() as conn:
        conn.execute(
            """INSERT INTO feature_flags (id, name, description, enabled, rollout_percentage,
                   target_environment, created_at, updated_at, tags, owner)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                flag.id,
                flag.name,
                flag.description,
                1 if flag.enabled else 0,
                flag.rollout_percentage,
                flag.target_environment,
                flag.created_at,
                flag.updated_at,
                json.dumps(flag.tags),
                flag.owner,
            ),
        )
        conn.commit()
    return flag


def get_flag(flag_id: str) -> Optional[FeatureFlag]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM feature_flags WHERE id = ?", (flag_id,)).fetchone()
    return _row_to_flag(row) if row else None


def list_flags() -> List[FeatureFlag]:
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM feature_flags ORDER BY updated_at DESC").fetchall()
    return [_row_to_flag(row) for row in rows]


def update_flag_state(flag_id: str, enabled: Optional[bool] = None,
                      rollout_percentage: Optional[float] = None) -> Optional[FeatureFlag]:
    """Apply a toggle and/or rollout change in place. Returns the refreshed flag."""
    assignments = []
    params: List[Any] = []
    if enabled is not None:
        assignments.append("enabled = ?")
        params.append(1 if enabled else 0)
    if rollout_percentage is not None:
        assignments.append("rollout_percentage = ?")
        params.append(rollout_percentage)

    if assignments:
        assignments.append("updated_at = ?")
        params.append(utc_now_iso())
        params.append(flag_id)
        with get_db() as conn:
            conn.execute(
                f"UPDATE feature_flags SET {', '.join(assignments)} WHERE id = ?",
                params,
            )
            conn.commit()

    return get_flag(flag_id)


def get_flag_count() -> int:
    with get_db() as conn:
        return conn.execute("SELECT COUNT(*) FROM feature_flags").fetchone()[0]


# Change log

def add_change(change: FlagChange) -> FlagChange:
    """Append a change record."""
    with get_db() as conn:
        conn.execute(
            """INSERT INTO flag_changes (id, flag_id, flag_name, change_type, previous_value,
                   new_value, changed_by, changed_at, environment)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                change.id,
                change.flag_id,
                change.flag_name,
                change.change_type,
                json.dumps(snapshot_to_jsonable(change.previous_value)),
                json.dumps(snapshot_to_jsonable(change.new_value)),
                change.changed_by,
                change.changed_at,
                change.environment,
            ),
        )
        conn.commit()
    return change


def list_changes(flag_id: str, limit: int = 20) -> List[FlagChange]:
    """Most recent changes for a flag, newest first."""
    with get_db() as conn:
        rows = conn.execute(
            """SELECT * FROM flag_changes WHERE flag_id = ?
               ORDER BY changed_at DESC, rowid DESC LIMIT ?""",
            (flag_id, limit),
        ).fetchall()
    return [_row_to_change(row) for row in rows]


# Metrics

def add_metrics(metrics: ImpactMetrics) -> int:
    """Append a metrics sample, returning its row id."""
    with get_db() as conn:
        cursor = conn.execute(
            """INSERT INTO impact_metrics (flag_id, timestamp, error_rate, latency_p50, latency_p99,
                   request_count, conversion_rate, user_satisfaction_score)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                metrics.flag_id,
                metrics.timestamp,
                metrics.error_rate,
                metrics.latency_p50,
                metrics.latency_p99,
                metrics.request_count,
                metrics.conversion_rate,
                metrics.user_satisfaction_score,
            ),
        )
        conn.commit()
        return cursor.lastrowid


def list_metrics_with_ids(flag_id: str, limit: int) -> List[Tuple[int, ImpactMetrics]]:
    """Most recent samples for a flag, newest first; equal timestamps by insertion order."""
    with get_db() as conn:
        rows = conn.execute(
            """SELECT * FROM impact_metrics WHERE flag_id = ?
               ORDER BY timestamp DESC, id DESC LIMIT ?""",
            (flag_id, limit),
        ).fetchall()
    return [(row["id"], _row_to_metrics(row)) for row in rows]


def list_metrics(flag_id: str, limit: int = 100) -> List[ImpactMetrics]:
    return [metrics for _, metrics in list_metrics_with_ids(flag_id, limit)]


# Predictions

def upsert_prediction(prediction: ImpactPrediction) -> ImpactPrediction:
    """Store the current prediction for a flag, replacing any prior one."""
    with get_db() as conn:
        conn.execute(
            """INSERT OR REPLACE INTO predictions (flag_id, flag_name, risk_level, risk_score,
                   predicted_impact, recommendations, reasoning, confidence, generated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                prediction.flag_id,
                prediction.flag_name,
                prediction.risk_level,
                prediction.risk_score,
                json.dumps(prediction.predicted_impact.to_json_dict()),
                json.dumps(prediction.recommendations),
                prediction.reasoning,
                prediction.confidence,
                prediction.generated_at,
            ),
        )
        conn.commit()
    return prediction


def get_prediction(flag_id: str) -> Optional[ImpactPrediction]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM predictions WHERE flag_id = ?", (flag_id,)).fetchone()
    return _row_to_prediction(row) if row else None


def list_predictions() -> List[ImpactPrediction]:
    with get_db() as conn:
        rows = conn.execute("SELECT * FROM predictions ORDER BY generated_at DESC").fetchall()
    return [_row_to_prediction(row) for row in rows]


# Anomalies

def add_anomaly(anomaly: Anomaly) -> Anomaly:
    with get_db() as conn:
        conn.execute(
            """INSERT INTO anomalies (id, flag_id, flag_name, type, severity, detected_at,
                   metrics, message, resolved)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                anomaly.id,
                anomaly.flag_id,
                anomaly.flag_name,
                anomaly.type,
                anomaly.severity,
                anomaly.detected_at,
                json.dumps(anomaly.metrics.to_json_dict()),
                anomaly.message,
                1 if anomaly.resolved else 0,
            ),
        )
        conn.commit()
    return anomaly


def list_anomalies(unresolved_only: bool = True, limit: int = 20) -> List[Anomaly]:
    """Anomalies newest first."""
    query = "SELECT * FROM anomalies"
    if unresolved_only:
        query += " WHERE resolved = 0"
    query += " ORDER BY detected_at DESC, rowid DESC LIMIT ?"

    with get_db() as conn:
        rows = conn.execute(query, (limit,)).fetchall()
    return [_row_to_anomaly(row) for row in rows]


def resolve_anomaly(anomaly_id: str) -> Optional[Anomaly]:
    """Mark an anomaly resolved. Returns None when it does not exist."""
    with get_db() as conn:
        cursor = conn.execute("UPDATE anomalies SET resolved = 1 WHERE id = ?", (anomaly_id,))
        conn.commit()
        if cursor.rowcount == 0:
            return None
        row = conn.execute("SELECT * FROM anomalies WHERE id = ?", (anomaly_id,)).fetchone()
    return _row_to_anomaly(row)


# Conversations

def add_message(message: ConversationMessage) -> ConversationMessage:
    with get_db() as conn:
        conn.execute(
            """INSERT INTO conversations (id, session_id, role, content, timestamp, metadata)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                message.id,
                message.session_id,
                message.role,
                message.content,
                message.timestamp,
                json.dumps(message.metadata or {}),
            ),
        )
        conn.commit()
    return message


def list_session_messages(session_id: str, limit: int = 10) -> List[ConversationMessage]:
    """Last `limit` messages of a session, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            """SELECT * FROM conversations WHERE session_id = ?
               ORDER BY timestamp DESC, seq DESC LIMIT ?""",
            (session_id, limit),
        ).fetchall()

    messages = [
        ConversationMessage(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            timestamp=row["timestamp"],
            metadata=_loads(row["metadata"], None),
        )
        for row in rows
    ]
    messages.reverse()
    return messages
