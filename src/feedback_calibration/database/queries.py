"""
Data access layer for scores, voice metrics, feedback and calibration state.

All query methods take an open connection so callers can compose several of
them inside one ``Database.transaction()`` block.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.database import (
    CalibrationHistoryEntry,
    CalibrationState,
    FeedbackRecord,
    FeedbackType,
    Score,
    VoiceMetric,
    VoiceMetricSnapshot,
)
from .connection import from_db_timestamp, to_db_timestamp


logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class FeedbackFilters:
    """Optional filters for feedback queries."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    evaluator_id: Optional[str] = None
    parameter_id: Optional[str] = None
    feedback_type: Optional[FeedbackType] = None
    evaluation_id: Optional[str] = None

    def to_sql(self) -> Tuple[str, List[Any]]:
        """Build a WHERE clause over feedback_records f LEFT JOIN scores s."""
        conditions = []
        params: List[Any] = []

        if self.start is not None:
            conditions.append("f.created_at >= ?")
            params.append(to_db_timestamp(self.start))
        if self.end is not None:
            conditions.append("f.created_at <= ?")
            params.append(to_db_timestamp(self.end))
        if self.evaluator_id:
            conditions.append("f.evaluator_id = ?")
            params.append(self.evaluator_id)
        if self.parameter_id:
            conditions.append("s.parameter_id = ?")
            params.append(self.parameter_id)
        if self.feedback_type is not None:
            conditions.append("f.feedback_type = ?")
            params.append(FeedbackType(self.feedback_type).value)
        if self.evaluation_id:
            conditions.append("f.evaluation_id = ?")
            params.append(self.evaluation_id)

        where = " WHERE " + " AND ".join(conditions) if conditions else ""
        return where, params


def _row_to_score(row: sqlite3.Row) -> Score:
    return Score(
        id=row["id"],
        evaluation_id=row["evaluation_id"],
        parameter_id=row["parameter_id"],
        value=row["value"],
        note=row["note"] or "",
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


def _row_to_feedback(row: sqlite3.Row) -> FeedbackRecord:
    return FeedbackRecord(
        id=row["id"],
        evaluation_id=row["evaluation_id"],
        evaluator_id=row["evaluator_id"],
        feedback_type=FeedbackType(row["feedback_type"]),
        score_ref=row["score_ref"],
        voice_metric=VoiceMetric(row["voice_metric"]) if row["voice_metric"] else None,
        original_score=row["original_score"],
        adjusted_score=row["adjusted_score"],
        comment=row["comment"],
        created_at=from_db_timestamp(row["created_at"]),
    )


def _row_to_state(row: sqlite3.Row) -> CalibrationState:
    return CalibrationState(
        parameter_id=row["parameter_id"],
        adjustment=row["adjustment"],
        guidance=row["guidance"] or "",
        total_feedback_count=row["total_feedback_count"],
        last_batch_avg_adjustment=row["last_batch_avg_adjustment"],
        last_analyzed_at=from_db_timestamp(row["last_analyzed_at"]),
    )


def _parse_evaluator_ids(raw: Optional[str], entry_id: str) -> List[str]:
    """Parse the stored JSON id list, tolerating malformed data."""
    if not raw:
        return []
    try:
        ids = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Could not parse evaluator_ids for history entry {entry_id}: {raw!r}")
        return []
    if not isinstance(ids, list):
        logger.warning(f"evaluator_ids for history entry {entry_id} is not a list: {raw!r}")
        return []
    return [str(i) for i in ids]


def _row_to_history(row: sqlite3.Row) -> CalibrationHistoryEntry:
    return CalibrationHistoryEntry(
        id=row["id"],
        parameter_id=row["parameter_id"],
        previous_adjustment=row["previous_adjustment"],
        new_adjustment=row["new_adjustment"],
        previous_guidance=row["previous_guidance"] or "",
        new_guidance=row["new_guidance"] or "",
        feedback_count=row["feedback_count"],
        period_start=from_db_timestamp(row["period_start"]),
        period_end=from_db_timestamp(row["period_end"]),
        evaluator_ids=_parse_evaluator_ids(row["evaluator_ids"], row["id"]),
        summary=row["summary"] or "",
        created_at=from_db_timestamp(row["created_at"]),
    )


class ScoreQueries:
    """Access to the scores table."""

    @staticmethod
    def upsert(conn: sqlite3.Connection, evaluation_id: str, parameter_id: str,
               value: int, note: str, now: datetime) -> Score:
        """Insert or overwrite the score for (evaluation, parameter); the row id is preserved."""
        stamp = to_db_timestamp(now)
        conn.execute(
            """
            INSERT INTO scores (id, evaluation_id, parameter_id, value, note, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (evaluation_id, parameter_id) DO UPDATE SET
                value = excluded.value,
                note = excluded.note,
                updated_at = excluded.updated_at
            """,
            (new_id(), evaluation_id, parameter_id, value, note, stamp, stamp),
        )
        return ScoreQueries.find(conn, evaluation_id, parameter_id)

    @staticmethod
    def get(conn: sqlite3.Connection, score_id: str) -> Optional[Score]:
        row = conn.execute("SELECT * FROM scores WHERE id = ?", (score_id,)).fetchone()
        return _row_to_score(row) if row else None

    @staticmethod
    def find(conn: sqlite3.Connection, evaluation_id: str, parameter_id: str) -> Optional[Score]:
        row = conn.execute(
            "SELECT * FROM scores WHERE evaluation_id = ? AND parameter_id = ?",
            (evaluation_id, parameter_id),
        ).fetchone()
        return _row_to_score(row) if row else None

    @staticmethod
    def list_for_evaluation(conn: sqlite3.Connection, evaluation_id: str) -> List[Score]:
        rows = conn.execute(
            "SELECT * FROM scores WHERE evaluation_id = ? ORDER BY parameter_id ASC",
            (evaluation_id,),
        ).fetchall()
        return [_row_to_score(row) for row in rows]

    @staticmethod
    def update_value(conn: sqlite3.Connection, score_id: str, value: int, now: datetime) -> None:
        """Overwrite a score's value, leaving its note untouched."""
        conn.execute(
            "UPDATE scores SET value = ?, updated_at = ? WHERE id = ?",
            (value, to_db_timestamp(now), score_id),
        )


class VoiceMetricQueries:
    """Access to the voice_metric_snapshots table."""

    @staticmethod
    def get(conn: sqlite3.Connection, evaluation_id: str) -> Optional[VoiceMetricSnapshot]:
        row = conn.execute(
            "SELECT * FROM voice_metric_snapshots WHERE evaluation_id = ?",
            (evaluation_id,),
        ).fetchone()
        if not row:
            return None
        return VoiceMetricSnapshot(
            evaluation_id=row["evaluation_id"],
            clarity=row["clarity"],
            volume=row["volume"],
            pace=row["pace"],
            tone=row["tone"],
            overall=row["overall"],
            updated_at=from_db_timestamp(row["updated_at"]),
        )

    @staticmethod
    def save(conn: sqlite3.Connection, snapshot: VoiceMetricSnapshot, now: datetime) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO voice_metric_snapshots (
                evaluation_id, clarity, volume, pace, tone, overall, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot.evaluation_id, snapshot.clarity, snapshot.volume,
                snapshot.pace, snapshot.tone, snapshot.overall, to_db_timestamp(now),
            ),
        )


class FeedbackQueries:
    """Access to the feedback_records table."""

    @staticmethod
    def insert(conn: sqlite3.Connection, record: FeedbackRecord) -> None:
        conn.execute(
            """
            INSERT INTO feedback_records (
                id, evaluation_id, evaluator_id, feedback_type, score_ref,
                voice_metric, original_score, adjusted_score, comment, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id, record.evaluation_id, record.evaluator_id,
                record.feedback_type.value, record.score_ref,
                record.voice_metric.value if record.voice_metric else None,
                record.original_score, record.adjusted_score, record.comment,
                to_db_timestamp(record.created_at),
            ),
        )

    @staticmethod
    def get(conn: sqlite3.Connection, feedback_id: str) -> Optional[FeedbackRecord]:
        row = conn.execute("SELECT * FROM feedback_records WHERE id = ?", (feedback_id,)).fetchone()
        return _row_to_feedback(row) if row else None

    @staticmethod
    def delete(conn: sqlite3.Connection, feedback_id: str) -> bool:
        cursor = conn.execute("DELETE FROM feedback_records WHERE id = ?", (feedback_id,))
        return cursor.rowcount > 0

    @staticmethod
    def select_for_calibration(conn: sqlite3.Connection, parameter_id: str,
                               period_start: datetime, period_end: datetime) -> List[FeedbackRecord]:
        """Score corrections with an adjusted value, in the window, resolving to the parameter."""
        rows = conn.execute(
            """
            SELECT f.* FROM feedback_records f
            JOIN scores s ON s.id = f.score_ref
            WHERE f.feedback_type = 'score'
              AND f.adjusted_score IS NOT NULL
              AND f.created_at BETWEEN ? AND ?
              AND s.parameter_id = ?
            ORDER BY f.created_at ASC, f.rowid ASC
            """,
            (to_db_timestamp(period_start), to_db_timestamp(period_end), parameter_id),
        ).fetchall()
        return [_row_to_feedback(row) for row in rows]

    @staticmethod
    def count_since(conn: sqlite3.Connection, since: Optional[datetime]) -> int:
        """Count feedback created strictly after ``since`` (all feedback when None)."""
        if since is None:
            row = conn.execute("SELECT COUNT(*) AS n FROM feedback_records").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM feedback_records WHERE created_at > ?",
                (to_db_timestamp(since),),
            ).fetchone()
        return row["n"]

    @staticmethod
    def search(conn: sqlite3.Connection, filters: FeedbackFilters,
               offset: int = 0, limit: Optional[int] = None) -> Tuple[List[FeedbackRecord], int]:
        """Filtered records newest-first plus the unpaginated total."""
        where, params = filters.to_sql()
        base = f"FROM feedback_records f LEFT JOIN scores s ON s.id = f.score_ref{where}"

        total = conn.execute(f"SELECT COUNT(*) AS n {base}", params).fetchone()["n"]

        query = f"SELECT f.* {base} ORDER BY f.created_at DESC, f.rowid DESC"
        query_params = list(params)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            query_params.extend([limit, offset])

        rows = conn.execute(query, query_params).fetchall()
        return [_row_to_feedback(row) for row in rows], total

    @staticmethod
    def counts_by_evaluator(conn: sqlite3.Connection, filters: FeedbackFilters) -> Dict[str, int]:
        where, params = filters.to_sql()
        rows = conn.execute(
            f"""
            SELECT f.evaluator_id AS evaluator_id, COUNT(f.id) AS n
            FROM feedback_records f LEFT JOIN scores s ON s.id = f.score_ref{where}
            GROUP BY f.evaluator_id
            ORDER BY n DESC, f.evaluator_id ASC
            """,
            params,
        ).fetchall()
        return {row["evaluator_id"]: row["n"] for row in rows}

    @staticmethod
    def score_averages(conn: sqlite3.Connection, filters: FeedbackFilters) -> Tuple[int, Optional[float], Optional[float]]:
        """Count and mean original/adjusted score over score-type matches."""
        where, params = filters.to_sql()
        clause = f"{where} AND f.feedback_type = 'score'" if where else " WHERE f.feedback_type = 'score'"
        row = conn.execute(
            f"""
            SELECT COUNT(f.id) AS n, AVG(f.original_score) AS avg_original,
                   AVG(f.adjusted_score) AS avg_adjusted
            FROM feedback_records f LEFT JOIN scores s ON s.id = f.score_ref{clause}
            """,
            params,
        ).fetchone()
        return row["n"], row["avg_original"], row["avg_adjusted"]


class CalibrationQueries:
    """Access to calibration_states, calibration_history and calibration_runs."""

    @staticmethod
    def get_state(conn: sqlite3.Connection, parameter_id: str) -> Optional[CalibrationState]:
        row = conn.execute(
            "SELECT * FROM calibration_states WHERE parameter_id = ?", (parameter_id,)
        ).fetchone()
        return _row_to_state(row) if row else None

    @staticmethod
    def list_states(conn: sqlite3.Connection) -> List[CalibrationState]:
        rows = conn.execute("SELECT * FROM calibration_states ORDER BY parameter_id ASC").fetchall()
        return [_row_to_state(row) for row in rows]

    @staticmethod
    def upsert_state(conn: sqlite3.Connection, state: CalibrationState) -> None:
        conn.execute(
            """
            INSERT INTO calibration_states (
                parameter_id, adjustment, guidance, total_feedback_count,
                last_batch_avg_adjustment, last_analyzed_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (parameter_id) DO UPDATE SET
                adjustment = excluded.adjustment,
                guidance = excluded.guidance,
                total_feedback_count = excluded.total_feedback_count,
                last_batch_avg_adjustment = excluded.last_batch_avg_adjustment,
                last_analyzed_at = excluded.last_analyzed_at
            """,
            (
                state.parameter_id, state.adjustment, state.guidance,
                state.total_feedback_count, state.last_batch_avg_adjustment,
                to_db_timestamp(state.last_analyzed_at) if state.last_analyzed_at else None,
            ),
        )

    @staticmethod
    def insert_history(conn: sqlite3.Connection, entry: CalibrationHistoryEntry) -> None:
        conn.execute(
            """
            INSERT INTO calibration_history (
                id, parameter_id, previous_adjustment, new_adjustment,
                previous_guidance, new_guidance, feedback_count, period_start,
                period_end, evaluator_ids, summary, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id, entry.parameter_id, entry.previous_adjustment,
                entry.new_adjustment, entry.previous_guidance, entry.new_guidance,
                entry.feedback_count, to_db_timestamp(entry.period_start),
                to_db_timestamp(entry.period_end), json.dumps(entry.evaluator_ids),
                entry.summary, to_db_timestamp(entry.created_at),
            ),
        )

    @staticmethod
    def list_history(conn: sqlite3.Connection, parameter_id: Optional[str] = None,
                     limit: int = 50) -> List[CalibrationHistoryEntry]:
        """History entries newest-first."""
        query = "SELECT * FROM calibration_history"
        params: List[Any] = []
        if parameter_id:
            query += " WHERE parameter_id = ?"
            params.append(parameter_id)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        rows = conn.execute(query, params).fetchall()
        return [_row_to_history(row) for row in rows]

    @staticmethod
    def insert_run(conn: sqlite3.Connection, period_start: datetime, period_end: datetime,
                   total_feedbacks: int, created_at: datetime) -> str:
        """Log one analysis run, including runs that changed no state."""
        run_id = new_id()
        conn.execute(
            """
            INSERT INTO calibration_runs (id, period_start, period_end, total_feedbacks, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                run_id, to_db_timestamp(period_start), to_db_timestamp(period_end),
                total_feedbacks, to_db_timestamp(created_at),
            ),
        )
        return run_id

    @staticmethod
    def latest_analysis_at(conn: sqlite3.Connection) -> Optional[datetime]:
        """Most recent time any analysis ran or wrote state or history."""
        row = conn.execute(
            """
            SELECT MAX(latest) AS latest FROM (
                SELECT MAX(created_at) AS latest FROM calibration_runs
                UNION ALL
                SELECT MAX(created_at) AS latest FROM calibration_history
                UNION ALL
                SELECT MAX(last_analyzed_at) AS latest FROM calibration_states
            )
            """
        ).fetchone()
        return from_db_timestamp(row["latest"]) if row else None
