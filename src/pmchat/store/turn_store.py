"""Durable storage for chat turns and feedback, plus the quality aggregator.

Turns and feedback are append-only: each write is a single-row insert and
nothing is ever updated in place. Statistics are computed on read from the
joined tables, so identical filters give identical numbers until the next
write.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import duckdb

from pmchat.contracts import (
    ChartPoint,
    ChartType,
    Feedback,
    FeedbackDetail,
    FeedbackEntry,
    FeedbackRating,
    FeedbackStats,
    MindmapNode,
    StatsFilter,
    Turn,
    TurnRole,
)
from pmchat.errors import TurnNotFound

_LOGGER = logging.getLogger(__name__)

_TURN_COLUMNS = (
    "turn_id, role, content, sql_query, chart_type, chart_data, mindmap_data, mindmap_expand_depth, "
    "user_query, processing_time_ms, sql_gen_time_ms, sql_exec_time_ms, error_message, project_id, created_at"
)
_FEEDBACK_COLUMNS = (
    "feedback_id, turn_id, rating, comment, is_sql_correct, is_response_helpful, is_chart_useful, tags, created_at"
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_turn_id() -> str:
    return str(uuid.uuid4())


def _row_to_turn(row: tuple[Any, ...]) -> Turn:
    chart_data = None
    if row[5]:
        chart_data = [ChartPoint(**point) for point in json.loads(row[5])]
    mindmap_data = MindmapNode.model_validate_json(row[6]) if row[6] else None
    return Turn(
        id=str(row[0]),
        role=TurnRole(row[1]),
        content=row[2] or "",
        sql_query=row[3],
        chart_type=ChartType(row[4] or "none"),
        chart_data=chart_data,
        mindmap_data=mindmap_data,
        mindmap_expand_depth=row[7],
        user_query=row[8],
        processing_time_ms=float(row[9] or 0.0),
        sql_gen_time_ms=row[10],
        sql_exec_time_ms=row[11],
        error_message=row[12],
        project_id=row[13],
        created_at=row[14],
    )


def _row_to_feedback(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "turn_id": str(row[1]),
        "rating": FeedbackRating(row[2]),
        "comment": row[3],
        "is_sql_correct": row[4],
        "is_response_helpful": row[5],
        "is_chart_useful": row[6],
        "tags": json.loads(row[7]) if row[7] else [],
        "created_at": row[8],
    }


def _feedback_filter_clause(flt: StatsFilter | None) -> tuple[str, list[Any]]:
    """WHERE clause over ``f`` (feedback) joined to ``t`` (turns)."""
    clauses: list[str] = []
    params: list[Any] = []
    if flt is None:
        return "", params
    if flt.project_id:
        clauses.append("t.project_id = ?")
        params.append(flt.project_id)
    if flt.rating is not None:
        clauses.append("f.rating = ?")
        params.append(flt.rating.value)
    if flt.start_date is not None:
        clauses.append("t.created_at >= ?")
        params.append(datetime.combine(flt.start_date, datetime.min.time()))
    if flt.end_date is not None:
        clauses.append("t.created_at < ?")
        params.append(datetime.combine(flt.end_date + timedelta(days=1), datetime.min.time()))
    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


class TurnStore:
    """Thread-safe turn and feedback persistence on DuckDB."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser()
        self._lock = threading.RLock()
        self._ensure_tables()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return duckdb.connect(str(self.db_path), read_only=False)

    def _ensure_tables(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("CREATE SEQUENCE IF NOT EXISTS pmchat_turn_seq START 1")
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS pmchat_turns (
                        seq BIGINT DEFAULT nextval('pmchat_turn_seq'),
                        turn_id VARCHAR NOT NULL,
                        role VARCHAR NOT NULL,
                        content VARCHAR,
                        sql_query VARCHAR,
                        chart_type VARCHAR,
                        chart_data VARCHAR,
                        mindmap_data VARCHAR,
                        mindmap_expand_depth INTEGER,
                        user_query VARCHAR,
                        processing_time_ms DOUBLE,
                        sql_gen_time_ms DOUBLE,
                        sql_exec_time_ms DOUBLE,
                        error_message VARCHAR,
                        project_id VARCHAR,
                        created_at TIMESTAMP
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS pmchat_feedback (
                        feedback_id VARCHAR NOT NULL,
                        turn_id VARCHAR NOT NULL,
                        rating VARCHAR NOT NULL,
                        comment VARCHAR,
                        is_sql_correct BOOLEAN,
                        is_response_helpful BOOLEAN,
                        is_chart_useful BOOLEAN,
                        tags VARCHAR,
                        created_at TIMESTAMP
                    )
                    """
                )
            finally:
                conn.close()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def record_turn(self, turn: Turn) -> Turn:
        """Append one turn. Never computes statistics."""
        chart_data = (
            json.dumps([point.model_dump() for point in turn.chart_data]) if turn.chart_data is not None else None
        )
        mindmap_data = turn.mindmap_data.model_dump_json(exclude_none=True) if turn.mindmap_data else None
        created_at = turn.created_at
        if created_at.tzinfo is not None:
            created_at = created_at.astimezone(timezone.utc).replace(tzinfo=None)

        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    f"INSERT INTO pmchat_turns ({_TURN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        turn.id,
                        turn.role.value,
                        turn.content,
                        turn.sql_query,
                        turn.chart_type.value,
                        chart_data,
                        mindmap_data,
                        turn.mindmap_expand_depth,
                        turn.user_query,
                        turn.processing_time_ms,
                        turn.sql_gen_time_ms,
                        turn.sql_exec_time_ms,
                        turn.error_message,
                        turn.project_id,
                        created_at,
                    ],
                )
            finally:
                conn.close()
        _LOGGER.debug("Recorded %s turn %s", turn.role.value, turn.id)
        return turn

    def get_turn(self, turn_id: str) -> Turn | None:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    f"SELECT {_TURN_COLUMNS} FROM pmchat_turns WHERE turn_id = ?", [turn_id]
                ).fetchone()
            finally:
                conn.close()
        return _row_to_turn(row) if row else None

    def list_turns(self, project_id: str | None = None, limit: int = 50) -> list[Turn]:
        """Chat history, oldest first: the newest ``limit`` turns, all projects when ``project_id`` is None."""
        where = "WHERE project_id = ?" if project_id else ""
        params: list[Any] = [project_id] if project_id else []
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"""
                    SELECT {_TURN_COLUMNS} FROM (
                        SELECT * FROM pmchat_turns {where}
                        ORDER BY created_at DESC, seq DESC
                        LIMIT ?
                    ) ORDER BY created_at ASC, seq ASC
                    """,
                    [*params, limit],
                ).fetchall()
            finally:
                conn.close()
        return [_row_to_turn(row) for row in rows]

    def recent_history(self, project_id: str | None, limit: int) -> list[Turn]:
        """The last ``limit`` turns of one conversation scope (None = cross-project), oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"""
                    SELECT {_TURN_COLUMNS} FROM (
                        SELECT * FROM pmchat_turns
                        WHERE project_id IS NOT DISTINCT FROM ?
                        ORDER BY created_at DESC, seq DESC
                        LIMIT ?
                    ) ORDER BY created_at ASC, seq ASC
                    """,
                    [project_id, limit],
                ).fetchall()
            finally:
                conn.close()
        return [_row_to_turn(row) for row in rows]

    def delete_turns(self, project_id: str | None = None) -> int:
        """Delete turns and their feedback for one project, or everything. Returns turns deleted."""
        where = "WHERE project_id = ?" if project_id else ""
        params: list[Any] = [project_id] if project_id else []
        with self._lock:
            conn = self._connect()
            try:
                conn.begin()
                try:
                    count = conn.execute(f"SELECT count(*) FROM pmchat_turns {where}", params).fetchone()[0]
                    conn.execute(
                        f"DELETE FROM pmchat_feedback WHERE turn_id IN (SELECT turn_id FROM pmchat_turns {where})",
                        params,
                    )
                    conn.execute(f"DELETE FROM pmchat_turns {where}", params)
                    conn.commit()
                except duckdb.Error:
                    conn.rollback()
                    raise
            finally:
                conn.close()
        _LOGGER.info("Deleted %d turn(s) for %s", count, project_id or "all projects")
        return int(count)

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def attach_feedback(
        self,
        turn_id: str,
        rating: FeedbackRating | str,
        detail: FeedbackDetail | None = None,
    ) -> Feedback:
        """Append a rating for an existing turn.

        Raises:
            TurnNotFound: If no turn has ``turn_id``
            ValueError: If ``rating`` is not a known rating
        """
        rating = FeedbackRating(rating)
        detail = detail or FeedbackDetail()
        feedback = Feedback(
            id=str(uuid.uuid4()),
            turn_id=turn_id,
            rating=rating,
            created_at=_utc_now(),
            **detail.model_dump(),
        )
        with self._lock:
            conn = self._connect()
            try:
                exists = conn.execute("SELECT 1 FROM pmchat_turns WHERE turn_id = ?", [turn_id]).fetchone()
                if not exists:
                    raise TurnNotFound(turn_id)
                conn.execute(
                    f"INSERT INTO pmchat_feedback ({_FEEDBACK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        feedback.id,
                        feedback.turn_id,
                        feedback.rating.value,
                        feedback.comment,
                        feedback.is_sql_correct,
                        feedback.is_response_helpful,
                        feedback.is_chart_useful,
                        json.dumps(feedback.tags),
                        feedback.created_at,
                    ],
                )
            finally:
                conn.close()
        _LOGGER.info("Feedback %s (%s) attached to turn %s", feedback.id, rating.value, turn_id)
        return feedback

    def list_feedback(self, flt: StatsFilter | None = None, limit: int = 50, offset: int = 0) -> list[FeedbackEntry]:
        """Feedback with the rated turn's question, answer, SQL and timings, newest first."""
        where, params = _feedback_filter_clause(flt)
        feedback_cols = ", ".join(f"f.{c.strip()}" for c in _FEEDBACK_COLUMNS.split(","))
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"""
                    SELECT {feedback_cols},
                           t.project_id, t.user_query, t.content, t.sql_query, t.chart_type,
                           t.error_message, t.processing_time_ms, t.sql_gen_time_ms,
                           t.sql_exec_time_ms, t.created_at
                    FROM pmchat_feedback f
                    JOIN pmchat_turns t ON t.turn_id = f.turn_id
                    {where}
                    ORDER BY f.created_at DESC, f.feedback_id
                    LIMIT ? OFFSET ?
                    """,
                    [*params, limit, offset],
                ).fetchall()
            finally:
                conn.close()

        entries = []
        for row in rows:
            extra = row[9:]
            entries.append(
                FeedbackEntry(
                    **_row_to_feedback(row[:9]),
                    project_id=extra[0],
                    user_query=extra[1],
                    answer=extra[2] or "",
                    sql_query=extra[3],
                    chart_type=ChartType(extra[4] or "none"),
                    error_message=extra[5],
                    processing_time_ms=float(extra[6] or 0.0),
                    sql_gen_time_ms=extra[7],
                    sql_exec_time_ms=extra[8],
                    turn_created_at=extra[9],
                )
            )
        return entries

    def count_feedback(self, flt: StatsFilter | None = None) -> int:
        where, params = _feedback_filter_clause(flt)
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    f"SELECT count(*) FROM pmchat_feedback f JOIN pmchat_turns t ON t.turn_id = f.turn_id {where}",
                    params,
                ).fetchone()
            finally:
                conn.close()
        return int(row[0])

    def compute_stats(self, flt: StatsFilter | None = None) -> FeedbackStats:
        """Counts per rating, positive rate, and timing averages over the distinct rated turns."""
        where, params = _feedback_filter_clause(flt)
        with self._lock:
            conn = self._connect()
            try:
                counts = conn.execute(
                    f"""
                    SELECT
                        count(*),
                        count(*) FILTER (WHERE f.rating = 'positive'),
                        count(*) FILTER (WHERE f.rating = 'negative'),
                        count(*) FILTER (WHERE f.rating = 'neutral')
                    FROM pmchat_feedback f
                    JOIN pmchat_turns t ON t.turn_id = f.turn_id
                    {where}
                    """,
                    params,
                ).fetchone()
                averages = conn.execute(
                    f"""
                    SELECT avg(processing_time_ms), avg(sql_gen_time_ms), avg(sql_exec_time_ms)
                    FROM pmchat_turns
                    WHERE turn_id IN (
                        SELECT DISTINCT f.turn_id
                        FROM pmchat_feedback f
                        JOIN pmchat_turns t ON t.turn_id = f.turn_id
                        {where}
                    )
                    """,
                    params,
                ).fetchone()
            finally:
                conn.close()

        total, positive, negative, neutral = (int(v or 0) for v in counts)
        positive_rate = round(positive / total * 100, 1) if total else 0.0
        avg_processing, avg_gen, avg_exec = (round(float(v), 1) if v is not None else 0.0 for v in averages)
        return FeedbackStats(
            total=total,
            positive=positive,
            negative=negative,
            neutral=neutral,
            positive_rate=positive_rate,
            avg_processing_time_ms=avg_processing,
            avg_sql_gen_time_ms=avg_gen,
            avg_sql_exec_time_ms=avg_exec,
        )
