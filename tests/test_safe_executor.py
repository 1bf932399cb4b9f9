"""Tests for guarded SQL execution against DuckDB."""

import threading
import time

import duckdb
import pytest

from pmchat.catalog.schema import allowed_tables
from pmchat.errors import QueryExecutionError, QueryTimeout, UnsafeSqlRejected
from pmchat.sql.guardrails import GuardrailConfig
from pmchat.sql.safe_executor import SafeSQLExecutor, sanitize_driver_error

ISSUES_BY_STATUS = (
    "SELECT status, count(*) AS count FROM issues "
    "WHERE project_id = 'proj-1' GROUP BY status ORDER BY 2 DESC"
)


def test_executes_scoped_query(project_db):
    result = SafeSQLExecutor(project_db).execute(ISSUES_BY_STATUS, project_id="proj-1")

    assert result.columns == ["status", "count"]
    assert result.rows == [{"status": "OPEN", "count": 5}, {"status": "CLOSED", "count": 3}]
    assert result.row_count == 2
    assert not result.truncated
    assert result.tables == ("issues",)
    assert result.execution_time_ms >= 0


def test_trailing_semicolon_is_removed_before_execution(project_db):
    result = SafeSQLExecutor(project_db).execute(ISSUES_BY_STATUS + ";", project_id="proj-1")
    assert result.sql_executed == ISSUES_BY_STATUS


def test_rows_are_capped_at_ceiling(project_db):
    executor = SafeSQLExecutor(project_db, GuardrailConfig(max_result_rows=5))
    result = executor.execute("SELECT id FROM issues WHERE project_id = 'proj-1'", project_id="proj-1")

    assert result.row_count == 5
    assert result.truncated
    assert "Results truncated to 5 rows" in result.warnings


def test_result_exactly_at_ceiling_is_not_truncated(project_db):
    executor = SafeSQLExecutor(project_db, GuardrailConfig(max_result_rows=8))
    result = executor.execute("SELECT id FROM issues WHERE project_id = 'proj-1' LIMIT 100", project_id="proj-1")

    assert result.row_count == 8
    assert not result.truncated
    assert result.warnings == []


def test_rejected_statement_never_opens_a_connection(project_db, monkeypatch):
    executor = SafeSQLExecutor(project_db)

    def _fail():
        raise AssertionError("connection opened for a rejected statement")

    monkeypatch.setattr(executor, "_get_connection", _fail)
    with pytest.raises(UnsafeSqlRejected):
        executor.execute("DROP TABLE tasks;", project_id="proj-1")
    with pytest.raises(UnsafeSqlRejected):
        executor.execute("SELECT status FROM issues WHERE project_id = 'proj-2'", project_id="proj-1")

    conn = duckdb.connect(str(project_db), read_only=True, config={"enable_external_access": False})
    try:
        assert conn.execute("SELECT count(*) FROM tasks").fetchone()[0] == 3
    finally:
        conn.close()


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT id, project_id FROM issues WHERE project_id = 'proj-1' "
        "UNION ALL SELECT id, project_id FROM issues",
        "SELECT id, project_id, project_id = 'proj-1' AS mine FROM issues",
        "SELECT t.id, i.project_id FROM tasks t, issues i WHERE t.project_id = 'proj-1'",
        "SELECT id, (FROM information_schema.columns SELECT string_agg(column_name, ',')) AS leak "
        "FROM issues WHERE project_id = 'proj-1'",
    ],
)
def test_other_project_rows_and_catalog_never_leak(project_db, sql):
    with pytest.raises(UnsafeSqlRejected):
        SafeSQLExecutor(project_db).execute(sql, project_id="proj-1")


def test_unknown_column_is_sanitized(project_db):
    with pytest.raises(QueryExecutionError) as exc_info:
        SafeSQLExecutor(project_db).execute(
            "SELECT secret_column FROM issues WHERE project_id = 'proj-1'", project_id="proj-1"
        )
    assert exc_info.value.error_kind in ("binder", "catalog")
    assert "secret_column" not in exc_info.value.message


def test_missing_table_maps_to_catalog_error(project_db):
    config = GuardrailConfig(allowed=allowed_tables() | {"ghost"})
    with pytest.raises(QueryExecutionError) as exc_info:
        SafeSQLExecutor(project_db, config).execute("SELECT * FROM ghost")
    assert exc_info.value.error_kind == "catalog"
    assert "ghost" not in exc_info.value.message


def test_missing_database_is_reported_as_unavailable(tmp_path):
    with pytest.raises(QueryExecutionError) as exc_info:
        SafeSQLExecutor(tmp_path / "missing.duckdb").execute("SELECT id FROM tasks")
    assert exc_info.value.error_kind == "unavailable"


class _HangingConnection:
    """Blocks in execute() until interrupted, like a long-running scan."""

    def __init__(self):
        self._interrupted = threading.Event()
        self.closed = False

    def execute(self, statement):
        if not self._interrupted.wait(timeout=5):
            raise AssertionError("statement was never interrupted")
        raise duckdb.InterruptException("INTERRUPT Error: Interrupted!")

    def interrupt(self):
        self._interrupted.set()

    def close(self):
        self.closed = True


def test_long_running_query_times_out(project_db, monkeypatch):
    executor = SafeSQLExecutor(project_db, GuardrailConfig(query_timeout_seconds=0.05))
    hanging = _HangingConnection()
    monkeypatch.setattr(executor, "_get_connection", lambda: hanging)

    with pytest.raises(QueryTimeout) as exc_info:
        executor.execute("SELECT id FROM tasks WHERE project_id = 'proj-1'", project_id="proj-1")

    assert exc_info.value.timeout_seconds == 0.05
    assert "timed out" in exc_info.value.message
    assert hanging.closed


def test_real_connection_is_interrupted_on_timeout(project_db):
    # 3**16 rows of string concatenation: seconds of work on three tasks
    aliases = [f"t{i}" for i in range(1, 17)]
    sql = (
        "SELECT sum(length(" + " || ".join(f"{a}.title" for a in aliases) + ")) AS total FROM "
        + ", ".join(f"tasks {a}" for a in aliases)
    )
    executor = SafeSQLExecutor(project_db, GuardrailConfig(query_timeout_seconds=0.2))

    started = time.perf_counter()
    with pytest.raises(QueryTimeout) as exc_info:
        executor.execute(sql)

    assert exc_info.value.timeout_seconds == 0.2
    assert time.perf_counter() - started < 5
    # The interrupted connection is closed; the database stays usable.
    assert executor.execute("SELECT count(*) AS n FROM tasks").rows == [{"n": 3}]


def test_sanitize_driver_error_falls_back_to_generic():
    kind, message = sanitize_driver_error(RuntimeError("boom /etc/secret"))
    assert kind == "other"
    assert "secret" not in message
