"""Guarded, read-only execution of generated SQL on DuckDB.

Every call validates the statement, opens a fresh read-only connection with
external access disabled, arms a timer that interrupts the connection when
the statement timeout elapses, and fetches at most ``max_result_rows + 1``
rows so truncation can be detected without materialising the full result.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import duckdb

from pmchat.errors import QueryExecutionError, QueryTimeout
from pmchat.sql.guardrails import GuardrailConfig, guard_sql

_LOGGER = logging.getLogger(__name__)

# Driver error class -> message safe to show users. Raw driver text can name
# tables and columns outside the allow-list, so it is only logged.
_SANITIZED_MESSAGES: tuple[tuple[type[Exception], str, str], ...] = (
    (duckdb.CatalogException, "catalog", "The query referenced a table or column that does not exist."),
    (duckdb.BinderException, "binder", "The query referenced a column that does not exist or is ambiguous."),
    (duckdb.ParserException, "parser", "The generated query has a syntax error."),
    (duckdb.ConversionException, "conversion", "The query compared or converted values of incompatible types."),
    (duckdb.InvalidInputException, "invalid_input", "The query used an invalid value."),
    (duckdb.PermissionException, "permission", "The query tried to access a resource that is not allowed."),
)
_GENERIC_MESSAGE = "The query could not be executed."


def sanitize_driver_error(error: Exception) -> tuple[str, str]:
    """Map a driver exception to ``(error_kind, user_message)``."""
    for exc_type, kind, message in _SANITIZED_MESSAGES:
        if isinstance(error, exc_type):
            return kind, message
    return "other", _GENERIC_MESSAGE


@dataclass
class ExecutionResult:
    """Result of a guarded SQL execution."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)
    row_count: int = 0
    truncated: bool = False
    execution_time_ms: float = 0.0
    sql_executed: str = ""
    tables: tuple[str, ...] = ()
    warnings: list[str] = field(default_factory=list)
    executed_at: str = ""


class SafeSQLExecutor:
    """Validate and run generated SQL against the project database.

    Usage:
        executor = SafeSQLExecutor(db_path)
        result = executor.execute("SELECT status, count(*) FROM issues WHERE project_id = 'p1' GROUP BY 1",
                                  project_id="p1")
    """

    def __init__(self, db_path: Path | str, config: GuardrailConfig | None = None):
        self.db_path = Path(db_path).expanduser()
        self.config = config or GuardrailConfig()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Open a short-lived read-only connection; one per execution."""
        return duckdb.connect(
            str(self.db_path),
            read_only=True,
            config={"enable_external_access": False},
        )

    def execute(self, sql: str, *, project_id: str | None = None) -> ExecutionResult:
        """Guard and execute ``sql``.

        Raises:
            UnsafeSqlRejected: If the statement violates the policy (never executed)
            QueryTimeout: If execution exceeded the statement timeout
            QueryExecutionError: If the store failed the statement (sanitized message)
        """
        validation = guard_sql(sql, project_id, self.config)
        statement = sql.strip().rstrip(";").strip()
        executed_at = datetime.now(timezone.utc).isoformat()

        if not self.db_path.exists():
            _LOGGER.error("Project database not found at %s", self.db_path)
            raise QueryExecutionError("The project database is not available.", error_kind="unavailable")

        timeout = self.config.query_timeout_seconds
        ceiling = self.config.max_result_rows
        timed_out = threading.Event()
        start_time = time.perf_counter()
        conn = self._get_connection()

        def _interrupt() -> None:
            timed_out.set()
            conn.interrupt()

        timer = threading.Timer(timeout, _interrupt)
        timer.daemon = True
        timer.start()
        try:
            cursor = conn.execute(statement)
            columns = [desc[0] for desc in cursor.description] if cursor.description else []
            raw_rows = cursor.fetchmany(ceiling + 1)
        except duckdb.Error as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            if timed_out.is_set():
                _LOGGER.warning("Query interrupted after %.0f ms (timeout %ss)", elapsed_ms, timeout)
                raise QueryTimeout(timeout, elapsed_ms=round(elapsed_ms, 2)) from e
            kind, message = sanitize_driver_error(e)
            _LOGGER.warning("Query failed (%s): %s | sql=%s", kind, e, statement)
            raise QueryExecutionError(message, error_kind=kind, elapsed_ms=round(elapsed_ms, 2)) from e
        finally:
            timer.cancel()
            conn.close()

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        warnings = list(validation.warnings or [])
        truncated = len(raw_rows) > ceiling
        if truncated:
            raw_rows = raw_rows[:ceiling]
            warnings.append(f"Results truncated to {ceiling} rows")

        rows = [dict(zip(columns, row)) for row in raw_rows]
        return ExecutionResult(
            rows=rows,
            columns=columns,
            row_count=len(rows),
            truncated=truncated,
            execution_time_ms=round(execution_time_ms, 2),
            sql_executed=statement,
            tables=validation.tables,
            warnings=warnings,
            executed_at=executed_at,
        )
