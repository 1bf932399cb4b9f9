"""SQL guard and read-only executor."""

from pmchat.sql.guardrails import (
    GuardrailConfig,
    ValidationResult,
    check_project_scope,
    extract_tables,
    guard_sql,
    validate_sql,
)
from pmchat.sql.safe_executor import ExecutionResult, SafeSQLExecutor, sanitize_driver_error

__all__ = [
    "ExecutionResult",
    "GuardrailConfig",
    "SafeSQLExecutor",
    "ValidationResult",
    "check_project_scope",
    "extract_tables",
    "guard_sql",
    "sanitize_driver_error",
    "validate_sql",
]
