"""Intent-to-SQL generation and suggested questions."""

from pmchat.generation.sql_generator import (
    NO_SQL_MARKER,
    GeneratedSql,
    SqlGenerator,
    build_sql_prompt,
    extract_sql,
    normalize_chart_type,
    parse_generation,
)
from pmchat.generation.suggestions import (
    SuggestionGroup,
    SuggestionSet,
    build_project_context,
    default_suggestions,
    suggest_questions,
)

__all__ = [
    "NO_SQL_MARKER",
    "GeneratedSql",
    "SqlGenerator",
    "SuggestionGroup",
    "SuggestionSet",
    "build_project_context",
    "build_sql_prompt",
    "default_suggestions",
    "extract_sql",
    "normalize_chart_type",
    "parse_generation",
    "suggest_questions",
]
