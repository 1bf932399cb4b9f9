"""Intent-to-SQL generation.

One generation request per question: the fixed schema description, the
project-scope hint, a bounded window of recent turns and the question are
concatenated into a single prompt. The reply is parsed for a chart hint and
one SQL statement. Parsing is deliberately permissive about *which*
statement the model wrote: a DROP or UPDATE is still extracted so the guard
rejects it and the statement is recorded for audit.
"""

import logging
import re
import time
from dataclasses import dataclass

from pmchat.catalog.schema import project_filter_hint, render_schema_prompt
from pmchat.contracts import ChartType, PromptBundle, Turn, TurnRole
from pmchat.errors import SqlGenerationFailure
from pmchat.llm.client import GenerationTimeout, TextGenerator, generate_with_timeout

_LOGGER = logging.getLogger(__name__)

SQL_USER_PROMPT_TEMPLATE = """{schema}

## Project scope
{project_hint}

## Recent conversation
{history}

## Question
{question}

Write the SQL query that answers the question, following the response format exactly."""

NO_SQL_MARKER = "NO_SQL"

_STATEMENT_KEYWORDS = (
    "SELECT", "WITH", "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
    "MERGE", "REPLACE", "GRANT", "REVOKE", "COPY", "ATTACH", "DETACH", "PRAGMA", "CALL",
    "EXPLAIN", "SET", "EXPORT", "IMPORT", "INSTALL", "LOAD", "VACUUM",
)
_STATEMENT_START_RE = re.compile(
    rf"^[ \t]*(?:{'|'.join(_STATEMENT_KEYWORDS)})\b", re.IGNORECASE | re.MULTILINE
)
_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_-]*)[ \t]*\n?(.*?)```", re.DOTALL)
_CHART_LINE_RE = re.compile(
    r"^[ \t]*\**CHART\**[ \t]*:[ \t]*\**([A-Za-z0-9_\-]+)[^\n]*$", re.IGNORECASE | re.MULTILINE
)
_CHART_TAG_RE = re.compile(r"\[CHART:([A-Za-z0-9_\-]+)\]", re.IGNORECASE)

_HISTORY_SNIPPET_CHARS = 300


@dataclass(frozen=True)
class GeneratedSql:
    """Parsed generator output. ``sql`` is None only for conversational questions."""

    sql: str | None
    suggested_chart_type: ChartType
    raw_response: str
    elapsed_ms: float

    @property
    def is_conversational(self) -> bool:
        return self.sql is None


def normalize_chart_type(raw: str | None) -> ChartType:
    """Map a free-form chart hint (bar_3d, 3d-bar, Tree, pie-chart...) to a ChartType."""
    if not raw:
        return ChartType.NONE
    value = re.sub(r"[-_\s]", "", raw.strip().lower())
    if value in ("bar3d", "bar3") or "3d" in value:
        return ChartType.BAR3D
    if value.startswith("bar"):
        return ChartType.BAR
    if value.startswith("line"):
        return ChartType.LINE
    if value.startswith("pie") or value.startswith("donut"):
        return ChartType.PIE
    if value.startswith("area"):
        return ChartType.AREA
    if value.startswith(("mindmap", "tree", "hierarchy")):
        return ChartType.MINDMAP
    return ChartType.NONE


def parse_chart_hint(text: str) -> ChartType:
    match = _CHART_LINE_RE.search(text) or _CHART_TAG_RE.search(text)
    return normalize_chart_type(match.group(1) if match else None)


def _is_no_sql(text: str) -> bool:
    body = re.sub(r"[`*\"'.\s]", "", text).upper()
    return body == NO_SQL_MARKER


def extract_sql(text: str) -> str | None:
    """Extract one SQL statement from a model reply.

    Prefers the first fenced block; otherwise takes the text from the first
    line that starts with a statement keyword up to the next blank line.
    """
    for match in _FENCE_RE.finditer(text):
        lang = match.group(1).lower()
        body = match.group(2).strip()
        if body and lang in ("", "sql", "duckdb", "postgresql", "postgres"):
            return body

    match = _STATEMENT_START_RE.search(text)
    if not match:
        return None
    candidate = text[match.start():]
    candidate = re.split(r"\n[ \t]*\n", candidate, maxsplit=1)[0]
    candidate = candidate.strip().rstrip("`").strip()
    return candidate or None


def parse_generation(raw_response: str, elapsed_ms: float = 0.0) -> GeneratedSql:
    """Parse a raw SQL-generation reply.

    Raises:
        SqlGenerationFailure: If the reply holds neither SQL nor the NO_SQL marker
    """
    text = (raw_response or "").strip()
    chart = parse_chart_hint(text)
    body = _CHART_TAG_RE.sub("", _CHART_LINE_RE.sub("", text)).strip()

    if _is_no_sql(body):
        return GeneratedSql(sql=None, suggested_chart_type=ChartType.NONE,
                            raw_response=raw_response, elapsed_ms=elapsed_ms)

    sql = extract_sql(body)
    if not sql:
        raise SqlGenerationFailure(
            "The model did not return a SQL query for this question.",
            raw_response=raw_response,
            elapsed_ms=elapsed_ms,
        )
    return GeneratedSql(sql=sql, suggested_chart_type=chart, raw_response=raw_response, elapsed_ms=elapsed_ms)


def format_history(history: list[Turn]) -> str:
    """Render recent turns (oldest first) for the prompt."""
    if not history:
        return "(no previous messages)"
    lines = []
    for turn in history:
        content = " ".join((turn.content or "").split())
        if len(content) > _HISTORY_SNIPPET_CHARS:
            content = content[:_HISTORY_SNIPPET_CHARS] + "..."
        if turn.role == TurnRole.USER:
            lines.append(f"User: {content}")
        else:
            lines.append(f"Assistant: {content}")
            if turn.sql_query:
                lines.append(f"  (SQL used: {' '.join(turn.sql_query.split())})")
    return "\n".join(lines)


def build_sql_prompt(question: str, history: list[Turn], project_id: str | None) -> str:
    return SQL_USER_PROMPT_TEMPLATE.format(
        schema=render_schema_prompt(),
        project_hint=project_filter_hint(project_id),
        history=format_history(history),
        question=question.strip(),
    )


class SqlGenerator:
    """Turn a question into a single SQL statement plus a chart hint."""

    def __init__(self, generator: TextGenerator, *, timeout_seconds: float = 30.0, history_turns: int = 6):
        self.generator = generator
        self.timeout_seconds = timeout_seconds
        self.history_turns = history_turns

    def generate(
        self,
        question: str,
        history: list[Turn],
        project_id: str | None,
        prompts: PromptBundle,
    ) -> GeneratedSql:
        """Issue one generation request and parse it.

        Raises:
            SqlGenerationFailure: On timeout, provider error or unparseable reply
        """
        window = history[-self.history_turns:] if self.history_turns else []
        prompt = build_sql_prompt(question, window, project_id)
        context = {"system_prompt": prompts.sql_system_prompt(), "role": "sql"}

        start = time.perf_counter()
        try:
            raw = generate_with_timeout(self.generator, prompt, context, self.timeout_seconds)
        except GenerationTimeout as e:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            raise SqlGenerationFailure(
                f"SQL generation timed out after {self.timeout_seconds:g}s.", elapsed_ms=elapsed_ms
            ) from e
        except Exception as e:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            _LOGGER.warning("SQL generation call failed: %s", e)
            raise SqlGenerationFailure(
                "The language model could not be reached to generate SQL.", elapsed_ms=elapsed_ms
            ) from e
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        result = parse_generation(raw or "", elapsed_ms)
        _LOGGER.debug(
            "Generated SQL in %.0f ms (chart=%s, conversational=%s)",
            elapsed_ms,
            result.suggested_chart_type.value,
            result.is_conversational,
        )
        return result
