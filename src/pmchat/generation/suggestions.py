"""Suggested starter questions for the chat panel.

The model is asked for five categories of four questions each, returned as
JSON. Anything other than a well-formed reply (timeout, provider error,
malformed JSON, wrong shape) yields the built-in groups instead.
"""

import logging
from pathlib import Path
from typing import Any

import duckdb
from pydantic import BaseModel, Field, ValidationError

from pmchat.llm.client import GenerationTimeout, TextGenerator, generate_with_timeout, parse_json_response

_LOGGER = logging.getLogger(__name__)

SUGGESTION_CATEGORY_COUNT = 5
SUGGESTION_QUESTIONS_PER_CATEGORY = 4

SUGGESTION_SYSTEM_PROMPT = """You are the assistant of a project-management tool.
Generate useful questions a user could ask about their project data.

Rules:
1. Reply with JSON only, no markdown fences.
2. Use exactly five categories, in this order: WBS, Tasks, Issues, Requirements, Help.
3. Give each category four concrete, answerable questions.
4. Questions must be read-only (lookups, counts, charts), never requests to change data.
5. When project information is provided, tailor the questions to it.

Response format:
[
  {"title": "WBS", "icon": "account_tree", "color": "text-blue-500", "questions": ["...", "...", "...", "..."]},
  {"title": "Tasks", "icon": "task_alt", "color": "text-emerald-500", "questions": ["...", "...", "...", "..."]},
  {"title": "Issues", "icon": "bug_report", "color": "text-rose-500", "questions": ["...", "...", "...", "..."]},
  {"title": "Requirements", "icon": "description", "color": "text-amber-500", "questions": ["...", "...", "...", "..."]},
  {"title": "Help", "icon": "help", "color": "text-purple-500", "questions": ["...", "...", "...", "..."]}
]"""


class SuggestionGroup(BaseModel):
    """One category of suggested questions."""

    title: str = Field(..., min_length=1)
    icon: str = Field(..., min_length=1)
    color: str = Field(..., min_length=1)
    questions: list[str] = Field(..., min_length=SUGGESTION_QUESTIONS_PER_CATEGORY)


class SuggestionSet(BaseModel):
    suggestions: list[SuggestionGroup]
    source: str = Field(..., description="ai or default")


DEFAULT_SUGGESTION_GROUPS: list[dict[str, Any]] = [
    {
        "title": "WBS",
        "icon": "account_tree",
        "color": "text-blue-500",
        "questions": [
            "Show the WBS structure of the current project as a mindmap",
            "Which WBS items are past their end date but not completed?",
            "What is the average progress of LEVEL1 WBS items?",
            "How many WBS items are there per status?",
        ],
    },
    {
        "title": "Tasks",
        "icon": "task_alt",
        "color": "text-emerald-500",
        "questions": [
            "Show a chart of task counts by status",
            "Which tasks are due by this Friday?",
            "How many HIGH priority tasks are still in progress?",
            "Who has the most open tasks?",
        ],
    },
    {
        "title": "Issues",
        "icon": "bug_report",
        "color": "text-rose-500",
        "questions": [
            "List the issues that are currently in progress",
            "Which unresolved issues have HIGH or CRITICAL priority?",
            "Show a pie chart of issues by category",
            "How many issues are delayed?",
        ],
    },
    {
        "title": "Requirements",
        "icon": "description",
        "color": "text-amber-500",
        "questions": [
            "What is the status breakdown of requirements?",
            "List the requirements still in DRAFT",
            "How many MUST requirements are implemented?",
            "Which requirements are past their due date?",
        ],
    },
    {
        "title": "Help",
        "icon": "help",
        "color": "text-purple-500",
        "questions": [
            "What kinds of questions can you answer?",
            "Which charts can you draw?",
            "How do I get a mindmap of the WBS?",
            "How do I rate an answer?",
        ],
    },
]


def default_suggestions() -> SuggestionSet:
    return SuggestionSet(
        suggestions=[SuggestionGroup(**group) for group in DEFAULT_SUGGESTION_GROUPS],
        source="default",
    )


def build_project_context(db_path: Path | str, project_id: str | None) -> str | None:
    """Summarize a project (name, item counts, recent tasks and issues) for the prompt.

    Returns None when there is no project, no database, or the project is unknown.
    """
    if not project_id:
        return None
    path = Path(db_path).expanduser()
    if not path.exists():
        return None

    conn = duckdb.connect(str(path), read_only=True, config={"enable_external_access": False})
    try:
        project = conn.execute("SELECT name FROM projects WHERE id = ?", [project_id]).fetchone()
        if project is None:
            return None
        counts = {}
        for table in ("wbs_items", "tasks", "issues", "requirements"):
            counts[table] = conn.execute(
                f"SELECT count(*) FROM {table} WHERE project_id = ?", [project_id]
            ).fetchone()[0]
        recent_tasks = conn.execute(
            "SELECT title, status FROM tasks WHERE project_id = ? ORDER BY created_at DESC LIMIT 5",
            [project_id],
        ).fetchall()
        recent_issues = conn.execute(
            "SELECT title, status FROM issues WHERE project_id = ? ORDER BY report_date DESC LIMIT 5",
            [project_id],
        ).fetchall()
    except duckdb.Error as e:
        _LOGGER.warning("Could not build project context for %s: %s", project_id, e)
        return None
    finally:
        conn.close()

    lines = [
        "## Current project",
        f"- Name: {project[0]}",
        f"- WBS items: {counts['wbs_items']}",
        f"- Tasks: {counts['tasks']}",
        f"- Issues: {counts['issues']}",
        f"- Requirements: {counts['requirements']}",
        "",
        "## Recent tasks",
        *[f"- {title} ({status})" for title, status in recent_tasks],
        "",
        "## Recent issues",
        *[f"- {title} ({status})" for title, status in recent_issues],
    ]
    return "\n".join(lines)


def _parse_suggestions(response: str) -> SuggestionSet | None:
    try:
        payload = parse_json_response(response)
    except ValueError:
        _LOGGER.warning("Suggestion reply is not JSON: %s", (response or "")[:200])
        return None
    if not isinstance(payload, list) or len(payload) != SUGGESTION_CATEGORY_COUNT:
        return None
    try:
        groups = [SuggestionGroup.model_validate(item) for item in payload]
    except ValidationError as e:
        _LOGGER.warning("Suggestion reply has the wrong shape: %s", e)
        return None
    return SuggestionSet(suggestions=groups, source="ai")


def suggest_questions(
    generator: TextGenerator,
    project_context: str | None = None,
    timeout: float = 30.0,
) -> SuggestionSet:
    """Ask the model for suggested questions; fall back to the defaults on any failure."""
    if project_context:
        prompt = f"{project_context}\n\nUsing the project information above, generate new suggested questions."
    else:
        prompt = "Generate useful suggested questions for users of a project-management tool."
    context = {"system_prompt": SUGGESTION_SYSTEM_PROMPT, "role": "suggest"}

    try:
        response = generate_with_timeout(generator, prompt, context, timeout)
    except GenerationTimeout:
        _LOGGER.warning("Suggestion generation timed out after %ss", timeout)
        return default_suggestions()
    except Exception as e:
        _LOGGER.warning("Suggestion generation failed: %s", e)
        return default_suggestions()

    parsed = _parse_suggestions(response or "")
    if parsed is None:
        return default_suggestions()
    return parsed
