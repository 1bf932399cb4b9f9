"""Analysis composer: the natural-language answer for one turn.

Composition rules:
- Never called on a failed turn with the LLM (deterministic failure text)
- Empty results get a deterministic "no matching data" answer
- Otherwise one analysis call over the question, SQL and shaped data
- A failed or blank analysis call falls back to the raw-result table
- Conversational questions (no SQL) are answered directly
"""

import logging
import re
from dataclasses import dataclass

from pmchat.contracts import PromptBundle
from pmchat.errors import AnalysisGenerationFailure
from pmchat.llm.client import GenerationTimeout, TextGenerator, generate_with_timeout
from pmchat.shaping.shaper import FlatSeries, MindmapTree, Narrative, ShapedResult

_LOGGER = logging.getLogger(__name__)

ANALYSIS_USER_PROMPT_TEMPLATE = """Analyse the query result below and answer the user's question.

Question: {question}

SQL used:
{sql}

Chart shown to the user: {chart_type}
{chart_summary}

Result ({row_count} rows{truncation}):
{table}

Write the answer in markdown. Do not repeat the SQL."""

CONVERSATIONAL_PROMPT_TEMPLATE = """The user asked a general question that needs no database query.
Answer it directly and briefly.

Question: {question}"""

NO_DATA_ANSWER = (
    "No matching data was found for your question. "
    "Try widening the date range or checking the selected project."
)
CONVERSATIONAL_FALLBACK = "I could not generate an answer right now. Please try again in a moment."

_TAG_RE = re.compile(r"\[CHART(?:_DATA)?:[^\]]*\]", re.IGNORECASE)
_MINDMAP_SUMMARY_CHILDREN = 10


@dataclass(frozen=True)
class ComposedAnswer:
    text: str
    used_fallback: bool = False


def strip_chart_tags(text: str) -> str:
    """Remove ``[CHART:...]`` and ``[CHART_DATA:...]`` tags from a reply."""
    return re.sub(r"\n{3,}", "\n\n", _TAG_RE.sub("", text or "")).strip()


def failure_answer(error: str) -> str:
    """Deterministic answer for a failed turn."""
    lines = [
        "I could not answer this question.",
        "",
        f"Reason: {error.strip() or 'unknown error'}",
        "",
        "Try rephrasing the question or narrowing it to one project.",
    ]
    return "\n".join(lines)


def fallback_answer(shaped: ShapedResult) -> str:
    """Templated answer used when the analysis call fails."""
    return "The analysis could not be generated. Here is the raw result:\n\n" + shaped.table


def _chart_summary(shaped: ShapedResult) -> str:
    if isinstance(shaped, FlatSeries):
        points = ", ".join(f"{p.name}={p.value:g}" for p in shaped.points[:20])
        return f"Series ({shaped.name_column} by {shaped.value_column}): {points}"
    if isinstance(shaped, MindmapTree):
        children = [child.name for child in (shaped.root.children or [])[:_MINDMAP_SUMMARY_CHILDREN]]
        return f"Tree rooted at '{shaped.root.name}' with {shaped.node_count} nodes; top level: {', '.join(children)}"
    return ""


def build_analysis_prompt(question: str, shaped: ShapedResult, sql: str) -> str:
    return ANALYSIS_USER_PROMPT_TEMPLATE.format(
        question=question.strip(),
        sql=sql.strip(),
        chart_type=shaped.chart_type.value,
        chart_summary=_chart_summary(shaped),
        row_count=shaped.row_count,
        truncation=", truncated at the row limit" if shaped.truncated else "",
        table=shaped.table,
    )


class AnalysisComposer:
    """Compose the answer text for a turn."""

    def __init__(self, generator: TextGenerator, *, timeout_seconds: float = 60.0):
        self.generator = generator
        self.timeout_seconds = timeout_seconds

    def _generate(self, prompt: str, prompts: PromptBundle) -> str:
        """One analysis call.

        Raises:
            AnalysisGenerationFailure: On timeout, provider error or a blank reply
        """
        context = {"system_prompt": prompts.analysis_system_prompt(), "role": "analysis"}
        try:
            raw = generate_with_timeout(self.generator, prompt, context, self.timeout_seconds)
        except GenerationTimeout as e:
            raise AnalysisGenerationFailure(f"Analysis timed out after {self.timeout_seconds:g}s") from e
        except Exception as e:
            raise AnalysisGenerationFailure(f"Analysis call failed: {e}") from e
        text = strip_chart_tags(raw or "")
        if not text:
            raise AnalysisGenerationFailure("Analysis reply was empty")
        return text

    def compose(
        self,
        question: str,
        shaped: ShapedResult | None,
        sql: str | None,
        prompts: PromptBundle,
        error: str | None = None,
    ) -> ComposedAnswer:
        if error:
            return ComposedAnswer(text=failure_answer(error))

        if sql is None or shaped is None:
            try:
                text = self._generate(CONVERSATIONAL_PROMPT_TEMPLATE.format(question=question.strip()), prompts)
            except AnalysisGenerationFailure as e:
                _LOGGER.warning("Conversational answer failed: %s", e)
                return ComposedAnswer(text=CONVERSATIONAL_FALLBACK, used_fallback=True)
            return ComposedAnswer(text=text)

        if isinstance(shaped, Narrative) and shaped.empty:
            return ComposedAnswer(text=NO_DATA_ANSWER)

        try:
            text = self._generate(build_analysis_prompt(question, shaped, sql), prompts)
        except AnalysisGenerationFailure as e:
            _LOGGER.warning("Analysis generation failed, using raw result: %s", e)
            return ComposedAnswer(text=fallback_answer(shaped), used_fallback=True)
        return ComposedAnswer(text=text)
