"""Pydantic contracts shared by the chat pipeline, the stores and the API.

Records:
- Turn: one persisted chat message (user question or assistant answer)
- Feedback: an append-only rating attached to a turn
- Persona: a named system-prompt profile
- PromptBundle: the merged prompts used for one turn
- StatsFilter / FeedbackStats: the quality-statistics read model
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================

class ChartType(str, Enum):
    """Visualization attached to an assistant turn."""

    NONE = "none"
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    AREA = "area"
    BAR3D = "bar3d"
    MINDMAP = "mindmap"


FLAT_CHART_TYPES = frozenset(
    {ChartType.BAR, ChartType.LINE, ChartType.PIE, ChartType.AREA, ChartType.BAR3D}
)


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class FeedbackRating(str, Enum):
    """User rating for an assistant turn. Accepts any letter case on input."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"

    @classmethod
    def _missing_(cls, value: object) -> "FeedbackRating | None":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


# =============================================================================
# Chart payloads
# =============================================================================

class ChartPoint(BaseModel):
    """One bar/slice/point of a flat series."""

    name: str = Field(..., description="Category label")
    value: float = Field(..., description="Numeric value")


class MindmapNode(BaseModel):
    """Node of a rooted, cycle-free mindmap tree."""

    name: str = Field(..., description="Display label")
    value: float | None = Field(None, description="Optional numeric value (e.g. progress)")
    children: list["MindmapNode"] | None = Field(None, description="Ordered child nodes")
    color: str | None = Field(None, description="Optional display color (hex)")

    def count_nodes(self) -> int:
        """Count this node and all descendants."""
        total = 1
        stack = list(self.children or [])
        while stack:
            node = stack.pop()
            total += 1
            stack.extend(node.children or [])
        return total


MindmapNode.model_rebuild()


# =============================================================================
# Turn / Feedback
# =============================================================================

class Turn(BaseModel):
    """One persisted chat message."""

    model_config = {"frozen": True}

    id: str = Field(..., description="Turn id (uuid4)")
    role: TurnRole = Field(..., description="user or assistant")
    content: str = Field("", description="Message text (question or answer markdown)")
    sql_query: str | None = Field(None, description="Generated SQL, recorded as-is")
    chart_type: ChartType = Field(ChartType.NONE, description="Attached visualization")
    chart_data: list[ChartPoint] | None = Field(None, description="Flat series payload")
    mindmap_data: MindmapNode | None = Field(None, description="Tree payload")
    mindmap_expand_depth: int | None = Field(None, description="Default expand depth hint for large trees")
    user_query: str | None = Field(None, description="Original question")
    processing_time_ms: float = Field(0.0, description="Wall-clock across the whole pipeline")
    sql_gen_time_ms: float | None = Field(None, description="SQL generation time")
    sql_exec_time_ms: float | None = Field(None, description="SQL execution time")
    error_message: str | None = Field(None, description="User-visible failure reason")
    project_id: str | None = Field(None, description="Project scope; None means cross-project")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")

    @model_validator(mode="after")
    def validate_single_payload(self) -> "Turn":
        """A turn carries a flat series, a tree, or neither. Never both."""
        if self.chart_data is not None and self.mindmap_data is not None:
            raise ValueError("Turn cannot carry both chart_data and mindmap_data")
        return self


class FeedbackDetail(BaseModel):
    """Optional detail fields submitted with a rating."""

    comment: str | None = Field(None, description="Free-text comment")
    is_sql_correct: bool | None = Field(None, description="Was the generated SQL right?")
    is_response_helpful: bool | None = Field(None, description="Was the answer helpful?")
    is_chart_useful: bool | None = Field(None, description="Was the chart useful?")
    tags: list[str] = Field(default_factory=list, description="Free-form tags (set semantics)")

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v: Any) -> list[str]:
        """Deduplicate, strip and sort tags."""
        if v is None:
            return []
        cleaned = {str(tag).strip() for tag in v if str(tag).strip()}
        return sorted(cleaned)


class Feedback(FeedbackDetail):
    """Append-only rating record referencing a turn."""

    id: str = Field(..., description="Feedback id (uuid4)")
    turn_id: str = Field(..., description="Owning turn id")
    rating: FeedbackRating = Field(..., description="positive, negative or neutral")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")


class FeedbackEntry(Feedback):
    """Feedback joined with the rated turn, for review lists."""

    project_id: str | None = None
    user_query: str | None = None
    answer: str = ""
    sql_query: str | None = None
    chart_type: ChartType = ChartType.NONE
    error_message: str | None = None
    processing_time_ms: float = 0.0
    sql_gen_time_ms: float | None = None
    sql_exec_time_ms: float | None = None
    turn_created_at: datetime | None = None


# =============================================================================
# Personas / prompts
# =============================================================================

class Persona(BaseModel):
    """A named system-prompt profile."""

    id: str
    name: str = Field(..., min_length=1)
    description: str | None = None
    icon: str = "smart_toy"
    system_prompt: str = Field(..., min_length=1)
    is_default: bool = False
    created_at: datetime | None = None


class PromptBundle(BaseModel):
    """Prompts that drive one turn."""

    sql_prompt: str = Field(..., description="Base SQL-generation system prompt")
    analysis_prompt: str = Field(..., description="Base analysis system prompt")
    persona_prompt: str = Field("", description="Persona system prompt prepended to both")
    persona_id: str | None = Field(None, description="Persona that supplied persona_prompt")

    def sql_system_prompt(self) -> str:
        return _join_prompts(self.persona_prompt, self.sql_prompt)

    def analysis_system_prompt(self) -> str:
        return _join_prompts(self.persona_prompt, self.analysis_prompt)


def _join_prompts(persona_prompt: str, base_prompt: str) -> str:
    if persona_prompt and persona_prompt.strip():
        return f"{persona_prompt.strip()}\n\n{base_prompt}"
    return base_prompt


# =============================================================================
# Stats
# =============================================================================

class StatsFilter(BaseModel):
    """Filter for feedback listing and statistics. Dates are inclusive."""

    start_date: date | None = None
    end_date: date | None = None
    project_id: str | None = None
    rating: FeedbackRating | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "StatsFilter":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class FeedbackStats(BaseModel):
    """Quality statistics over rated turns."""

    total: int = 0
    positive: int = 0
    negative: int = 0
    neutral: int = 0
    positive_rate: float = Field(0.0, description="Percentage of positive ratings, one decimal")
    avg_processing_time_ms: float = 0.0
    avg_sql_gen_time_ms: float = 0.0
    avg_sql_exec_time_ms: float = 0.0
