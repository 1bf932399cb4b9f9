"""Natural-language answers for chat turns."""

from pmchat.explain.composer import (
    NO_DATA_ANSWER,
    AnalysisComposer,
    ComposedAnswer,
    failure_answer,
    strip_chart_tags,
)

__all__ = [
    "NO_DATA_ANSWER",
    "AnalysisComposer",
    "ComposedAnswer",
    "failure_answer",
    "strip_chart_tags",
]
