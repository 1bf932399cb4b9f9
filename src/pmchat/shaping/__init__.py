"""Result shaping: flat series, mindmap tree or narrative."""

from pmchat.shaping.mindmap import MindmapBuild, build_mindmap, expand_depth_for, progress_color
from pmchat.shaping.shaper import (
    EMPTY_NAME,
    NO_DATA_TEXT,
    FlatSeries,
    MindmapTree,
    Narrative,
    ShapedResult,
    chart_payload,
    format_markdown_table,
    format_value,
    pick_series_columns,
    shape_result,
)

__all__ = [
    "EMPTY_NAME",
    "NO_DATA_TEXT",
    "FlatSeries",
    "MindmapBuild",
    "MindmapTree",
    "Narrative",
    "ShapedResult",
    "build_mindmap",
    "chart_payload",
    "expand_depth_for",
    "format_markdown_table",
    "format_value",
    "pick_series_columns",
    "progress_color",
    "shape_result",
]
