"""Classify query rows into exactly one displayable shape.

``shape_result`` resolves arbitrary rows once into a tagged union:

- FlatSeries: name/value points for bar, line, pie, area and bar3d charts
- MindmapTree: a rooted tree for rows that carry id and parent columns
- Narrative: a markdown table (or a no-data note) with no chart

Downstream code dispatches on the type and never inspects rows again.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pmchat.contracts import FLAT_CHART_TYPES, ChartPoint, ChartType, MindmapNode
from pmchat.shaping.mindmap import build_mindmap, hierarchy_columns

_LOGGER = logging.getLogger(__name__)

NARRATIVE_MAX_ROWS = 20
EMPTY_NAME = "(empty)"
NO_DATA_TEXT = "No matching data was found."

_NAME_COLUMNS = ("name", "label")
_VALUE_COLUMNS = ("value",)


@dataclass(frozen=True)
class FlatSeries:
    chart_type: ChartType
    points: tuple[ChartPoint, ...]
    name_column: str
    value_column: str
    table: str
    row_count: int
    truncated: bool = False


@dataclass(frozen=True)
class MindmapTree:
    root: MindmapNode
    node_count: int
    expand_depth: int
    table: str
    row_count: int
    truncated: bool = False

    @property
    def chart_type(self) -> ChartType:
        return ChartType.MINDMAP


@dataclass(frozen=True)
class Narrative:
    table: str
    row_count: int
    truncated: bool = False
    empty: bool = False
    reason: str = ""

    @property
    def chart_type(self) -> ChartType:
        return ChartType.NONE


ShapedResult = FlatSeries | MindmapTree | Narrative


def chart_payload(shaped: ShapedResult) -> dict[str, Any]:
    """Turn fields for a shaped result: chart type plus at most one payload."""
    if isinstance(shaped, FlatSeries):
        return {"chart_type": shaped.chart_type, "chart_data": list(shaped.points)}
    if isinstance(shaped, MindmapTree):
        return {
            "chart_type": ChartType.MINDMAP,
            "mindmap_data": shaped.root,
            "mindmap_expand_depth": shaped.expand_depth,
        }
    return {"chart_type": ChartType.NONE}


# =============================================================================
# Value helpers
# =============================================================================

def is_numeric(value: Any) -> bool:
    """Numbers count, booleans do not."""
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _column_is_numeric(rows: list[dict[str, Any]], column: str) -> bool:
    seen = False
    for row in rows:
        value = row.get(column)
        if value is None:
            continue
        if not is_numeric(value):
            return False
        seen = True
    return seen


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else f"{value:.2f}".rstrip("0").rstrip(".")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).replace("|", "\\|").replace("\n", " ")


def _point_name(value: Any) -> str:
    if value is None:
        return EMPTY_NAME
    text = format_value(value).strip()
    return text or EMPTY_NAME


def _point_value(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def format_markdown_table(
    rows: list[dict[str, Any]],
    columns: list[str],
    truncated: bool = False,
    max_rows: int = NARRATIVE_MAX_ROWS,
) -> str:
    """Render rows as a markdown table with a row-count note."""
    if not rows:
        return NO_DATA_TEXT
    shown = rows[:max_rows]
    lines = [
        "| " + " | ".join(columns) + " |",
        "| " + " | ".join("---" for _ in columns) + " |",
    ]
    for row in shown:
        lines.append("| " + " | ".join(format_value(row.get(c)) for c in columns) + " |")

    note = f"{len(rows)} row{'s' if len(rows) != 1 else ''}"
    if len(rows) > len(shown):
        note += f", first {len(shown)} shown"
    if truncated:
        note += "; the result was truncated at the row limit"
    lines.append("")
    lines.append(f"_{note}_")
    return "\n".join(lines)


# =============================================================================
# Shaping
# =============================================================================

def _find(columns: list[str], candidates: tuple[str, ...]) -> str | None:
    lowered = {c.lower(): c for c in columns}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def pick_series_columns(rows: list[dict[str, Any]], columns: list[str]) -> tuple[str, str] | None:
    """Choose ``(name_column, value_column)`` or None when no pair exists."""
    numeric = [c for c in columns if _column_is_numeric(rows, c)]
    value_col = _find(columns, _VALUE_COLUMNS)
    if value_col is not None and value_col not in numeric:
        return None
    name_col = _find(columns, _NAME_COLUMNS)
    if name_col is None:
        name_col = next((c for c in columns if c not in numeric and c != value_col), None)
    if value_col is None:
        value_col = next((c for c in numeric if c != name_col), None)
    if name_col is None or value_col is None or name_col == value_col:
        return None
    return name_col, value_col


def _narrative(rows, columns, truncated, reason: str) -> Narrative:
    return Narrative(
        table=format_markdown_table(rows, columns, truncated),
        row_count=len(rows),
        truncated=truncated,
        reason=reason,
    )


def shape_result(
    rows: list[dict[str, Any]],
    columns: list[str],
    suggested_chart_type: ChartType,
    truncated: bool = False,
) -> ShapedResult:
    """Resolve rows into FlatSeries, MindmapTree or Narrative."""
    if not rows:
        return Narrative(table=NO_DATA_TEXT, row_count=0, truncated=truncated, empty=True, reason="no rows")

    columns = list(columns) or list(rows[0].keys())
    if len(rows) == 1:
        return _narrative(rows, columns, truncated, "single row")

    hint = suggested_chart_type
    if hint in (ChartType.MINDMAP, ChartType.NONE) and hierarchy_columns(columns) is not None:
        build = build_mindmap(rows, columns)
        if build.cycles:
            _LOGGER.warning("Mindmap built with %d cycle(s) cut", len(build.cycles))
        return MindmapTree(
            root=build.root,
            node_count=build.node_count,
            expand_depth=build.expand_depth,
            table=format_markdown_table(rows, columns, truncated),
            row_count=len(rows),
            truncated=truncated,
        )

    if hint == ChartType.MINDMAP:
        return _narrative(rows, columns, truncated, "no parent/child columns")
    if hint not in FLAT_CHART_TYPES:
        return _narrative(rows, columns, truncated, "no chart requested")

    pair = pick_series_columns(rows, columns)
    if pair is None:
        _LOGGER.debug("No name/value pair in columns %s; falling back to narrative", columns)
        return _narrative(rows, columns, truncated, "no name/value columns")

    name_col, value_col = pair
    points = tuple(
        ChartPoint(name=_point_name(row.get(name_col)), value=_point_value(row.get(value_col)))
        for row in rows
    )
    return FlatSeries(
        chart_type=hint,
        points=points,
        name_column=name_col,
        value_column=value_col,
        table=format_markdown_table(rows, columns, truncated),
        row_count=len(rows),
        truncated=truncated,
    )
