"""Build a mindmap tree from rows that encode a parent/child relation.

Rows are grouped by parent key. A single real root becomes the tree root;
several roots, orphans (declared parent missing from the result) and nodes
only reachable through a cycle hang under a synthetic root instead, so no
distinct id is ever dropped. Descent stops at a node already on the current path.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from pmchat.contracts import MindmapNode

_LOGGER = logging.getLogger(__name__)

ID_COLUMNS = ("id",)
PARENT_COLUMNS = ("parent_id", "parent", "parentid", "parent_key")
NAME_COLUMNS = ("name", "title", "label")
VALUE_COLUMNS = ("value", "progress")

SYNTHETIC_ROOT_NAME = "All items"
DEFAULT_NODE_COLOR = "#3B82F6"

# (minimum progress, color), checked top-down
PROGRESS_COLORS = (
    (100, "#10B981"),
    (80, "#3B82F6"),
    (50, "#06B6D4"),
    (20, "#F59E0B"),
)
LOW_PROGRESS_COLOR = "#EF4444"


@dataclass
class MindmapBuild:
    """Result of building a tree, with what had to be repaired."""

    root: MindmapNode
    node_count: int
    expand_depth: int
    synthetic_root: bool = False
    orphans: list[str] = field(default_factory=list)
    cycles: list[str] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)


def _find_column(columns: list[str], candidates: tuple[str, ...]) -> str | None:
    lowered = {c.lower(): c for c in columns}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def hierarchy_columns(columns: list[str]) -> tuple[str, str] | None:
    """Return ``(id_column, parent_column)`` when the columns encode a hierarchy."""
    id_col = _find_column(columns, ID_COLUMNS)
    parent_col = _find_column(columns, PARENT_COLUMNS)
    if id_col is None or parent_col is None:
        return None
    return id_col, parent_col


def progress_color(progress: float | None) -> str:
    if progress is None:
        return DEFAULT_NODE_COLOR
    for threshold, color in PROGRESS_COLORS:
        if progress >= threshold:
            return color
    return LOW_PROGRESS_COLOR


def expand_depth_for(node_count: int) -> int:
    """Default expand depth so large trees open collapsed."""
    if node_count > 50:
        return 1
    if node_count > 20:
        return 2
    return 3


def _key(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(str(value))
    except ValueError:
        return None


def build_mindmap(rows: list[dict[str, Any]], columns: list[str]) -> MindmapBuild:
    """Group rows into a rooted, cycle-free tree.

    Raises:
        ValueError: If the columns carry no id/parent pair
    """
    hierarchy = hierarchy_columns(columns)
    if hierarchy is None:
        raise ValueError("Rows have no id/parent columns")
    id_col, parent_col = hierarchy
    name_col = _find_column(columns, NAME_COLUMNS) or _find_column(columns, ("code",))
    value_col = _find_column(columns, VALUE_COLUMNS)
    progress_col = _find_column(columns, ("progress",))

    # key -> row, in row order; rows without an id get a positional key
    nodes: dict[str, dict[str, Any]] = {}
    parents: dict[str, str | None] = {}
    duplicates: list[str] = []
    for index, row in enumerate(rows):
        key = _key(row.get(id_col)) or f"row-{index}"
        if key in nodes:
            _LOGGER.warning("Duplicate mindmap id %s; row %d left out of the tree", key, index)
            duplicates.append(key)
            continue
        nodes[key] = row
        parents[key] = _key(row.get(parent_col))

    children: dict[str, list[str]] = {key: [] for key in nodes}
    roots: list[str] = []
    orphans: list[str] = []
    for key, parent in parents.items():
        if parent is None:
            roots.append(key)
        elif parent not in nodes:
            orphans.append(key)
        else:
            children[parent].append(key)

    def make_node(key: str) -> dict[str, Any]:
        row = nodes[key]
        name = row.get(name_col) if name_col else None
        progress = _number(row.get(progress_col)) if progress_col else None
        return {
            "name": str(name) if name is not None else key,
            "value": _number(row.get(value_col)) if value_col else None,
            "color": progress_color(progress),
            "children": [],
        }

    visited: set[str] = set()
    cycles: list[str] = []

    def attach(start: str, holder: list[dict[str, Any]]) -> None:
        stack: list[tuple[str, list[dict[str, Any]], frozenset[str]]] = [(start, holder, frozenset())]
        while stack:
            key, target, path = stack.pop()
            if key in path:
                _LOGGER.warning("Mindmap cycle at node %s; descent stopped", key)
                cycles.append(key)
                continue
            if key in visited:
                continue
            visited.add(key)
            node = make_node(key)
            target.append(node)
            child_path = path | {key}
            for child in reversed(children[key]):
                stack.append((child, node["children"], child_path))

    top_level: list[dict[str, Any]] = []
    for key in roots + orphans:
        attach(key, top_level)

    # Whatever is left hangs off a cycle; enter each cycle from its topmost member.
    entered_cycle = False
    for key in nodes:
        if key in visited:
            continue
        chain = [key]
        current = parents[key]
        while current is not None and current in nodes and current not in chain and current not in visited:
            chain.append(current)
            current = parents[current]
        attach(chain[-1], top_level)
        entered_cycle = True

    if orphans:
        _LOGGER.debug("Mindmap orphans attached to root: %s", orphans)

    synthetic = len(top_level) != 1 or bool(orphans) or entered_cycle
    if synthetic:
        root_dict = {"name": SYNTHETIC_ROOT_NAME, "color": DEFAULT_NODE_COLOR, "children": top_level}
    else:
        root_dict = top_level[0]

    root = MindmapNode.model_validate(_prune_empty_children(root_dict))
    node_count = root.count_nodes()
    return MindmapBuild(
        root=root,
        node_count=node_count,
        expand_depth=expand_depth_for(node_count),
        synthetic_root=synthetic,
        orphans=orphans,
        cycles=cycles,
        duplicates=duplicates,
    )


def _prune_empty_children(node: dict[str, Any]) -> dict[str, Any]:
    """Leaves carry ``children=None`` rather than an empty list."""
    stack = [node]
    while stack:
        current = stack.pop()
        if current.get("children"):
            stack.extend(current["children"])
        else:
            current["children"] = None
    return node
