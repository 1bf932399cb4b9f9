"""Allow-listed schema description used by the SQL generator and guard."""

from pmchat.catalog.schema import (
    SCHEMA,
    SCHEMA_VERSION,
    ColumnSpec,
    TableSpec,
    allowed_tables,
    get_table,
    project_filter_hint,
    render_ddl,
    render_schema_prompt,
)

__all__ = [
    "SCHEMA",
    "SCHEMA_VERSION",
    "ColumnSpec",
    "TableSpec",
    "allowed_tables",
    "get_table",
    "project_filter_hint",
    "render_ddl",
    "render_schema_prompt",
]
