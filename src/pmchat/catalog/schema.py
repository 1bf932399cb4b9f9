"""Static, versioned description of the queryable project-data schema.

The description is injected into the SQL-generation prompt and is the
allow-list the SQL guard re-checks. It is never introspected from the live
database, so data in the store cannot widen the set of reachable tables.

Status vocabularies are declared per entity. Different entities use
different label sets (field issues mix OPEN/RESOLVED with
PENDING/COMPLETED), so no cross-entity status enum is assumed.
"""

from dataclasses import dataclass, field

SCHEMA_VERSION = "2026.10.1"


@dataclass(frozen=True)
class ColumnSpec:
    """One queryable column."""

    name: str
    type: str
    description: str = ""
    values: tuple[str, ...] = ()


@dataclass(frozen=True)
class TableSpec:
    """One allow-listed table.

    ``scope_column`` names the column binding a row to a project
    (``project_id`` for project data, ``id`` for the projects table).
    ``is_global`` marks tables holding no project data at all; join tables
    without their own project column are neither, so a project-scoped query
    touching them must still carry a project predicate.
    """

    name: str
    description: str
    columns: tuple[ColumnSpec, ...]
    scope_column: str | None = "project_id"
    is_global: bool = False
    notes: tuple[str, ...] = field(default_factory=tuple)

    def status_values(self) -> tuple[str, ...]:
        for col in self.columns:
            if col.name == "status":
                return col.values
        return ()


def _c(name: str, type_: str, description: str = "", values: tuple[str, ...] = ()) -> ColumnSpec:
    return ColumnSpec(name=name, type=type_, description=description, values=values)


TASK_STATUSES = ("PENDING", "IN_PROGRESS", "HOLDING", "DELAYED", "COMPLETED", "CANCELLED")
WBS_STATUSES = ("PENDING", "IN_PROGRESS", "HOLDING", "DELAYED", "COMPLETED", "CANCELLED")
ISSUE_STATUSES = ("OPEN", "IN_PROGRESS", "RESOLVED", "CLOSED", "WONT_FIX")
FIELD_ISSUE_STATUSES = ("OPEN", "IN_PROGRESS", "RESOLVED", "WONT_FIX", "CLOSED", "PENDING", "COMPLETED")
REQUIREMENT_STATUSES = ("DRAFT", "APPROVED", "REJECTED", "IMPLEMENTED")
PROJECT_STATUSES = ("PLANNING", "ACTIVE", "ON_HOLD", "COMPLETED", "CANCELLED")
MILESTONE_STATUSES = ("PENDING", "IN_PROGRESS", "COMPLETED", "DELAYED")
EQUIPMENT_STATUSES = ("ACTIVE", "MAINTENANCE", "INACTIVE", "BROKEN", "RESERVED")


SCHEMA: dict[str, TableSpec] = {
    t.name: t
    for t in (
        TableSpec(
            name="users",
            description="Application users",
            scope_column=None,
            is_global=True,
            columns=(
                _c("id", "uuid", "User id (PK)"),
                _c("email", "string", "Email address"),
                _c("name", "string?", "Display name"),
                _c("role", "enum", "System role", ("ADMIN", "USER", "GUEST")),
                _c("affiliation", "enum?", "Affiliation",
                   ("CLIENT", "DEVELOPER", "CONSULTING", "OUTSOURCING", "OTHER")),
                _c("created_at", "timestamp", "Created at"),
            ),
        ),
        TableSpec(
            name="projects",
            description="Projects",
            scope_column="id",
            columns=(
                _c("id", "uuid", "Project id (PK)"),
                _c("name", "string", "Project name"),
                _c("description", "string?", "Description"),
                _c("status", "enum", "Project status", PROJECT_STATUSES),
                _c("start_date", "date?", "Start date"),
                _c("end_date", "date?", "End date"),
                _c("progress", "int", "Progress 0-100"),
                _c("owner_id", "uuid", "Owner (FK users.id)"),
                _c("created_at", "timestamp", "Created at"),
            ),
        ),
        TableSpec(
            name="team_members",
            description="Project team membership",
            columns=(
                _c("id", "uuid", "Membership id (PK)"),
                _c("role", "enum", "Team role", ("OWNER", "MANAGER", "MEMBER")),
                _c("custom_role", "string?", "Custom role label (PMO, PL, ...)"),
                _c("department", "string?", "Department"),
                _c("position", "string?", "Job position"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
                _c("user_id", "uuid", "User (FK users.id)"),
                _c("joined_at", "timestamp", "Joined at"),
            ),
        ),
        TableSpec(
            name="tasks",
            description="Kanban tasks",
            columns=(
                _c("id", "uuid", "Task id (PK)"),
                _c("title", "string", "Title"),
                _c("description", "string?", "Description"),
                _c("status", "enum", "Task status", TASK_STATUSES),
                _c("priority", "enum", "Priority", ("LOW", "MEDIUM", "HIGH")),
                _c("start_date", "date?", "Start date"),
                _c("due_date", "date?", "Due date"),
                _c("completed_at", "timestamp?", "Completed at"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
                _c("assignee_id", "uuid?", "Main assignee (FK users.id)"),
                _c("creator_id", "uuid", "Creator (FK users.id)"),
                _c("requirement_id", "uuid?", "Linked requirement (FK requirements.id)"),
                _c("created_at", "timestamp", "Created at"),
            ),
        ),
        TableSpec(
            name="task_assignees",
            description="Task to user assignments (many-to-many)",
            scope_column=None,
            columns=(
                _c("id", "uuid", "Row id (PK)"),
                _c("task_id", "uuid", "Task (FK tasks.id)"),
                _c("user_id", "uuid", "User (FK users.id)"),
                _c("assigned_at", "timestamp", "Assigned at"),
            ),
            notes=("Join tasks to filter by project.",),
        ),
        TableSpec(
            name="wbs_items",
            description="Hierarchical WBS items (self-referencing through parent_id)",
            columns=(
                _c("id", "uuid", "WBS item id (PK)"),
                _c("code", "string", "WBS code (1, 1.1, 1.1.1)"),
                _c("name", "string", "Item name"),
                _c("level", "enum", "Hierarchy level", ("LEVEL1", "LEVEL2", "LEVEL3", "LEVEL4")),
                _c("status", "enum", "WBS status", WBS_STATUSES),
                _c("progress", "int", "Progress 0-100"),
                _c("start_date", "date?", "Planned start"),
                _c("end_date", "date?", "Planned end"),
                _c("weight", "int", "Weight for progress roll-up"),
                _c("parent_id", "uuid?", "Parent item (FK wbs_items.id); NULL at LEVEL1"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
            ),
            notes=(
                "Assignees live in wbs_assignees, not on this table.",
                "Select id, parent_id and name to get a mindmap of the hierarchy.",
            ),
        ),
        TableSpec(
            name="wbs_assignees",
            description="WBS item to user assignments (many-to-many)",
            scope_column=None,
            columns=(
                _c("id", "uuid", "Row id (PK)"),
                _c("wbs_item_id", "uuid", "WBS item (FK wbs_items.id)"),
                _c("user_id", "uuid", "User (FK users.id)"),
                _c("assigned_at", "timestamp", "Assigned at"),
            ),
            notes=("Join wbs_items to filter by project.",),
        ),
        TableSpec(
            name="requirements",
            description="Requirement checklist",
            columns=(
                _c("id", "uuid", "Requirement id (PK)"),
                _c("code", "string?", "Code (REQ-001)"),
                _c("title", "string", "Title"),
                _c("status", "enum", "Requirement status", REQUIREMENT_STATUSES),
                _c("priority", "enum", "MoSCoW priority", ("MUST", "SHOULD", "COULD", "WONT")),
                _c("category", "string?", "Category"),
                _c("request_date", "date", "Requested on"),
                _c("due_date", "date?", "Due date"),
                _c("is_delayed", "boolean", "Delayed flag"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
                _c("assignee_id", "uuid?", "Assignee (FK users.id)"),
            ),
        ),
        TableSpec(
            name="issues",
            description="Internal issue checklist",
            columns=(
                _c("id", "uuid", "Issue id (PK)"),
                _c("code", "string?", "Code (ISS-001)"),
                _c("title", "string", "Title"),
                _c("status", "enum", "Issue status", ISSUE_STATUSES),
                _c("priority", "enum", "Priority", ("CRITICAL", "HIGH", "MEDIUM", "LOW")),
                _c("category", "enum", "Category",
                   ("BUG", "IMPROVEMENT", "QUESTION", "FEATURE", "DOCUMENTATION", "OTHER")),
                _c("report_date", "date", "Reported on"),
                _c("due_date", "date?", "Target resolution date"),
                _c("resolved_date", "date?", "Actual resolution date"),
                _c("is_delayed", "boolean", "Delayed flag"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
                _c("assignee_id", "uuid?", "Assignee (FK users.id)"),
            ),
        ),
        TableSpec(
            name="field_issues",
            description="Customer field issues",
            columns=(
                _c("id", "uuid", "Field issue id (PK)"),
                _c("code", "string", "Issue number (IS0001)"),
                _c("business_unit", "string", "Business unit"),
                _c("title", "string", "Title"),
                _c("status", "enum", "Field issue status", FIELD_ISSUE_STATUSES),
                _c("registered_date", "date?", "Registered on"),
                _c("resolved_date", "date?", "Resolved on"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
            ),
        ),
        TableSpec(
            name="milestones",
            description="Timeline milestones",
            columns=(
                _c("id", "uuid", "Milestone id (PK)"),
                _c("name", "string", "Name"),
                _c("start_date", "date", "Start date"),
                _c("end_date", "date", "End date"),
                _c("status", "enum", "Milestone status", MILESTONE_STATUSES),
                _c("project_id", "uuid", "Project (FK projects.id)"),
            ),
        ),
        TableSpec(
            name="equipments",
            description="Factory equipment",
            columns=(
                _c("id", "uuid", "Equipment id (PK)"),
                _c("code", "string", "Equipment code (EQ-001)"),
                _c("name", "string", "Name"),
                _c("type", "string", "Equipment type (MACHINE, TOOL, AOI, ...)"),
                _c("status", "enum", "Equipment status", EQUIPMENT_STATUSES),
                _c("location", "string?", "Physical location"),
                _c("line_code", "string?", "Line code"),
                _c("project_id", "uuid", "Project (FK projects.id)"),
            ),
        ),
    )
}


def allowed_tables() -> frozenset[str]:
    """Names of all allow-listed tables."""
    return frozenset(SCHEMA)


def get_table(name: str) -> TableSpec | None:
    return SCHEMA.get(name.lower())


def render_schema_prompt() -> str:
    """Render the schema description for the SQL-generation prompt."""
    lines = [f"# Database schema (version {SCHEMA_VERSION})", ""]
    for table in SCHEMA.values():
        lines.append(f"## {table.name}")
        lines.append(table.description)
        for note in table.notes:
            lines.append(f"Note: {note}")
        lines.append("")
        lines.append("| column | type | description |")
        lines.append("|--------|------|-------------|")
        for col in table.columns:
            type_str = col.type
            if col.values:
                type_str += f" ({', '.join(col.values)})"
            lines.append(f"| {col.name} | {type_str} | {col.description} |")
        lines.append("")
    lines.append("Only the tables above exist. Status values differ per table; use the values listed for that table.")
    return "\n".join(lines)


def project_filter_hint(project_id: str | None) -> str:
    """Instruction telling the model how to scope its query."""
    if not project_id:
        return "No project is selected: the query covers data across all projects."
    return (
        f"Current project id: '{project_id}'.\n"
        f"Every query on project data MUST filter with project_id = '{project_id}' "
        f"(or id = '{project_id}' when reading the projects table). "
        "The filter goes in the WHERE clause, ANDed with other conditions, of every SELECT: "
        "each UNION branch, each subquery and each CTE. "
        "When joining project tables, filter each one by alias (t.project_id = ...) "
        "or join them on project_id (w.project_id = t.project_id). "
        "Queries on task_assignees or wbs_assignees must join their parent table and filter it the same way."
    )


_DUCKDB_TYPES = {
    "uuid": "VARCHAR",
    "string": "VARCHAR",
    "enum": "VARCHAR",
    "int": "INTEGER",
    "date": "DATE",
    "timestamp": "TIMESTAMP",
    "boolean": "BOOLEAN",
}


def render_ddl() -> list[str]:
    """CREATE TABLE statements matching the catalog, for seeding a project database."""
    statements = []
    for table in SCHEMA.values():
        cols = ",\n    ".join(
            f"{col.name} {_DUCKDB_TYPES[col.type.rstrip('?')]}" for col in table.columns
        )
        statements.append(f"CREATE TABLE IF NOT EXISTS {table.name} (\n    {cols}\n)")
    return statements
