"""Shared test fixtures for the pmchat test suite.

Provides:

* ``project_db``       -- small, precisely-counted project database (two projects)
* ``stub_generator``   -- deterministic TextGenerator replying per role
* ``config``           -- AssistantConfig pointing at ``project_db`` and a tmp store
* ``orchestrator``     -- ChatOrchestrator wired to ``config`` and ``stub_generator``
* ``client``           -- FastAPI TestClient over the same wiring

Known data (project ``proj-1``): 5 OPEN + 3 CLOSED issues, a 4-item WBS tree
(1 root, 2 children, 1 grandchild), 3 tasks. Project ``proj-2``: 2 OPEN issues.
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

import duckdb
import pytest
from fastapi.testclient import TestClient

from pmchat.api.server import create_app
from pmchat.catalog.schema import render_ddl
from pmchat.config import AssistantConfig
from pmchat.orchestrator.runtime import ChatOrchestrator

PROJECT_ID = "proj-1"
OTHER_PROJECT_ID = "proj-2"

ISSUE_STATUS_SQL = (
    "CHART: bar\n"
    "```sql\n"
    "SELECT status, count(*) AS count FROM issues "
    f"WHERE project_id = '{PROJECT_ID}' GROUP BY status ORDER BY 2 DESC\n"
    "```"
)


# ---------------------------------------------------------------------------
# Stub text generator
# ---------------------------------------------------------------------------

class StubGenerator:
    """Deterministic TextGenerator.

    ``replies`` maps a router role (sql, analysis, suggest) to a string, a
    callable ``(prompt, context) -> str``, or an exception instance to raise.
    Every call is recorded in ``calls`` as ``(role, prompt, context)``.
    """

    def __init__(self, **replies: Any):
        self.replies: dict[str, Any] = {
            "sql": ISSUE_STATUS_SQL,
            "analysis": "**Open issues dominate.** 5 issues are OPEN and 3 are CLOSED.",
            "suggest": None,
        }
        self.replies.update(replies)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def generate(self, prompt: str, context: dict[str, Any]) -> str:
        role = context.get("role", "sql")
        self.calls.append((role, prompt, context))
        reply = self.replies.get(role)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt, context)
        return reply or ""

    def roles(self) -> list[str]:
        return [role for role, _, _ in self.calls]


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------

def _insert_issue(conn, issue_id: str, status: str, project_id: str, reported: date) -> None:
    conn.execute(
        "INSERT INTO issues VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [issue_id, issue_id.upper(), f"Issue {issue_id}", status, "HIGH", "BUG",
         reported, None, None, False, project_id, None],
    )


@pytest.fixture()
def project_db(tmp_path: Path) -> Path:
    """Small project database with precisely known counts."""
    db_path = tmp_path / "project.duckdb"
    conn = duckdb.connect(str(db_path))
    try:
        for statement in render_ddl():
            conn.execute(statement)

        conn.execute(
            "INSERT INTO users VALUES (?, ?, ?, ?, ?, ?)",
            ["u1", "minji@example.com", "Minji", "ADMIN", "DEVELOPER", datetime(2026, 1, 1)],
        )
        for project_id, name in ((PROJECT_ID, "Smart Factory MES"), (OTHER_PROJECT_ID, "IVI Line Upgrade")):
            conn.execute(
                "INSERT INTO projects VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [project_id, name, None, "ACTIVE", date(2026, 1, 5), date(2026, 6, 30), 40, "u1",
                 datetime(2026, 1, 5)],
            )

        for i in range(5):
            _insert_issue(conn, f"i-open-{i}", "OPEN", PROJECT_ID, date(2026, 2, 1 + i))
        for i in range(3):
            _insert_issue(conn, f"i-closed-{i}", "CLOSED", PROJECT_ID, date(2026, 2, 10 + i))
        for i in range(2):
            _insert_issue(conn, f"i-other-{i}", "OPEN", OTHER_PROJECT_ID, date(2026, 3, 1 + i))

        wbs = [
            ("w1", "1", "Design", "LEVEL1", 60, None),
            ("w2", "1.1", "UI design", "LEVEL2", 100, "w1"),
            ("w3", "1.2", "DB design", "LEVEL2", 30, "w1"),
            ("w4", "1.2.1", "ERD", "LEVEL3", 10, "w3"),
        ]
        for item_id, code, name, level, progress, parent_id in wbs:
            conn.execute(
                "INSERT INTO wbs_items VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [item_id, code, name, level, "IN_PROGRESS", progress, date(2026, 1, 5), date(2026, 2, 5),
                 1, parent_id, PROJECT_ID],
            )

        for task_id, title, status in (("t1", "Implement login", "IN_PROGRESS"),
                                       ("t2", "Review ERD", "COMPLETED"),
                                       ("t3", "Deploy MES", "PENDING")):
            conn.execute(
                "INSERT INTO tasks VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [task_id, title, None, status, "HIGH", date(2026, 1, 10), date(2026, 1, 20), None,
                 PROJECT_ID, "u1", "u1", None, datetime(2026, 1, 10)],
            )
    finally:
        conn.close()
    return db_path


# ---------------------------------------------------------------------------
# Pipeline wiring
# ---------------------------------------------------------------------------

@pytest.fixture()
def stub_generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture()
def config(tmp_path: Path, project_db: Path) -> AssistantConfig:
    return AssistantConfig(
        data_db_path=project_db,
        store_db_path=tmp_path / "runtime" / "store.duckdb",
        sql_gen_timeout_seconds=5.0,
        analysis_timeout_seconds=5.0,
    )


@pytest.fixture()
def orchestrator(config: AssistantConfig, stub_generator: StubGenerator) -> ChatOrchestrator:
    return ChatOrchestrator(config, stub_generator)


@pytest.fixture()
def client(config: AssistantConfig, stub_generator: StubGenerator) -> TestClient:
    """FastAPI TestClient backed by the known project database."""
    return TestClient(create_app(config, stub_generator))


@pytest.fixture()
def sql_reply(stub_generator: StubGenerator) -> Callable[[str, str], None]:
    """Set the next SQL reply: ``sql_reply("SELECT ...", "bar")``."""

    def _set(sql: str, chart: str = "none") -> None:
        stub_generator.replies["sql"] = f"CHART: {chart}\n```sql\n{sql}\n```"

    return _set
