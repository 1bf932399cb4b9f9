#!/usr/bin/env python3
"""Create a demo project database for trying the assistant locally.

Builds every catalog table and fills two projects with users, team members,
a four-level WBS, tasks, issues, requirements, field issues, milestones and
equipment.

Usage:
    python scripts/seed_demo_db.py --db-path ./data/pmchat.duckdb --force
"""

import argparse
import random
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path

import duckdb

from pmchat.catalog.schema import (
    EQUIPMENT_STATUSES,
    FIELD_ISSUE_STATUSES,
    ISSUE_STATUSES,
    MILESTONE_STATUSES,
    REQUIREMENT_STATUSES,
    TASK_STATUSES,
    WBS_STATUSES,
    render_ddl,
)

_FIRST_NAMES = ["Minji", "Joon", "Ana", "Luca", "Priya", "Tom", "Sara", "Kenji", "Olu", "Mara"]
_WBS_PHASES = ["Analysis", "Design", "Development", "Testing", "Rollout"]
_TASK_VERBS = ["Implement", "Review", "Document", "Test", "Refactor", "Deploy"]
_TASK_OBJECTS = ["login flow", "report export", "API client", "dashboard", "Gantt view", "search"]


def _uid() -> str:
    return str(uuid.uuid4())


def _seed_project(conn: duckdb.DuckDBPyConnection, rng: random.Random, name: str, owner_id: str,
                  user_ids: list[str], start: date) -> str:
    project_id = _uid()
    conn.execute(
        "INSERT INTO projects VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [project_id, name, f"{name} demo project", "ACTIVE", start, start + timedelta(days=180),
         rng.randint(10, 70), owner_id, datetime.combine(start, datetime.min.time())],
    )
    for user_id in user_ids:
        conn.execute(
            "INSERT INTO team_members VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [_uid(), "OWNER" if user_id == owner_id else "MEMBER", None, "PMO", None,
             project_id, user_id, datetime.combine(start, datetime.min.time())],
        )

    # Four-level WBS: phase -> work package -> activity -> step
    for p_index, phase in enumerate(_WBS_PHASES, 1):
        phase_id = _uid()
        phase_start = start + timedelta(days=30 * (p_index - 1))
        conn.execute(
            "INSERT INTO wbs_items VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [phase_id, str(p_index), phase, "LEVEL1", rng.choice(WBS_STATUSES), rng.randint(0, 100),
             phase_start, phase_start + timedelta(days=30), 1, None, project_id],
        )
        for w_index in range(1, 3):
            package_id = _uid()
            conn.execute(
                "INSERT INTO wbs_items VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [package_id, f"{p_index}.{w_index}", f"{phase} package {w_index}", "LEVEL2",
                 rng.choice(WBS_STATUSES), rng.randint(0, 100), phase_start,
                 phase_start + timedelta(days=15), 1, phase_id, project_id],
            )
            for a_index in range(1, 3):
                activity_id = _uid()
                conn.execute(
                    "INSERT INTO wbs_items VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [activity_id, f"{p_index}.{w_index}.{a_index}", f"Activity {p_index}.{w_index}.{a_index}",
                     "LEVEL3", rng.choice(WBS_STATUSES), rng.randint(0, 100), phase_start,
                     phase_start + timedelta(days=7), 1, package_id, project_id],
                )
                conn.execute(
                    "INSERT INTO wbs_assignees VALUES (?, ?, ?, ?)",
                    [_uid(), activity_id, rng.choice(user_ids), datetime.now()],
                )

    for _ in range(30):
        task_id = _uid()
        created = start + timedelta(days=rng.randint(0, 90))
        status = rng.choice(TASK_STATUSES)
        conn.execute(
            "INSERT INTO tasks VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [task_id, f"{rng.choice(_TASK_VERBS)} {rng.choice(_TASK_OBJECTS)}", None, status,
             rng.choice(["LOW", "MEDIUM", "HIGH"]), created, created + timedelta(days=rng.randint(3, 20)),
             datetime.combine(created, datetime.min.time()) if status == "COMPLETED" else None,
             project_id, rng.choice(user_ids), owner_id, None, datetime.combine(created, datetime.min.time())],
        )
        conn.execute(
            "INSERT INTO task_assignees VALUES (?, ?, ?, ?)",
            [_uid(), task_id, rng.choice(user_ids), datetime.now()],
        )

    for i in range(1, 21):
        reported = start + timedelta(days=rng.randint(0, 120))
        status = rng.choice(ISSUE_STATUSES)
        conn.execute(
            "INSERT INTO issues VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [_uid(), f"ISS-{i:03d}", f"Issue {i}", status, rng.choice(["CRITICAL", "HIGH", "MEDIUM", "LOW"]),
             rng.choice(["BUG", "IMPROVEMENT", "QUESTION", "FEATURE"]), reported,
             reported + timedelta(days=14),
             reported + timedelta(days=rng.randint(1, 20)) if status in ("RESOLVED", "CLOSED") else None,
             rng.random() < 0.2, project_id, rng.choice(user_ids)],
        )

    for i in range(1, 16):
        requested = start + timedelta(days=rng.randint(0, 60))
        conn.execute(
            "INSERT INTO requirements VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [_uid(), f"REQ-{i:03d}", f"Requirement {i}", rng.choice(REQUIREMENT_STATUSES),
             rng.choice(["MUST", "SHOULD", "COULD", "WONT"]), "Functional", requested,
             requested + timedelta(days=45), rng.random() < 0.15, project_id, rng.choice(user_ids)],
        )

    for i in range(1, 11):
        registered = start + timedelta(days=rng.randint(0, 90))
        conn.execute(
            "INSERT INTO field_issues VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [_uid(), f"IS{i:04d}", rng.choice(["PCBA", "IVI"]), f"Field issue {i}",
             rng.choice(FIELD_ISSUE_STATUSES), registered, None, project_id],
        )

    for i, phase in enumerate(_WBS_PHASES):
        m_start = start + timedelta(days=30 * i)
        conn.execute(
            "INSERT INTO milestones VALUES (?, ?, ?, ?, ?, ?)",
            [_uid(), f"{phase} complete", m_start, m_start + timedelta(days=30),
             rng.choice(MILESTONE_STATUSES), project_id],
        )

    for i in range(1, 9):
        conn.execute(
            "INSERT INTO equipments VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [_uid(), f"EQ-{i:03d}", f"Equipment {i}", rng.choice(["MACHINE", "TOOL", "AOI"]),
             rng.choice(EQUIPMENT_STATUSES), "Line A", "L1", project_id],
        )
    return project_id


def seed(db_path: Path, force: bool, seed_value: int) -> list[str]:
    if db_path.exists():
        if not force:
            raise SystemExit(f"{db_path} exists; pass --force to overwrite")
        db_path.unlink()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    rng = random.Random(seed_value)

    conn = duckdb.connect(str(db_path))
    try:
        for statement in render_ddl():
            conn.execute(statement)
        user_ids = []
        for i, first in enumerate(_FIRST_NAMES):
            user_id = _uid()
            user_ids.append(user_id)
            conn.execute(
                "INSERT INTO users VALUES (?, ?, ?, ?, ?, ?)",
                [user_id, f"{first.lower()}@example.com", first, "ADMIN" if i == 0 else "USER",
                 "DEVELOPER", datetime(2026, 1, 1)],
            )
        project_ids = [
            _seed_project(conn, rng, "Smart Factory MES", user_ids[0], user_ids[:6], date(2026, 1, 5)),
            _seed_project(conn, rng, "IVI Line Upgrade", user_ids[1], user_ids[4:], date(2026, 3, 2)),
        ]
    finally:
        conn.close()
    return project_ids


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed a demo project database")
    parser.add_argument("--db-path", default="./data/pmchat.duckdb", help="DuckDB file to create")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing file")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    args = parser.parse_args()

    project_ids = seed(Path(args.db_path), args.force, args.seed)
    print(f"Seeded {args.db_path}")
    for project_id in project_ids:
        print(f"  project: {project_id}")


if __name__ == "__main__":
    main()
