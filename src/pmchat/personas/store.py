"""Durable persona storage.

Personas are the only mutable records of the assistant. The "exactly one
default" rule is enforced here at write time: every write that sets a
default clears the flag on all other rows in the same transaction, and the
default persona can neither be deleted nor un-flagged directly.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import duckdb

from pmchat.contracts import Persona
from pmchat.errors import PersonaError, PersonaNotFoundError
from pmchat.personas.prompts import DEFAULT_PERSONAS

_LOGGER = logging.getLogger(__name__)

_COLUMNS = "persona_id, name, description, icon, system_prompt, is_default, created_at"
_UPDATABLE = ("name", "description", "icon", "system_prompt")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _row_to_persona(row: tuple[Any, ...]) -> Persona:
    return Persona(
        id=str(row[0]),
        name=str(row[1]),
        description=row[2],
        icon=str(row[3] or "smart_toy"),
        system_prompt=str(row[4]),
        is_default=bool(row[5]),
        created_at=row[6],
    )


class PersonaStore:
    """Thread-safe persona persistence on DuckDB."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser()
        self._lock = threading.RLock()
        self._ensure_tables()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return duckdb.connect(str(self.db_path), read_only=False)

    def _ensure_tables(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS pmchat_personas (
                        persona_id VARCHAR,
                        name VARCHAR NOT NULL,
                        description VARCHAR,
                        icon VARCHAR,
                        system_prompt VARCHAR NOT NULL,
                        is_default BOOLEAN NOT NULL,
                        created_at TIMESTAMP,
                        updated_at TIMESTAMP
                    )
                    """
                )
            finally:
                conn.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_personas(self) -> list[Persona]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM pmchat_personas
                    ORDER BY is_default DESC, created_at ASC, name ASC
                    """
                ).fetchall()
            finally:
                conn.close()
        return [_row_to_persona(row) for row in rows]

    def get_persona(self, persona_id: str) -> Persona | None:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM pmchat_personas WHERE persona_id = ?",
                    [persona_id],
                ).fetchone()
            finally:
                conn.close()
        return _row_to_persona(row) if row else None

    def _require(self, persona_id: str) -> Persona:
        persona = self.get_persona(persona_id)
        if persona is None:
            raise PersonaNotFoundError(persona_id)
        return persona

    def default_personas(self) -> list[Persona]:
        """All personas flagged default. More than one means the table was edited by hand."""
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM pmchat_personas WHERE is_default ORDER BY created_at ASC"
                ).fetchall()
            finally:
                conn.close()
        return [_row_to_persona(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_persona(
        self,
        *,
        name: str,
        system_prompt: str,
        description: str | None = None,
        icon: str | None = None,
        is_default: bool = False,
        created_at: datetime | None = None,
    ) -> Persona:
        if not (name or "").strip() or not (system_prompt or "").strip():
            raise PersonaError("Persona name and system prompt are required")

        persona_id = str(uuid.uuid4())
        now = created_at or _utc_now()
        with self._lock:
            conn = self._connect()
            try:
                conn.begin()
                try:
                    if is_default:
                        conn.execute("UPDATE pmchat_personas SET is_default = FALSE WHERE is_default")
                    conn.execute(
                        "INSERT INTO pmchat_personas VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        [
                            persona_id,
                            name.strip(),
                            description,
                            icon or "smart_toy",
                            system_prompt.strip(),
                            bool(is_default),
                            now,
                            now,
                        ],
                    )
                    conn.commit()
                except duckdb.Error:
                    conn.rollback()
                    raise
            finally:
                conn.close()
        _LOGGER.info("Created persona %s (%s, default=%s)", persona_id, name, is_default)
        return self._require(persona_id)

    def update_persona(self, persona_id: str, **changes: Any) -> Persona:
        """Apply a partial update. ``is_default=True`` makes it the single default."""
        current = self.get_persona(persona_id)
        if current is None:
            raise PersonaNotFoundError(persona_id)

        unknown = set(changes) - set(_UPDATABLE) - {"is_default"}
        if unknown:
            raise PersonaError(f"Unknown persona fields: {', '.join(sorted(unknown))}")

        make_default = changes.pop("is_default", None)
        if make_default is False and current.is_default:
            raise PersonaError("Cannot unset the default persona; make another persona the default instead")

        updates = {k: v for k, v in changes.items() if v is not None}
        for key in ("name", "system_prompt"):
            if key in updates and not str(updates[key]).strip():
                raise PersonaError(f"Persona {key} cannot be empty")

        with self._lock:
            conn = self._connect()
            try:
                conn.begin()
                try:
                    if updates:
                        assignments = ", ".join(f"{key} = ?" for key in updates)
                        conn.execute(
                            f"UPDATE pmchat_personas SET {assignments}, updated_at = ? WHERE persona_id = ?",
                            [*updates.values(), _utc_now(), persona_id],
                        )
                    if make_default:
                        self._set_default_locked(conn, persona_id)
                    conn.commit()
                except duckdb.Error:
                    conn.rollback()
                    raise
            finally:
                conn.close()
        return self._require(persona_id)

    def set_default(self, persona_id: str) -> Persona:
        if self.get_persona(persona_id) is None:
            raise PersonaNotFoundError(persona_id)
        with self._lock:
            conn = self._connect()
            try:
                conn.begin()
                try:
                    self._set_default_locked(conn, persona_id)
                    conn.commit()
                except duckdb.Error:
                    conn.rollback()
                    raise
            finally:
                conn.close()
        _LOGGER.info("Persona %s is now the default", persona_id)
        return self._require(persona_id)

    @staticmethod
    def _set_default_locked(conn: duckdb.DuckDBPyConnection, persona_id: str) -> None:
        conn.execute(
            "UPDATE pmchat_personas SET is_default = FALSE WHERE is_default AND persona_id <> ?",
            [persona_id],
        )
        conn.execute(
            "UPDATE pmchat_personas SET is_default = TRUE, updated_at = ? WHERE persona_id = ?",
            [_utc_now(), persona_id],
        )

    def delete_persona(self, persona_id: str) -> None:
        persona = self.get_persona(persona_id)
        if persona is None:
            raise PersonaNotFoundError(persona_id)
        if persona.is_default:
            raise PersonaError("The default persona cannot be deleted")
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM pmchat_personas WHERE persona_id = ?", [persona_id])
            finally:
                conn.close()
        _LOGGER.info("Deleted persona %s", persona_id)

    def seed_defaults(self) -> int:
        """Insert the built-in personas when none exist. Returns how many were created."""
        with self._lock:
            if self.list_personas():
                return 0
            base = _utc_now()
            for offset, template in enumerate(DEFAULT_PERSONAS):
                self.create_persona(
                    name=template["name"],
                    description=template["description"],
                    icon=template["icon"],
                    system_prompt=template["system_prompt"],
                    is_default=template["is_default"],
                    created_at=base + timedelta(milliseconds=offset),
                )
        return len(DEFAULT_PERSONAS)
