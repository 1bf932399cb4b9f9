"""Runtime configuration for the chat assistant.

Values come from ``PMC_*`` environment variables with sensible defaults:

- PMC_DATA_DB_PATH: DuckDB file holding project data (read-only)
- PMC_STORE_DB_PATH: DuckDB file for turns, feedback and personas
- PMC_MAX_ROWS: row ceiling for one query result
- PMC_SQL_TIMEOUT_S: statement timeout
- PMC_SQL_GEN_TIMEOUT_S / PMC_ANALYSIS_TIMEOUT_S: generation timeouts
- PMC_HISTORY_TURNS: recent turns included in the SQL prompt
- PMC_LLM_PROVIDER: ollama, openai or anthropic
- PMC_SQL_SYSTEM_PROMPT_FILE / PMC_ANALYSIS_SYSTEM_PROMPT_FILE: prompt overrides
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from pmchat.errors import ConfigurationError

_LOGGER = logging.getLogger(__name__)

DEFAULT_DATA_DB_PATH = "./data/pmchat.duckdb"
DEFAULT_STORE_DB_PATH = "./data/.runtime/pmchat_store.duckdb"


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _read_prompt_file(name: str) -> str | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    path = Path(raw).expanduser()
    if not path.exists():
        raise ConfigurationError(f"{name} points to a missing file: {path}")
    text = path.read_text(encoding="utf-8").strip()
    return text or None


@dataclass
class AssistantConfig:
    """Configuration for one assistant instance."""

    # Storage
    data_db_path: Path = Path(DEFAULT_DATA_DB_PATH)
    store_db_path: Path = Path(DEFAULT_STORE_DB_PATH)

    # Query limits
    max_rows: int = 100
    sql_timeout_seconds: float = 5.0

    # Generation
    llm_provider: str | None = None
    sql_model: str | None = None
    analysis_model: str | None = None
    sql_gen_timeout_seconds: float = 30.0
    analysis_timeout_seconds: float = 60.0
    history_turns: int = 6

    # Operator prompt overrides (None = built-in defaults)
    sql_prompt_override: str | None = None
    analysis_prompt_override: str | None = None

    @classmethod
    def from_env(cls) -> "AssistantConfig":
        config = cls(
            data_db_path=Path(os.environ.get("PMC_DATA_DB_PATH", DEFAULT_DATA_DB_PATH)).expanduser(),
            store_db_path=Path(os.environ.get("PMC_STORE_DB_PATH", DEFAULT_STORE_DB_PATH)).expanduser(),
            max_rows=_env_int("PMC_MAX_ROWS", 100),
            sql_timeout_seconds=_env_float("PMC_SQL_TIMEOUT_S", 5.0),
            llm_provider=(os.environ.get("PMC_LLM_PROVIDER") or None),
            sql_model=(os.environ.get("PMC_SQL_MODEL") or None),
            analysis_model=(os.environ.get("PMC_ANALYSIS_MODEL") or None),
            sql_gen_timeout_seconds=_env_float("PMC_SQL_GEN_TIMEOUT_S", 30.0),
            analysis_timeout_seconds=_env_float("PMC_ANALYSIS_TIMEOUT_S", 60.0),
            history_turns=_env_int("PMC_HISTORY_TURNS", 6, minimum=0),
            sql_prompt_override=_read_prompt_file("PMC_SQL_SYSTEM_PROMPT_FILE"),
            analysis_prompt_override=_read_prompt_file("PMC_ANALYSIS_SYSTEM_PROMPT_FILE"),
        )
        _LOGGER.debug(
            "Loaded config: data_db=%s store_db=%s provider=%s max_rows=%d",
            config.data_db_path,
            config.store_db_path,
            config.llm_provider or "default",
            config.max_rows,
        )
        return config
