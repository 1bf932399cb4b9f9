"""Personas: stored system-prompt profiles and per-turn prompt resolution."""

from pmchat.personas.prompts import (
    DEFAULT_ANALYSIS_SYSTEM_PROMPT,
    DEFAULT_PERSONAS,
    DEFAULT_SQL_SYSTEM_PROMPT,
)
from pmchat.personas.resolver import PersonaResolver, merge_prompts
from pmchat.personas.store import PersonaStore

__all__ = [
    "DEFAULT_ANALYSIS_SYSTEM_PROMPT",
    "DEFAULT_PERSONAS",
    "DEFAULT_SQL_SYSTEM_PROMPT",
    "PersonaResolver",
    "PersonaStore",
    "merge_prompts",
]
