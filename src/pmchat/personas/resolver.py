"""Persona/prompt resolution for a single turn."""

import logging

from pmchat.contracts import Persona, PromptBundle
from pmchat.errors import ConfigurationError, PersonaNotFoundError
from pmchat.personas.prompts import DEFAULT_ANALYSIS_SYSTEM_PROMPT, DEFAULT_SQL_SYSTEM_PROMPT
from pmchat.personas.store import PersonaStore

_LOGGER = logging.getLogger(__name__)


def _pick_prompt(override: str | None, default: str) -> str:
    if override is not None and override.strip():
        return override.strip()
    return default


def merge_prompts(
    persona: Persona,
    *,
    sql_prompt_override: str | None = None,
    analysis_prompt_override: str | None = None,
) -> PromptBundle:
    """Combine a persona with the (possibly overridden) base prompts."""
    return PromptBundle(
        sql_prompt=_pick_prompt(sql_prompt_override, DEFAULT_SQL_SYSTEM_PROMPT),
        analysis_prompt=_pick_prompt(analysis_prompt_override, DEFAULT_ANALYSIS_SYSTEM_PROMPT),
        persona_prompt=persona.system_prompt,
        persona_id=persona.id,
    )


class PersonaResolver:
    """Select the persona for a turn and build its prompt bundle.

    Selection is side-effect free. An explicit id must exist; without one,
    exactly one persona must be flagged default. Anything else is an
    operator problem and fails loudly instead of picking a persona at random.
    """

    def __init__(
        self,
        store: PersonaStore,
        *,
        sql_prompt_override: str | None = None,
        analysis_prompt_override: str | None = None,
    ):
        self.store = store
        self.sql_prompt_override = sql_prompt_override
        self.analysis_prompt_override = analysis_prompt_override

    def resolve_persona(self, persona_id: str | None = None) -> Persona:
        if persona_id:
            persona = self.store.get_persona(persona_id)
            if persona is None:
                raise PersonaNotFoundError(persona_id)
            return persona

        defaults = self.store.default_personas()
        if not defaults:
            raise ConfigurationError("No default persona is configured")
        if len(defaults) > 1:
            ids = ", ".join(p.id for p in defaults)
            raise ConfigurationError(f"More than one persona is flagged default: {ids}")
        return defaults[0]

    def resolve(
        self,
        persona_id: str | None = None,
        *,
        sql_prompt_override: str | None = None,
        analysis_prompt_override: str | None = None,
    ) -> PromptBundle:
        persona = self.resolve_persona(persona_id)
        bundle = merge_prompts(
            persona,
            sql_prompt_override=sql_prompt_override or self.sql_prompt_override,
            analysis_prompt_override=analysis_prompt_override or self.analysis_prompt_override,
        )
        _LOGGER.debug("Resolved persona %s (%s)", persona.id, persona.name)
        return bundle
