"""LLM router: dispatch a call to the configured provider and role model.

Supported providers:
- ollama: local models via Ollama (default)
- anthropic: Claude models via the Anthropic API
- openai: GPT models via the OpenAI API

Environment variables:
- PMC_LLM_PROVIDER: provider to use (ollama, anthropic, openai)
- PMC_ANTHROPIC_API_KEY / ANTHROPIC_API_KEY
- PMC_OPENAI_API_KEY / OPENAI_API_KEY
- PMC_SQL_MODEL, PMC_ANALYSIS_MODEL, PMC_SUGGEST_MODEL: per-role model overrides
"""

import importlib.util
import logging
import os
from typing import Any

from pmchat.llm.ollama_client import ollama_chat

_LOGGER = logging.getLogger(__name__)

ROLES = ("sql", "analysis", "suggest")

DEFAULT_MODELS = {
    "ollama": {
        "sql": "qwen2.5:14b-instruct",
        "analysis": "llama3.1:8b",
        "suggest": "llama3.1:8b",
    },
    "anthropic": {
        "sql": "claude-3-5-sonnet-20241022",
        "analysis": "claude-3-5-haiku-20241022",
        "suggest": "claude-3-5-haiku-20241022",
    },
    "openai": {
        "sql": "gpt-4o",
        "analysis": "gpt-4o-mini",
        "suggest": "gpt-4o-mini",
    },
}

# SQL must be deterministic; prose may vary a little.
DEFAULT_TEMPERATURES = {"sql": 0.0, "analysis": 0.3, "suggest": 0.7}


def _call_anthropic(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int | None,
    timeout: float,
) -> str:
    import anthropic

    api_key = os.environ.get("PMC_ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise ValueError(
            "Anthropic API key not found. Set PMC_ANTHROPIC_API_KEY or ANTHROPIC_API_KEY."
        )

    client = anthropic.Anthropic(api_key=api_key, timeout=timeout)

    system_content = None
    api_messages = []
    for msg in messages:
        if msg["role"] == "system":
            system_content = msg["content"]
        else:
            api_messages.append(msg)

    response = client.messages.create(
        model=model,
        max_tokens=max_tokens or 4096,
        temperature=temperature,
        system=system_content or "You are a helpful data assistant.",
        messages=api_messages,
    )
    return response.content[0].text


def _call_openai(
    messages: list[dict[str, str]],
    model: str,
    temperature: float,
    max_tokens: int | None,
    timeout: float,
) -> str:
    import openai

    api_key = os.environ.get("PMC_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OpenAI API key not found. Set PMC_OPENAI_API_KEY or OPENAI_API_KEY.")

    client = openai.OpenAI(api_key=api_key, timeout=timeout)
    response = client.chat.completions.create(
        model=model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens or 4096,
    )
    return response.choices[0].message.content or ""


def resolve_model(role: str, provider: str | None = None, model: str | None = None) -> tuple[str, str]:
    """Return ``(provider, model)`` for a role, honouring overrides and env."""
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role}. Must be one of {', '.join(ROLES)}")
    resolved_provider = (provider or os.environ.get("PMC_LLM_PROVIDER", "ollama")).lower()
    if resolved_provider not in DEFAULT_MODELS:
        raise ValueError(
            f"Unsupported LLM provider: {resolved_provider}. Supported: {', '.join(DEFAULT_MODELS)}"
        )
    role_model = model or os.environ.get(f"PMC_{role.upper()}_MODEL") or DEFAULT_MODELS[resolved_provider][role]
    return resolved_provider, role_model


def call_llm(
    messages: list[dict[str, str]],
    *,
    role: str = "sql",
    max_tokens: int | None = None,
    timeout: float = 60,
    provider: str | None = None,
    model: str | None = None,
    temperature_override: float | None = None,
) -> str:
    """Route an LLM call to the model configured for ``role``.

    Raises:
        ValueError: If the role or provider is invalid, or the call fails
    """
    resolved_provider, role_model = resolve_model(role, provider, model)
    temperature = float(
        os.environ.get(f"PMC_{role.upper()}_TEMPERATURE", DEFAULT_TEMPERATURES[role])
    )
    if temperature_override is not None:
        temperature = temperature_override

    _LOGGER.debug("LLM call role=%s provider=%s model=%s", role, resolved_provider, role_model)
    if resolved_provider == "anthropic":
        return _call_anthropic(messages, role_model, temperature, max_tokens, timeout)
    if resolved_provider == "openai":
        return _call_openai(messages, role_model, temperature, max_tokens, timeout)
    return ollama_chat(
        messages,
        model=role_model,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )


def _has_module(module_name: str) -> bool:
    return importlib.util.find_spec(module_name) is not None


def get_available_providers() -> list[str]:
    """Providers usable right now (package installed and API key present)."""
    available = ["ollama"]
    if _has_module("anthropic") and (
        os.environ.get("PMC_ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
    ):
        available.append("anthropic")
    if _has_module("openai") and (
        os.environ.get("PMC_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
    ):
        available.append("openai")
    return available


def get_current_config() -> dict[str, Any]:
    provider = os.environ.get("PMC_LLM_PROVIDER", "ollama").lower()
    models = {}
    for role in ROLES:
        try:
            models[role] = resolve_model(role, provider)[1]
        except ValueError:
            models[role] = None
    return {
        "provider": provider,
        "models": models,
        "available_providers": get_available_providers(),
    }
