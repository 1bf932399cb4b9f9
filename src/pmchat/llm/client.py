"""Text-generation capability used by the pipeline.

The pipeline only depends on ``TextGenerator.generate(prompt, context)``.
``RoutedTextGenerator`` implements it on top of the provider router; tests
substitute a deterministic stub.
"""

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Protocol

from pmchat.llm.router import call_llm

_LOGGER = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*\n?(.*?)```", re.DOTALL)


class TextGenerator(Protocol):
    """Given a prompt and context, return text. Network-bound and fallible."""

    def generate(self, prompt: str, context: dict[str, Any]) -> str:
        ...


class GenerationTimeout(TimeoutError):
    """A generation call did not finish within its budget."""


class RoutedTextGenerator:
    """TextGenerator backed by ``call_llm``.

    Context keys:
        system_prompt: optional system message
        role: router role (sql, analysis, suggest)
        timeout: request timeout in seconds
    """

    def __init__(self, provider: str | None = None, model_overrides: dict[str, str] | None = None):
        self.provider = provider
        self.model_overrides = model_overrides or {}

    def generate(self, prompt: str, context: dict[str, Any]) -> str:
        role = context.get("role", "sql")
        messages = []
        if context.get("system_prompt"):
            messages.append({"role": "system", "content": context["system_prompt"]})
        messages.append({"role": "user", "content": prompt})
        return call_llm(
            messages,
            role=role,
            timeout=context.get("timeout", 60),
            provider=self.provider,
            model=self.model_overrides.get(role),
        )


def generate_with_timeout(
    generator: TextGenerator,
    prompt: str,
    context: dict[str, Any],
    timeout: float,
) -> str:
    """Run one generation call bounded by ``timeout`` seconds.

    The worker thread is abandoned on timeout; providers also receive the
    timeout so the underlying request ends on its own.

    Raises:
        GenerationTimeout: If the call did not finish in time
        Exception: Whatever the generator raised
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pmchat-llm")
    try:
        future = pool.submit(generator.generate, prompt, {**context, "timeout": timeout})
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            future.cancel()
            raise GenerationTimeout(f"Generation timed out after {timeout:g}s") from exc
    finally:
        pool.shutdown(wait=False)


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced block, or the text itself."""
    match = _FENCE_RE.search(text or "")
    if match:
        return match.group(1).strip()
    return (text or "").strip()


def parse_json_response(response: str) -> Any:
    """Parse JSON from an LLM response, tolerating markdown fences.

    Raises:
        json.JSONDecodeError: If the response is not valid JSON
    """
    return json.loads(strip_code_fence(response))
