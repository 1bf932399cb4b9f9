"""Text-generation capability and provider routing."""

from pmchat.llm.client import (
    GenerationTimeout,
    RoutedTextGenerator,
    TextGenerator,
    generate_with_timeout,
    parse_json_response,
    strip_code_fence,
)
from pmchat.llm.router import call_llm, get_current_config

__all__ = [
    "GenerationTimeout",
    "RoutedTextGenerator",
    "TextGenerator",
    "call_llm",
    "generate_with_timeout",
    "get_current_config",
    "parse_json_response",
    "strip_code_fence",
]
