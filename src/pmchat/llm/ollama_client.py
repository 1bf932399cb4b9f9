"""Thin wrapper around the Ollama chat API for local models."""

import logging
import os
import time

import requests

_LOGGER = logging.getLogger(__name__)


def ollama_chat(
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float = 0.0,
    max_tokens: int | None = None,
    timeout: float = 30,
    max_retries: int | None = None,
) -> str:
    """Call Ollama's /api/chat with messages.

    Args:
        messages: List of message dicts with 'role' and 'content'
        model: Ollama model name (e.g. qwen2.5:7b-instruct)
        temperature: Sampling temperature
        max_tokens: Maximum tokens in response (Ollama ``num_predict``)
        timeout: Request timeout in seconds
        max_retries: Retries on connection errors and 5xx (default PMC_MAX_RETRIES or 0)

    Returns:
        Response text content

    Raises:
        ConnectionError: If the Ollama service cannot be reached
        ValueError: If the API call fails or returns an unexpected payload
    """
    base_url = os.environ.get("PMC_OLLAMA_BASE_URL", "http://localhost:11434")
    if max_retries is None:
        max_retries = int(os.environ.get("PMC_MAX_RETRIES", "0"))
    endpoint = f"{base_url}/api/chat"

    # The schema description alone is ~3K tokens; Ollama's default context
    # (2048) would silently truncate it.
    num_ctx = int(os.environ.get("PMC_OLLAMA_NUM_CTX", "8192"))

    payload = {
        "model": model,
        "messages": messages,
        "stream": False,
        "options": {
            "temperature": temperature,
            "num_ctx": num_ctx,
        },
    }
    if max_tokens is not None:
        payload["options"]["num_predict"] = max_tokens

    for attempt in range(max_retries + 1):
        try:
            response = requests.post(endpoint, json=payload, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.ConnectionError as e:
            if attempt < max_retries:
                time.sleep(0.5 * (2 ** attempt))
                continue
            raise ConnectionError(
                f"Cannot connect to Ollama at {base_url}. Ensure Ollama is running."
            ) from e
        except requests.exceptions.Timeout as e:
            raise ValueError(f"Ollama request timed out after {timeout}s (model: {model})") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if 500 <= status < 600 and attempt < max_retries:
                _LOGGER.warning("Ollama returned %s, retrying (attempt %d)", status, attempt + 1)
                time.sleep(0.5 * (2 ** attempt))
                continue
            raise ValueError(f"Ollama API error ({status})") from e

        result = response.json()
        if "message" not in result or "content" not in result["message"]:
            raise ValueError(f"Unexpected Ollama response format: {str(result)[:200]}")
        return result["message"]["content"]

    raise ValueError(f"Ollama call failed after {max_retries} retries")
