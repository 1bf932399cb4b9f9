"""Tests for provider routing and the text-generation helpers (no network)."""

import json
import time

import pytest
import requests

from pmchat.llm import client as llm_client
from pmchat.llm import ollama_client
from pmchat.llm.client import (
    GenerationTimeout,
    RoutedTextGenerator,
    generate_with_timeout,
    parse_json_response,
    strip_code_fence,
)
from pmchat.llm.router import DEFAULT_MODELS, get_current_config, resolve_model


class _FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(response=self)

    def json(self):
        return self._payload


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("PMC_LLM_PROVIDER", "PMC_SQL_MODEL", "PMC_ANALYSIS_MODEL", "PMC_MAX_RETRIES"):
        monkeypatch.delenv(name, raising=False)


class TestRouter:
    def test_defaults_to_ollama(self):
        assert resolve_model("sql") == ("ollama", DEFAULT_MODELS["ollama"]["sql"])

    def test_env_and_explicit_overrides(self, monkeypatch):
        monkeypatch.setenv("PMC_LLM_PROVIDER", "OpenAI")
        monkeypatch.setenv("PMC_ANALYSIS_MODEL", "gpt-4.1-mini")
        assert resolve_model("analysis") == ("openai", "gpt-4.1-mini")
        assert resolve_model("analysis", model="custom") == ("openai", "custom")

    def test_invalid_role_and_provider(self):
        with pytest.raises(ValueError):
            resolve_model("planner")
        with pytest.raises(ValueError):
            resolve_model("sql", provider="mystery")

    def test_current_config_lists_models(self):
        config = get_current_config()
        assert config["provider"] == "ollama"
        assert set(config["models"]) == {"sql", "analysis", "suggest"}
        assert "ollama" in config["available_providers"]


class TestOllamaClient:
    def test_posts_chat_payload(self, monkeypatch):
        captured = {}

        def fake_post(url, json=None, timeout=None):
            captured.update(url=url, payload=json, timeout=timeout)
            return _FakeResponse({"message": {"content": "SELECT 1"}})

        monkeypatch.setattr(ollama_client.requests, "post", fake_post)
        text = ollama_client.ollama_chat(
            [{"role": "user", "content": "hi"}], model="m", temperature=0.0, max_tokens=64, timeout=3
        )

        assert text == "SELECT 1"
        assert captured["url"].endswith("/api/chat")
        assert captured["payload"]["stream"] is False
        assert captured["payload"]["options"]["num_predict"] == 64
        assert captured["timeout"] == 3

    def test_connection_error(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(ollama_client.requests, "post", refuse)
        with pytest.raises(ConnectionError):
            ollama_client.ollama_chat([{"role": "user", "content": "hi"}], model="m")

    def test_http_error_and_bad_payload(self, monkeypatch):
        monkeypatch.setattr(ollama_client.requests, "post", lambda *a, **k: _FakeResponse({}, status=404))
        with pytest.raises(ValueError, match="404"):
            ollama_client.ollama_chat([{"role": "user", "content": "hi"}], model="m")

        monkeypatch.setattr(ollama_client.requests, "post", lambda *a, **k: _FakeResponse({"done": True}))
        with pytest.raises(ValueError, match="Unexpected"):
            ollama_client.ollama_chat([{"role": "user", "content": "hi"}], model="m")


class TestRoutedTextGenerator:
    def test_builds_messages_and_routes_by_role(self, monkeypatch):
        calls = []

        def fake_call_llm(messages, **kwargs):
            calls.append((messages, kwargs))
            return "ok"

        monkeypatch.setattr(llm_client, "call_llm", fake_call_llm)
        generator = RoutedTextGenerator(provider="ollama", model_overrides={"analysis": "small"})
        result = generator.generate("question", {"system_prompt": "sys", "role": "analysis", "timeout": 7})

        assert result == "ok"
        messages, kwargs = calls[0]
        assert messages == [{"role": "system", "content": "sys"}, {"role": "user", "content": "question"}]
        assert kwargs == {"role": "analysis", "timeout": 7, "provider": "ollama", "model": "small"}


class TestHelpers:
    def test_generate_with_timeout_returns_result(self):
        class Echo:
            def generate(self, prompt, context):
                return f"{prompt}:{context['timeout']}"

        assert generate_with_timeout(Echo(), "p", {}, 2) == "p:2"

    def test_generate_with_timeout_raises(self):
        class Slow:
            def generate(self, prompt, context):
                time.sleep(1)
                return "late"

        with pytest.raises(GenerationTimeout):
            generate_with_timeout(Slow(), "p", {}, 0.05)

    def test_generator_errors_propagate(self):
        class Broken:
            def generate(self, prompt, context):
                raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            generate_with_timeout(Broken(), "p", {}, 1)

    def test_code_fences(self):
        assert strip_code_fence("```json\n[1, 2]\n```") == "[1, 2]"
        assert strip_code_fence("  plain  ") == "plain"
        assert parse_json_response("```\n{\"a\": 1}\n```") == {"a": 1}
        with pytest.raises(json.JSONDecodeError):
            parse_json_response("not json")
