import asyncio
import json

import pytest

from lyrifind.backend.config import Settings
from lyrifind.backend.llm_client import StaticLlmClient, TextDelta
from lyrifind.backend.llm_factory import create_llm_client
from lyrifind.backend.llm_gemini import GeminiRestClient
from lyrifind.backend.llm_prompt import ToolCall


def _stream(client, history):
    async def _run():
        return [event async for event in client.stream("", history, [])]

    return asyncio.run(_run())


def test_static_llm_provider_defaults_to_plain_reply(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "static")
    client = create_llm_client(Settings.from_env())
    assert isinstance(client, StaticLlmClient)
    events = _stream(client, [{"role": "user", "content": "hi"}])
    assert events
    assert all(isinstance(event, TextDelta) for event in events)
    assert "".join(event.text for event in events).startswith("Static mode is active")


def test_static_llm_provider_uses_env_script(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "static")
    monkeypatch.setenv(
        "LLM_STATIC_RESPONSE",
        json.dumps(
            [
                {"tool_calls": [{"name": "identify_song", "arguments": {"lyrics": "hello"}}], "final_message": ""},
                {"tool_calls": [], "final_message": "Done."},
            ]
        ),
    )
    client = create_llm_client(Settings.from_env())
    first = _stream(client, [{"role": "user", "content": "hello"}])
    assert first == [ToolCall(name="identify_song", arguments={"lyrics": "hello"})]
    second = _stream(client, [{"role": "tool", "name": "identify_song", "content": {}}])
    assert second == [TextDelta(text="Done.")]
    # A new user message restarts the script.
    assert _stream(client, [{"role": "user", "content": "again"}]) == first


@pytest.mark.parametrize("provider", ["none", "disabled"])
def test_disabled_provider_returns_none(monkeypatch, provider):
    monkeypatch.setenv("LLM_PROVIDER", provider)
    assert create_llm_client(Settings.from_env()) is None


def test_gemini_without_key_in_dev_returns_none(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "gemini")
    assert create_llm_client(Settings.from_env()) is None


def test_gemini_with_key(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "key")
    assert isinstance(create_llm_client(Settings.from_env()), GeminiRestClient)


def test_unknown_provider_is_rejected(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "mystery")
    with pytest.raises(ValueError):
        create_llm_client(Settings.from_env())
