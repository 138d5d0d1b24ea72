import asyncio
import json
import time

from lyrifind.backend.config import Settings
from lyrifind.backend.llm_client import StaticLlmClient, TextDelta
from lyrifind.backend.mcp_client import LocalMcpClient, McpError
from lyrifind.backend.orchestrator import (
    TOOL_CALL_FAILED_MESSAGE,
    TURN_ERROR_MESSAGE,
    TURN_TIMEOUT_MESSAGE,
    Orchestrator,
    messages_to_history,
)
from lyrifind.mcp.tools import list_tools


USER_MESSAGES = [{"role": "user", "parts": [{"type": "text", "text": "hello it's me"}]}]


def _step(tool_calls=None, final_message=""):
    return json.dumps({"tool_calls": tool_calls or [], "final_message": final_message})


def _collect(orchestrator, messages=USER_MESSAGES):
    async def _run():
        return [event async for event in orchestrator.stream_turn(messages)]

    return asyncio.run(_run())


def _types(events):
    return [event["type"] for event in events]


class _FailingMcp:
    async def list_tools(self, refresh=False):
        return list_tools()

    async def call_tool(self, name, arguments):
        raise McpError("tool server unreachable")


class _SlowMcp:
    async def list_tools(self, refresh=False):
        return list_tools()

    async def call_tool(self, name, arguments):
        await asyncio.sleep(5)
        return {"success": True}


def test_identify_then_details_turn(fake_genius):
    llm = StaticLlmClient(
        response_text="",
        responses=[
            _step([{"name": "identify_song", "arguments": {"lyrics": "hello it's me", "limit": 1}}]),
            _step([{"name": "get_song_details", "arguments": {"song_id": 78965}}]),
            _step(final_message="That is Hello by Adele."),
        ],
    )
    orchestrator = Orchestrator(LocalMcpClient(fake_genius().client()), llm, Settings.from_env())
    events = _collect(orchestrator)

    assert events[0]["type"] == "start"
    assert events[-1] == {"type": "finish", "finishReason": "stop"}
    assert _types(events).count("start-step") == 3

    outputs = [event for event in events if event["type"] == "tool-output-available"]
    assert outputs[0]["output"]["songs"][0]["id"] == 78965
    assert outputs[1]["output"]["details"]["title"] == "Hello"

    text = "".join(event["delta"] for event in events if event["type"] == "text-delta")
    assert text == "That is Hello by Adele."


def test_tool_lifecycle_events_are_ordered_per_call(fake_genius):
    llm = StaticLlmClient(
        response_text="",
        responses=[
            _step([{"name": "identify_song", "arguments": {"lyrics": "hello"}}]),
            _step(final_message="Done."),
        ],
    )
    orchestrator = Orchestrator(LocalMcpClient(fake_genius().client()), llm, Settings.from_env())
    events = _collect(orchestrator)
    call_events = [event for event in events if event.get("toolCallId")]
    assert [event["type"] for event in call_events] == [
        "tool-input-start",
        "tool-input-available",
        "tool-output-available",
    ]
    assert len({event["toolCallId"] for event in call_events}) == 1


def test_step_ceiling_ends_turn_normally(monkeypatch, fake_genius):
    monkeypatch.setenv("CHAT_MAX_STEPS", "5")
    llm = StaticLlmClient(
        response_text=_step([{"name": "identify_song", "arguments": {"lyrics": "hello"}}]),
    )
    orchestrator = Orchestrator(LocalMcpClient(fake_genius().client()), llm, Settings.from_env())
    events = _collect(orchestrator)
    assert _types(events).count("start-step") == 5
    assert _types(events).count("tool-output-available") == 5
    assert events[-1] == {"type": "finish", "finishReason": "step-limit"}
    assert "error" not in _types(events)


def test_tool_failure_closes_call_and_emits_turn_error():
    llm = StaticLlmClient(
        response_text=_step([{"name": "identify_song", "arguments": {"lyrics": "hello"}}]),
    )
    orchestrator = Orchestrator(_FailingMcp(), llm, Settings.from_env())
    events = _collect(orchestrator)
    types = _types(events)
    assert "tool-output-available" not in types
    assert "finish" not in types
    error_event = next(event for event in events if event["type"] == "tool-output-error")
    assert error_event["errorText"] == TOOL_CALL_FAILED_MESSAGE
    assert events[-1] == {"type": "error", "errorText": TURN_ERROR_MESSAGE}
    assert types.index("tool-output-error") < types.index("error")


def test_model_failure_emits_turn_error(fake_genius):
    llm = StaticLlmClient(response_text="this is not json")
    orchestrator = Orchestrator(LocalMcpClient(fake_genius().client()), llm, Settings.from_env())
    events = _collect(orchestrator)
    assert events[-1] == {"type": "error", "errorText": TURN_ERROR_MESSAGE}
    assert "tool-output-error" not in _types(events)


def test_turn_duration_ceiling(monkeypatch):
    monkeypatch.setenv("CHAT_MAX_DURATION_SECONDS", "0.2")
    llm = StaticLlmClient(
        response_text=_step([{"name": "identify_song", "arguments": {"lyrics": "hello"}}]),
    )
    orchestrator = Orchestrator(_SlowMcp(), llm, Settings.from_env())
    started = time.monotonic()
    events = _collect(orchestrator)
    assert time.monotonic() - started < 3
    assert events[-1] == {"type": "error", "errorText": TURN_TIMEOUT_MESSAGE}
    closed = [event for event in events if event["type"] == "tool-output-error"]
    assert len(closed) == 1


def test_history_replays_finished_tool_parts():
    messages = [
        {"role": "user", "parts": [{"type": "text", "text": "hello it's me"}]},
        {
            "role": "assistant",
            "parts": [
                {
                    "type": "tool-identify_song",
                    "toolCallId": "call_1",
                    "state": "output-available",
                    "input": {"lyrics": "hello it's me"},
                    "output": {"success": True, "count": 1, "songs": [{"id": 78965}]},
                },
                {
                    "type": "tool-get_song_details",
                    "toolCallId": "call_2",
                    "state": "input-available",
                    "input": {"song_id": 78965},
                },
                {"type": "text", "text": "Found it."},
            ],
        },
        {"role": "user", "content": "who produced it?"},
    ]
    history = messages_to_history(messages)
    assert [entry["role"] for entry in history] == ["user", "assistant", "tool", "assistant", "user"]
    assert history[1]["tool_call"] == {
        "id": "call_1",
        "name": "identify_song",
        "arguments": {"lyrics": "hello it's me"},
    }
    assert history[2]["content"]["songs"][0]["id"] == 78965
    assert history[4]["content"] == "who produced it?"


class _StallingLlm:
    async def stream(self, system_prompt, history, tools):
        yield TextDelta(text="Looking that up ")
        await asyncio.sleep(5)
        yield TextDelta(text="now.")


class _BrokenLlm:
    async def stream(self, system_prompt, history, tools):
        yield TextDelta(text="Half a sentence ")
        raise RuntimeError("stream dropped")


def _assert_text_block_closed_before_error(events):
    types = _types(events)
    start = next(event for event in events if event["type"] == "text-start")
    end = next(event for event in events if event["type"] == "text-end")
    assert end["id"] == start["id"]
    assert types.index("text-end") < types.index("error")
    assert types.count("text-end") == 1


def test_turn_timeout_closes_open_text_block(monkeypatch, fake_genius):
    monkeypatch.setenv("CHAT_MAX_DURATION_SECONDS", "0.2")
    orchestrator = Orchestrator(LocalMcpClient(fake_genius().client()), _StallingLlm(), Settings.from_env())
    events = _collect(orchestrator)
    assert events[-1] == {"type": "error", "errorText": TURN_TIMEOUT_MESSAGE}
    _assert_text_block_closed_before_error(events)


def test_model_failure_closes_open_text_block(fake_genius):
    orchestrator = Orchestrator(LocalMcpClient(fake_genius().client()), _BrokenLlm(), Settings.from_env())
    events = _collect(orchestrator)
    assert events[-1] == {"type": "error", "errorText": TURN_ERROR_MESSAGE}
    _assert_text_block_closed_before_error(events)
