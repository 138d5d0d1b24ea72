from __future__ import annotations

"""Chat orchestration layer that bridges streaming LLM steps and MCP tools."""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import asyncio
import time
import uuid

from lyrifind.backend.config import Settings
from lyrifind.backend.llm_client import LlmClient, TextDelta
from lyrifind.backend.llm_prompt import ToolCall, build_system_prompt
from lyrifind.backend.mcp_client import McpClient
from lyrifind.backend.message_parts import TextPart, ToolCallPart, ToolState, parse_message_parts
from lyrifind.mcp.logging_utils import get_logger, set_log_context, summarize_payload

TURN_ERROR_MESSAGE = "Failed to process chat request. Please try again."
TURN_TIMEOUT_MESSAGE = "The request took too long to complete. Please try again."
TOOL_CALL_FAILED_MESSAGE = "Tool call failed."

Emit = Callable[[Optional[Dict[str, Any]]], None]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def messages_to_history(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten client messages into model history, replaying finished tool calls."""
    history: List[Dict[str, Any]] = []
    for message in messages:
        role = message.get("role")
        if role not in {"user", "assistant"}:
            continue
        raw_parts = message.get("parts")
        if not isinstance(raw_parts, list):
            content = message.get("content")
            raw_parts = [{"type": "text", "text": content}] if isinstance(content, str) else []
        for part in parse_message_parts(raw_parts):
            if isinstance(part, TextPart):
                if part.text.strip():
                    history.append({"role": role, "content": part.text})
            elif isinstance(part, ToolCallPart):
                if role != "assistant" or not part.state.is_terminal:
                    continue
                history.append(
                    {
                        "role": "assistant",
                        "tool_call": {
                            "id": part.call_id,
                            "name": part.tool_name,
                            "arguments": part.input or {},
                        },
                    }
                )
                if part.state is ToolState.OUTPUT_AVAILABLE:
                    result = part.output or {}
                else:
                    result = {"success": False, "error": part.error_text or TOOL_CALL_FAILED_MESSAGE}
                history.append(
                    {
                        "role": "tool",
                        "tool_call_id": part.call_id,
                        "name": part.tool_name,
                        "content": result,
                    }
                )
    return history


def _trim_history(history: List[Dict[str, Any]], max_items: int) -> List[Dict[str, Any]]:
    """Keep the newest entries, starting on a user text turn."""
    if max_items <= 0 or len(history) <= max_items:
        return history
    trimmed = history[-max_items:]
    while trimmed and not (trimmed[0].get("role") == "user" and "content" in trimmed[0]):
        trimmed = trimmed[1:]
    return trimmed or history[-1:]


@dataclass
class _TurnState:
    open_call_ids: List[str] = field(default_factory=list)
    open_text_id: Optional[str] = None


class Orchestrator:
    """Drive one chat turn: stream model steps, dispatch tool calls, emit UI events."""
    def __init__(
        self,
        mcp_client: McpClient,
        llm_client: LlmClient,
        settings: Settings,
    ) -> None:
        self._mcp_client = mcp_client
        self._llm_client = llm_client
        self._max_steps = settings.chat_max_steps
        self._max_duration = settings.chat_max_duration_seconds
        self._max_history_items = settings.llm_max_history_items
        self._logger = get_logger(__name__)

    async def stream_turn(self, messages: List[Dict[str, Any]]) -> AsyncIterator[Dict[str, Any]]:
        """Yield stream events for one turn, bounded by the turn duration ceiling."""
        turn_id = _new_id("turn")
        set_log_context(turn_id=turn_id)
        history = _trim_history(messages_to_history(messages), self._max_history_items)
        if not history or history[-1].get("role") != "user":
            self._logger.warning("chat_turn_without_user_message turn_id=%s", turn_id)

        queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue()
        state = _TurnState()
        task = asyncio.create_task(self._run_turn(history, queue.put_nowait, state))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._max_duration
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                event = await asyncio.wait_for(queue.get(), remaining)
                if event is None:
                    break
                yield event
        except asyncio.TimeoutError:
            self._logger.error("chat_turn_timeout turn_id=%s seconds=%s", turn_id, self._max_duration)
            task.cancel()
            while not queue.empty():
                pending = queue.get_nowait()
                if pending is None:
                    return
                yield pending
            if state.open_text_id is not None:
                yield {"type": "text-end", "id": state.open_text_id}
            for call_id in list(state.open_call_ids):
                yield {
                    "type": "tool-output-error",
                    "toolCallId": call_id,
                    "errorText": TURN_TIMEOUT_MESSAGE,
                }
            yield {"type": "error", "errorText": TURN_TIMEOUT_MESSAGE}
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

    async def _run_turn(self, history: List[Dict[str, Any]], emit: Emit, state: _TurnState) -> None:
        start = time.monotonic()
        emit({"type": "start", "messageId": _new_id("msg")})
        try:
            tools = await self._mcp_client.list_tools()
            system_prompt = build_system_prompt(tools)
            finish_reason = "step-limit"
            for step in range(1, self._max_steps + 1):
                emit({"type": "start-step"})
                calls = await self._stream_step(history, tools, system_prompt, emit, state)
                for call_id, call in calls:
                    await self._dispatch(call_id, call, history, emit, state)
                emit({"type": "finish-step"})
                self._logger.debug("chat_step_done step=%s tool_calls=%s", step, len(calls))
                if not calls:
                    finish_reason = "stop"
                    break
            emit({"type": "finish", "finishReason": finish_reason})
            self._logger.info(
                "chat_turn_done finish_reason=%s elapsed_ms=%.2f",
                finish_reason,
                (time.monotonic() - start) * 1000.0,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.exception("chat_turn_failed error=%s", exc)
            if state.open_text_id is not None:
                emit({"type": "text-end", "id": state.open_text_id})
                state.open_text_id = None
            for call_id in state.open_call_ids:
                emit(
                    {
                        "type": "tool-output-error",
                        "toolCallId": call_id,
                        "errorText": TOOL_CALL_FAILED_MESSAGE,
                    }
                )
            state.open_call_ids.clear()
            emit({"type": "error", "errorText": TURN_ERROR_MESSAGE})
        finally:
            emit(None)

    async def _stream_step(
        self,
        history: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        system_prompt: str,
        emit: Emit,
        state: _TurnState,
    ) -> List[tuple[str, ToolCall]]:
        """Stream one model step; announce tool calls as they arrive."""
        text_id: Optional[str] = None
        text_chunks: List[str] = []
        calls: List[tuple[str, ToolCall]] = []
        async for event in self._llm_client.stream(system_prompt, history, tools):
            if isinstance(event, TextDelta):
                if text_id is None:
                    text_id = _new_id("txt")
                    state.open_text_id = text_id
                    emit({"type": "text-start", "id": text_id})
                text_chunks.append(event.text)
                emit({"type": "text-delta", "id": text_id, "delta": event.text})
            elif isinstance(event, ToolCall):
                call_id = _new_id("call")
                calls.append((call_id, event))
                state.open_call_ids.append(call_id)
                emit({"type": "tool-input-start", "toolCallId": call_id, "toolName": event.name})
        if text_id is not None:
            emit({"type": "text-end", "id": text_id})
            state.open_text_id = None
            history.append({"role": "assistant", "content": "".join(text_chunks)})
        return calls

    async def _dispatch(
        self,
        call_id: str,
        call: ToolCall,
        history: List[Dict[str, Any]],
        emit: Emit,
        state: _TurnState,
    ) -> None:
        """Run one tool call to completion before the next is issued."""
        set_log_context(call_id=call_id)
        emit(
            {
                "type": "tool-input-available",
                "toolCallId": call_id,
                "toolName": call.name,
                "input": call.arguments,
            }
        )
        self._logger.info(
            "chat_tool_call tool=%s arguments=%s", call.name, summarize_payload(call.arguments)
        )
        history.append(
            {
                "role": "assistant",
                "tool_call": {
                    "id": call_id,
                    "name": call.name,
                    "arguments": call.arguments,
                    "signature": call.signature,
                },
            }
        )
        envelope = await self._mcp_client.call_tool(call.name, call.arguments)
        emit({"type": "tool-output-available", "toolCallId": call_id, "output": envelope})
        state.open_call_ids.remove(call_id)
        history.append(
            {"role": "tool", "tool_call_id": call_id, "name": call.name, "content": envelope}
        )
