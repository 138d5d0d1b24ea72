from __future__ import annotations

"""LLM client protocol, stream event types and test stub implementation."""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Protocol, Union
import re

from lyrifind.backend.llm_prompt import ToolCall, parse_llm_response


@dataclass(frozen=True)
class TextDelta:
    text: str


LlmEvent = Union[TextDelta, ToolCall]


class LlmClient(Protocol):
    """Protocol for streaming LLM clients used by the orchestrator.

    History entries are dicts with a ``role`` of ``user``, ``assistant`` or
    ``tool``. Assistant entries carry either ``content`` text or a
    ``tool_call`` (``id``, ``name``, ``arguments``); tool entries carry
    ``tool_call_id``, ``name`` and the ``content`` envelope.
    """
    def stream(
        self,
        system_prompt: str,
        history: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[LlmEvent]:
        """Yield text deltas and complete tool calls for one model step."""
        raise NotImplementedError


def _chunk_words(text: str) -> List[str]:
    return re.findall(r"\S+\s*", text)


@dataclass
class StaticLlmClient:
    """Scripted client for tests and offline runs.

    Each response is a JSON string ``{"tool_calls": [...], "final_message": "..."}``
    consumed once per model step. The script restarts at every new user turn.
    """
    response_text: str
    responses: List[str] = field(default_factory=list)
    loop: bool = False
    _index: int = 0

    def _next_response(self, history: List[Dict[str, Any]]) -> str:
        if history and history[-1].get("role") == "user":
            self._index = 0
        if self.responses:
            response = self.responses[min(self._index, len(self.responses) - 1)]
            if self.loop:
                self._index = (self._index + 1) % len(self.responses)
            else:
                self._index += 1
            return response
        return self.response_text

    async def stream(
        self,
        system_prompt: str,
        history: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[LlmEvent]:
        parsed = parse_llm_response(self._next_response(history))
        if parsed is None:
            raise RuntimeError("Static LLM response is not valid JSON.")
        for chunk in _chunk_words(parsed.final_message):
            yield TextDelta(text=chunk)
        for call in parsed.tool_calls:
            yield call
