from __future__ import annotations

"""Gemini streaming REST client with native function calling."""

from typing import Any, AsyncIterator, Dict, List, Optional
import json

import httpx

from lyrifind.backend.config import Settings
from lyrifind.backend.llm_client import LlmEvent, TextDelta
from lyrifind.backend.llm_prompt import ToolCall
from lyrifind.mcp.logging_utils import get_logger, summarize_payload


# Gemini function declarations accept an OpenAPI subset of JSON Schema.
_SCHEMA_KEYS = {"type", "description", "properties", "required", "items", "enum", "minimum", "maximum"}


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Drop JSON Schema keywords Gemini rejects, recursing into properties/items."""
    cleaned: Dict[str, Any] = {}
    for key, value in schema.items():
        if key not in _SCHEMA_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {name: to_gemini_schema(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            cleaned[key] = to_gemini_schema(value)
        else:
            cleaned[key] = value
    return cleaned


class GeminiRestClient:
    """Lightweight streaming REST client for Google Gemini."""
    def __init__(
        self,
        settings: Settings,
        *,
        api_key: str | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Configure client endpoints, model, and timeouts."""
        self._api_key = api_key or settings.gemini_api_key
        self._base_url = settings.gemini_base_url.rstrip("/")
        self._model = settings.gemini_model
        self._timeout = settings.gemini_timeout_seconds
        self._transport = transport
        self._logger = get_logger(__name__)

    def build_payload(
        self,
        system_prompt: str,
        history: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "system_instruction": {"parts": [{"text": system_prompt}]},
            "contents": self._history_to_contents(history),
        }
        if tools:
            payload["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool["name"],
                            "description": tool.get("description", ""),
                            "parameters": to_gemini_schema(tool.get("inputSchema") or {}),
                        }
                        for tool in tools
                    ]
                }
            ]
        return payload

    async def stream(
        self,
        system_prompt: str,
        history: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> AsyncIterator[LlmEvent]:
        """Stream one generation step from Gemini as text deltas and tool calls."""
        url = f"{self._base_url}/models/{self._model}:streamGenerateContent"
        payload = self.build_payload(system_prompt, history, tools)
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self._api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", url, params={"alt": "sse"}, json=payload, headers=headers
                ) as response:
                    if response.status_code >= 400:
                        details = (await response.aread()).decode("utf-8", errors="ignore")
                        raise RuntimeError(f"Gemini HTTP error {response.status_code}: {details}")
                    async for line in response.aiter_lines():
                        chunk = self._parse_sse_line(line)
                        if chunk is None:
                            continue
                        for event in self._chunk_events(chunk):
                            yield event
        except httpx.TimeoutException as exc:
            raise RuntimeError("Gemini request timed out.") from exc
        except httpx.HTTPError as exc:
            raise RuntimeError(f"Gemini connection error: {exc}") from exc

    def _parse_sse_line(self, line: str) -> Optional[Dict[str, Any]]:
        stripped = line.strip()
        if not stripped.startswith("data:"):
            return None
        data = stripped[len("data:"):].strip()
        if not data or data == "[DONE]":
            return None
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError:
            self._logger.debug("gemini_sse_parse_error line=%s", summarize_payload(data))
            return None
        if isinstance(parsed, dict) and "error" in parsed:
            raise RuntimeError(f"Gemini stream error: {parsed['error']}")
        return parsed if isinstance(parsed, dict) else None

    def _chunk_events(self, chunk: Dict[str, Any]) -> List[LlmEvent]:
        events: List[LlmEvent] = []
        candidates = chunk.get("candidates") or []
        if not candidates:
            return events
        parts = (candidates[0].get("content") or {}).get("parts") or []
        for part in parts:
            if not isinstance(part, dict):
                continue
            if bool(part.get("thought")):
                self._logger.debug(
                    "gemini_thinking model=%s thought=%s",
                    self._model,
                    summarize_payload(part.get("text")),
                )
                continue
            call = part.get("functionCall")
            if isinstance(call, dict) and call.get("name"):
                arguments = call.get("args")
                events.append(
                    ToolCall(
                        name=str(call["name"]),
                        arguments=arguments if isinstance(arguments, dict) else {},
                        signature=part.get("thoughtSignature"),
                    )
                )
                continue
            text = part.get("text")
            if isinstance(text, str) and text:
                events.append(TextDelta(text=text))
        return events

    def _history_to_contents(self, history: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Convert chat history into Gemini content payloads, merging same-role runs."""
        contents: List[Dict[str, Any]] = []
        for entry in history:
            role = entry.get("role", "user")
            if role == "tool":
                content_role = "user"
                part: Dict[str, Any] = {
                    "functionResponse": {
                        "name": entry.get("name", ""),
                        "response": entry.get("content") or {},
                    }
                }
            elif role == "assistant" and entry.get("tool_call"):
                call = entry["tool_call"]
                content_role = "model"
                part = {"functionCall": {"name": call.get("name", ""), "args": call.get("arguments") or {}}}
                if call.get("signature"):
                    part["thoughtSignature"] = call["signature"]
            else:
                content_role = "model" if role == "assistant" else "user"
                part = {"text": str(entry.get("content", ""))}
            if contents and contents[-1]["role"] == content_role:
                contents[-1]["parts"].append(part)
            else:
                contents.append({"role": content_role, "parts": [part]})
        return contents
