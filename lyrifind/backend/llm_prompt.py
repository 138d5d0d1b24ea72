from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import json
import re


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Dict[str, Any]
    signature: Optional[str] = None


@dataclass(frozen=True)
class LlmResponse:
    tool_calls: List[ToolCall]
    final_message: str


def build_system_prompt(tools: List[Dict[str, Any]]) -> str:
    tool_names = ", ".join(str(tool.get("name")) for tool in tools) or "none"
    return (
        "You are LyriFind AI, a specialized music identification assistant that helps users "
        "find songs from lyrics.\n"
        "\n"
        f"Available tools: {tool_names}.\n"
        "- identify_song: search for songs by lyrics. Returns matches with id, title, artist, "
        "url, and album_art_url.\n"
        "- get_song_details: get full song details using the numeric song_id from "
        "identify_song results.\n"
        "\n"
        "Workflow when a user provides lyrics:\n"
        "1. Call identify_song with the lyrics (limit=1 for clear lyrics, limit=3 for "
        "ambiguous ones).\n"
        "2. From the results, take the numeric id field (for example 3273329).\n"
        "3. Call get_song_details with song_id set to that numeric id.\n"
        "4. Reply with a brief confirmation.\n"
        "\n"
        "Rules:\n"
        "- ALWAYS use the numeric id field for get_song_details, never the URL.\n"
        "- Call one tool at a time and wait for its result.\n"
        "- Be concise; the client renders song cards from tool results, so do not repeat "
        "song details in text.\n"
        "- If no match is found, suggest trying different or more specific lyrics.\n"
        "- Do not invent tool names or tool outputs.\n"
    )


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the outermost JSON object in ``text``, ignoring code fences and chatter."""
    cleaned = _FENCE.sub("", text.strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def _tool_call(entry: Any) -> Optional[ToolCall]:
    if not isinstance(entry, dict):
        return None
    name = str(entry.get("name") or "").strip()
    if not name:
        return None
    arguments = entry.get("arguments")
    return ToolCall(name=name, arguments=arguments if isinstance(arguments, dict) else {})


def parse_llm_response(text: str) -> Optional[LlmResponse]:
    """Parse a scripted ``{"tool_calls": [...], "final_message": "..."}`` reply."""
    payload = _json_object(text or "")
    if payload is None:
        return None
    raw_calls = payload.get("tool_calls")
    calls = [_tool_call(entry) for entry in raw_calls] if isinstance(raw_calls, list) else []
    message = payload.get("final_message")
    return LlmResponse(
        tool_calls=[call for call in calls if call is not None],
        final_message="" if message is None else str(message).strip(),
    )
