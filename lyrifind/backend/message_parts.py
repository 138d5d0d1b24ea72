from __future__ import annotations

"""Chat message parts and the per-call tool lifecycle state machine.

A message is a list of parts, each either a ``TextPart`` or a ``ToolCallPart``.
Tool calls move through ``ToolState`` in one direction only:

    input-streaming -> input-available -> output-available | output-error

``output-available`` means the tool returned an envelope, which may itself carry
``success: false``. ``output-error`` means the call failed to complete at all.
``MessageAssembler`` folds the orchestrator's stream events into parts and
drops events that would move a call backwards or out of a terminal state.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union
import json

from lyrifind.mcp.logging_utils import get_logger
from lyrifind.mcp.songs import spotify_uri_to_url


TOOL_NAMES = ("identify_song", "get_song_details")
CALL_FAILED_MESSAGE = "Something went wrong while contacting the song service. Please try again."

logger = get_logger(__name__)


class ToolStateError(ValueError):
    """Raised when a tool call would move backwards in its lifecycle."""
    pass


class ToolState(str, Enum):
    INPUT_STREAMING = "input-streaming"
    INPUT_AVAILABLE = "input-available"
    OUTPUT_AVAILABLE = "output-available"
    OUTPUT_ERROR = "output-error"

    @property
    def rank(self) -> int:
        return _STATE_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ToolState.OUTPUT_AVAILABLE, ToolState.OUTPUT_ERROR)


_STATE_RANK = {
    ToolState.INPUT_STREAMING: 0,
    ToolState.INPUT_AVAILABLE: 1,
    ToolState.OUTPUT_AVAILABLE: 2,
    ToolState.OUTPUT_ERROR: 2,
}


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    tool_name: str
    call_id: str
    state: ToolState
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    error_text: Optional[str] = None

    def advance(
        self,
        state: ToolState,
        *,
        input: Optional[Dict[str, Any]] = None,
        output: Optional[Dict[str, Any]] = None,
        error_text: Optional[str] = None,
    ) -> "ToolCallPart":
        """Return the part moved to ``state``; raise ToolStateError on regression."""
        if self.state.is_terminal:
            raise ToolStateError(f"call {self.call_id} is already {self.state.value}")
        if state.rank < self.state.rank:
            raise ToolStateError(
                f"call {self.call_id} cannot move from {self.state.value} to {state.value}"
            )
        return replace(
            self,
            state=state,
            input=input if input is not None else self.input,
            output=output if output is not None else self.output,
            error_text=error_text if error_text is not None else self.error_text,
        )


MessagePart = Union[TextPart, ToolCallPart]


def parse_tool_output(output: Any) -> Optional[Dict[str, Any]]:
    """Return a tool envelope from either a bare dict or an MCP content wrapper."""
    if not isinstance(output, dict):
        return None
    if "success" in output:
        return output
    structured = output.get("structuredContent")
    if isinstance(structured, dict):
        return structured
    content = output.get("content")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str):
                try:
                    parsed = json.loads(item["text"])
                except json.JSONDecodeError:
                    logger.warning("tool_output_parse_failed text=%s", item["text"][:200])
                    return None
                return parsed if isinstance(parsed, dict) else None
    return None


def parse_part(raw: Any) -> Optional[MessagePart]:
    """Parse one client-supplied part; unknown part kinds return None."""
    if not isinstance(raw, dict):
        return None
    part_type = raw.get("type")
    if not isinstance(part_type, str):
        return None
    if part_type == "text":
        text = raw.get("text")
        return TextPart(text=text) if isinstance(text, str) else None
    if part_type == "dynamic-tool":
        tool_name = raw.get("toolName")
    elif part_type.startswith("tool-"):
        tool_name = part_type[len("tool-"):]
    else:
        return None
    call_id = raw.get("toolCallId")
    if not isinstance(tool_name, str) or not tool_name or not isinstance(call_id, str):
        return None
    try:
        state = ToolState(raw.get("state") or ToolState.INPUT_AVAILABLE.value)
    except ValueError:
        return None
    tool_input = raw.get("input")
    error_text = raw.get("errorText")
    return ToolCallPart(
        tool_name=tool_name,
        call_id=call_id,
        state=state,
        input=tool_input if isinstance(tool_input, dict) else None,
        output=parse_tool_output(raw.get("output")),
        error_text=error_text if isinstance(error_text, str) else None,
    )


def parse_message_parts(raw_parts: Iterable[Any]) -> List[MessagePart]:
    parts: List[MessagePart] = []
    for raw in raw_parts:
        part = parse_part(raw)
        if part is not None:
            parts.append(part)
    return parts


class MessageAssembler:
    """Fold orchestrator stream events into an ordered list of message parts."""
    def __init__(self) -> None:
        self.parts: List[MessagePart] = []
        self.error: Optional[str] = None
        self.finish_reason: Optional[str] = None
        self._calls: Dict[str, int] = {}
        self._texts: Dict[str, int] = {}

    def tool_part(self, call_id: str) -> Optional[ToolCallPart]:
        index = self._calls.get(call_id)
        if index is None:
            return None
        part = self.parts[index]
        return part if isinstance(part, ToolCallPart) else None

    def apply(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "text-start":
            self._texts[str(event.get("id"))] = len(self.parts)
            self.parts.append(TextPart(text=""))
        elif event_type == "text-delta":
            self._append_text(str(event.get("id")), str(event.get("delta", "")))
        elif event_type == "tool-input-start":
            self._advance(event, ToolState.INPUT_STREAMING)
        elif event_type == "tool-input-available":
            tool_input = event.get("input")
            self._advance(
                event,
                ToolState.INPUT_AVAILABLE,
                input=tool_input if isinstance(tool_input, dict) else {},
            )
        elif event_type == "tool-output-available":
            self._advance(event, ToolState.OUTPUT_AVAILABLE, output=parse_tool_output(event.get("output")) or {})
        elif event_type == "tool-output-error":
            self._advance(
                event,
                ToolState.OUTPUT_ERROR,
                error_text=str(event.get("errorText") or CALL_FAILED_MESSAGE),
            )
        elif event_type == "error":
            self.error = str(event.get("errorText") or CALL_FAILED_MESSAGE)
        elif event_type == "finish":
            self.finish_reason = event.get("finishReason")

    def _append_text(self, text_id: str, delta: str) -> None:
        index = self._texts.get(text_id)
        if index is None:
            self._texts[text_id] = len(self.parts)
            self.parts.append(TextPart(text=delta))
            return
        current = self.parts[index]
        if isinstance(current, TextPart):
            self.parts[index] = TextPart(text=current.text + delta)

    def _advance(self, event: Dict[str, Any], state: ToolState, **changes: Any) -> None:
        call_id = str(event.get("toolCallId") or "")
        if not call_id:
            logger.warning("tool_event_missing_call_id type=%s", event.get("type"))
            return
        index = self._calls.get(call_id)
        if index is None:
            self._calls[call_id] = len(self.parts)
            self.parts.append(
                ToolCallPart(
                    tool_name=str(event.get("toolName") or ""),
                    call_id=call_id,
                    state=state,
                    **changes,
                )
            )
            return
        part = self.parts[index]
        if not isinstance(part, ToolCallPart):
            return
        try:
            self.parts[index] = part.advance(state, **changes)
        except ToolStateError as exc:
            logger.warning("tool_event_dropped type=%s reason=%s", event.get("type"), exc)


def render_part(part: MessagePart) -> str:
    """Render a part as plain text for a terminal or log."""
    if isinstance(part, TextPart):
        return part.text
    if isinstance(part, ToolCallPart):
        if part.state in (ToolState.INPUT_STREAMING, ToolState.INPUT_AVAILABLE):
            return _render_progress(part)
        if part.state is ToolState.OUTPUT_ERROR:
            return f"[{part.tool_name}] {CALL_FAILED_MESSAGE}"
        if part.state is ToolState.OUTPUT_AVAILABLE:
            return _render_output(part)
    raise AssertionError(f"Unhandled message part: {part!r}")


def _render_progress(part: ToolCallPart) -> str:
    tool_input = part.input or {}
    suffix = "..." if part.state is ToolState.INPUT_STREAMING else ""
    if part.tool_name == "identify_song":
        lyrics = tool_input.get("lyrics")
        if lyrics:
            return f'Searching for "{lyrics}"...{suffix}'
        return f"Searching for lyrics...{suffix}"
    if part.tool_name == "get_song_details":
        song_id = tool_input.get("song_id")
        if song_id:
            return f"Fetching details for song {song_id}...{suffix}"
        return f"Fetching song details...{suffix}"
    return f"Running {part.tool_name}...{suffix}"


def _render_output(part: ToolCallPart) -> str:
    envelope = part.output or {}
    if not envelope.get("success"):
        return f"[{part.tool_name}] {envelope.get('error') or 'No result.'}"
    if part.tool_name == "identify_song":
        lines = []
        for index, song in enumerate(envelope.get("songs") or [], start=1):
            lines.append(f"{index}. {song.get('title')} by {song.get('primary_artist')} ({song.get('url')})")
        return "\n".join(lines)
    if part.tool_name == "get_song_details":
        return _render_details(envelope.get("details") or {})
    return json.dumps(envelope)


def _render_details(details: Dict[str, Any]) -> str:
    artist = (details.get("primary_artist") or {}).get("name", "")
    lines = [f"{details.get('title')} by {artist}"]
    if details.get("featured_artists"):
        lines.append("Featuring: " + ", ".join(details["featured_artists"]))
    album = details.get("album")
    if album:
        lines.append(f"Album: {album.get('name')}")
    if details.get("release_date"):
        lines.append(f"Released: {details['release_date']}")
    if details.get("producers"):
        lines.append("Producers: " + ", ".join(details["producers"]))
    if details.get("writers"):
        lines.append("Writers: " + ", ".join(details["writers"]))
    links = {
        "Genius": details.get("url"),
        "Apple Music": details.get("apple_music_url"),
        "Spotify": spotify_uri_to_url(details.get("spotify_uri")),
        "YouTube": details.get("youtube_url"),
    }
    for label, link in links.items():
        if link:
            lines.append(f"{label}: {link}")
    return "\n".join(lines)
