from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from lyrifind.mcp.genius import GeniusClient
from lyrifind.mcp.handlers import HANDLERS, DEFAULT_SONG_RESULTS, MAX_SONG_RESULTS


@dataclass(frozen=True)
class Tool:
    name: str
    title: str
    description: str
    input_schema: Dict[str, Any]


TOOLS: List[Tool] = [
    Tool(
        name="identify_song",
        title="Identify Song",
        description=(
            "Searches the Genius database to identify songs based on lyric snippets. "
            "Returns structured song data including title, artist, Genius URL, and album artwork. "
            "Use when users provide any lyrics, song fragments, or ask \"what song is this\" with "
            "quoted text. Works best with distinctive, memorable lyrics (minimum 3-5 words recommended)."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "lyrics": {
                    "type": "string",
                    "minLength": 1,
                    "description": (
                        "The exact lyric snippet or phrase from the song that the user wants to "
                        "identify. Can be partial lyrics, a chorus line, or any memorable phrase."
                    ),
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_SONG_RESULTS,
                    "default": DEFAULT_SONG_RESULTS,
                    "description": (
                        "Maximum number of song matches to return (1-5). Use 1 for "
                        "high-confidence queries, 3-5 for ambiguous lyrics."
                    ),
                },
            },
            "required": ["lyrics"],
            "additionalProperties": False,
        },
    ),
    Tool(
        name="get_song_details",
        title="Get Song Details",
        description=(
            "Fetches comprehensive details about a specific song from Genius using its numeric ID "
            "(obtained from identify_song results). Returns release date, album, featured artists, "
            "producers, writers, description, and streaming links (Apple Music, Spotify, YouTube). "
            "IMPORTANT: Use the \"id\" field from identify_song results, NOT the URL."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "song_id": {
                    "type": "integer",
                    "minimum": 1,
                    "description": (
                        "The numeric Genius song ID from identify_song results. Example: 3273329. "
                        "This is the \"id\" field returned by identify_song, NOT the URL."
                    ),
                },
            },
            "required": ["song_id"],
            "additionalProperties": False,
        },
    ),
]


def list_tools(allowlist: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
    allowed = set(allowlist) if allowlist is not None else None
    return [
        {
            "name": tool.name,
            "title": tool.title,
            "description": tool.description,
            "inputSchema": tool.input_schema,
        }
        for tool in TOOLS
        if allowed is None or tool.name in allowed
    ]


async def call_tool(name: str, arguments: Dict[str, Any], genius: GeniusClient) -> Dict[str, Any]:
    if name not in HANDLERS:
        raise ValueError(f"Unknown tool: {name}")
    handler = HANDLERS[name]
    return await handler(arguments, genius)
