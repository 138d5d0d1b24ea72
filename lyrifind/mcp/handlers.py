from __future__ import annotations

"""Tool implementations. Every path returns an envelope; nothing is raised."""

from typing import Any, Dict, List
import re

from lyrifind.mcp.errors import (
    ErrorKind,
    NO_RESULTS_MESSAGE,
    SONG_ID_REQUIRED_MESSAGE,
    render_error,
)
from lyrifind.mcp.genius import GeniusClient, GeniusError
from lyrifind.mcp.logging_utils import get_logger, summarize_payload
from lyrifind.mcp.songs import SongSummary, details_from_song, summary_from_hit


MAX_SONG_RESULTS = 5
DEFAULT_SONG_RESULTS = 3

logger = get_logger(__name__)


def _failure(message: str) -> Dict[str, Any]:
    return {"success": False, "error": message}


def normalize_lyrics(value: Any) -> str:
    """Collapse runs of whitespace so multi-line snippets search as one phrase."""
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", " ", value).strip()


def _coerce_limit(value: Any) -> int:
    if value is None:
        return DEFAULT_SONG_RESULTS
    if isinstance(value, bool):
        raise ValueError("limit must be an integer between 1 and 5.")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not 1 <= value <= MAX_SONG_RESULTS:
        raise ValueError("limit must be an integer between 1 and 5.")
    return value


def _coerce_song_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        return None
    return value


async def handle_identify_song(params: Dict[str, Any], genius: GeniusClient) -> Dict[str, Any]:
    try:
        return await _identify_song(params, genius)
    except Exception:
        logger.exception("identify_song_unexpected_error")
        return _failure(render_error(ErrorKind.UNKNOWN, subject="search"))


async def _identify_song(params: Dict[str, Any], genius: GeniusClient) -> Dict[str, Any]:
    lyrics = normalize_lyrics(params.get("lyrics"))
    if not lyrics:
        return _failure(render_error(ErrorKind.INVALID_INPUT, "Lyrics are required to identify a song."))
    try:
        limit = _coerce_limit(params.get("limit"))
    except ValueError as exc:
        return _failure(render_error(ErrorKind.INVALID_INPUT, str(exc)))

    logger.info("identify_song_start lyrics_chars=%s limit=%s", len(lyrics), limit)
    try:
        hits = await genius.search(lyrics)
    except GeniusError as exc:
        logger.error("identify_song_failed kind=%s status=%s", exc.kind.value, exc.status)
        return _failure(render_error(exc.kind, exc.message, subject="search"))

    songs: List[SongSummary] = []
    for hit in hits:
        if len(songs) >= limit:
            break
        try:
            song = summary_from_hit(hit)
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("identify_song_skipped_hit hit=%s", summarize_payload(hit))
            continue
        if song.id > 0:
            songs.append(song)

    if not songs:
        logger.info("identify_song_no_results")
        return _failure(NO_RESULTS_MESSAGE)

    logger.info("identify_song_done count=%s", len(songs))
    return {
        "success": True,
        "count": len(songs),
        "songs": [song.to_dict() for song in songs],
    }


async def handle_get_song_details(params: Dict[str, Any], genius: GeniusClient) -> Dict[str, Any]:
    try:
        return await _get_song_details(params, genius)
    except Exception:
        logger.exception("get_song_details_unexpected_error")
        return _failure(render_error(ErrorKind.UNKNOWN, subject="details"))


async def _get_song_details(params: Dict[str, Any], genius: GeniusClient) -> Dict[str, Any]:
    song_id = _coerce_song_id(params.get("song_id"))
    if song_id is None:
        return _failure(SONG_ID_REQUIRED_MESSAGE)

    logger.info("get_song_details_start song_id=%s", song_id)
    try:
        song = await genius.get_song(song_id)
    except GeniusError as exc:
        logger.error(
            "get_song_details_failed song_id=%s kind=%s status=%s",
            song_id,
            exc.kind.value,
            exc.status,
        )
        return _failure(render_error(exc.kind, exc.message, subject="details"))

    try:
        details = details_from_song(song)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.error("get_song_details_malformed song_id=%s error=%s", song_id, exc)
        return _failure(render_error(ErrorKind.UNKNOWN, subject="details"))

    logger.info("get_song_details_done song_id=%s title=%s", song_id, details.title)
    return {"success": True, "details": details.to_dict()}


HANDLERS = {
    "identify_song": handle_identify_song,
    "get_song_details": handle_get_song_details,
}
