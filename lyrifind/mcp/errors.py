from __future__ import annotations

"""Closed set of business error kinds surfaced inside tool envelopes."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    AUTH_INVALID = "auth_invalid"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UPSTREAM_GENERIC = "upstream_generic"
    NO_RESULTS = "no_results"
    INVALID_INPUT = "invalid_input"
    UNKNOWN = "unknown"


NO_RESULTS_MESSAGE = "No songs found matching those lyrics. Try different or more specific lyrics."
SONG_ID_REQUIRED_MESSAGE = "Song ID is required. Use the id from identify_song results."

_FIXED_MESSAGES = {
    ErrorKind.NOT_FOUND: "Song not found",
    ErrorKind.AUTH_INVALID: "Invalid Genius API token",
    ErrorKind.RATE_LIMITED: "Rate limit exceeded",
    ErrorKind.TIMEOUT: "Genius API request timed out",
    ErrorKind.NO_RESULTS: NO_RESULTS_MESSAGE,
}

_UNKNOWN_MESSAGES = {
    "search": "An unexpected error occurred while searching for the song",
    "details": "An unexpected error occurred while fetching song details",
}


def render_error(kind: ErrorKind, detail: Optional[str] = None, *, subject: str = "search") -> str:
    """Map an error kind to the user-facing message placed in an envelope.

    ``detail`` carries the upstream message for generic upstream failures and the
    validation message for invalid input. ``subject`` selects the wording of the
    catch-all message ("search" or "details").
    """
    if kind in _FIXED_MESSAGES:
        return _FIXED_MESSAGES[kind]
    if kind is ErrorKind.UPSTREAM_GENERIC:
        return f"Genius API error: {detail or 'request failed'}"
    if kind is ErrorKind.INVALID_INPUT:
        return detail or "Invalid tool input."
    return _UNKNOWN_MESSAGES.get(subject, _UNKNOWN_MESSAGES["search"])
