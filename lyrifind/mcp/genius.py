from __future__ import annotations

"""Async Genius API client with a closed error taxonomy."""

from typing import Any, Dict, List, Optional
import time

import httpx

from lyrifind.mcp.errors import ErrorKind
from lyrifind.mcp.logging_utils import get_logger


GENIUS_BASE_URL = "https://api.genius.com"
DEFAULT_TIMEOUT_SECONDS = 10.0


class GeniusError(Exception):
    """Base class for failures talking to the Genius API."""
    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class GeniusAuthError(GeniusError):
    kind = ErrorKind.AUTH_INVALID


class GeniusRateLimitError(GeniusError):
    kind = ErrorKind.RATE_LIMITED


class GeniusNotFoundError(GeniusError):
    kind = ErrorKind.NOT_FOUND


class GeniusTimeoutError(GeniusError):
    kind = ErrorKind.TIMEOUT


class GeniusUpstreamError(GeniusError):
    kind = ErrorKind.UPSTREAM_GENERIC


class GeniusUnknownError(GeniusError):
    kind = ErrorKind.UNKNOWN


class GeniusClient:
    """Thin async wrapper over the two Genius endpoints the tools need.

    One instance is created per process and shared by every tool call; the
    underlying ``httpx.AsyncClient`` keeps no per-call state.
    """
    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = GENIUS_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not access_token:
            raise ValueError("Genius access token is required.")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout_seconds,
            transport=transport,
        )
        self._logger = get_logger(__name__)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Return the raw search hits for a lyric query, in upstream order."""
        payload = await self._get("/search", params={"q": query}, not_found_is_error=False)
        hits = _response_body(payload).get("hits")
        if hits is None:
            return []
        if not isinstance(hits, list):
            raise GeniusUnknownError("Genius search response has no hits list.")
        return hits

    async def get_song(self, song_id: int) -> Dict[str, Any]:
        """Return the raw song record for a Genius song id."""
        payload = await self._get(f"/songs/{song_id}", not_found_is_error=True)
        song = _response_body(payload).get("song")
        if not isinstance(song, dict):
            raise GeniusUnknownError("Genius song response has no song record.")
        return song

    async def _get(
        self,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        not_found_is_error: bool,
    ) -> Dict[str, Any]:
        start = time.monotonic()
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            self._log_failure(path, None, start, "timeout")
            raise GeniusTimeoutError("Genius request timed out.") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self._log_failure(path, None, start, str(exc))
            raise GeniusUnknownError(f"Genius transport error: {exc}") from exc

        status = response.status_code
        if status >= 400:
            message = _error_message(response)
            self._log_failure(path, status, start, message)
            if status == 401:
                raise GeniusAuthError(message, status)
            if status == 429:
                raise GeniusRateLimitError(message, status)
            if status == 404 and not_found_is_error:
                raise GeniusNotFoundError(message, status)
            raise GeniusUpstreamError(message, status)

        try:
            payload = response.json()
        except ValueError as exc:
            self._log_failure(path, status, start, "invalid json")
            raise GeniusUnknownError("Genius returned an invalid JSON body.") from exc
        if not isinstance(payload, dict):
            self._log_failure(path, status, start, "unexpected body")
            raise GeniusUnknownError("Genius returned an unexpected body.")
        self._logger.info(
            "genius_request path=%s status=%s elapsed_ms=%.2f",
            path,
            status,
            (time.monotonic() - start) * 1000.0,
        )
        return payload

    def _log_failure(self, path: str, status: Optional[int], start: float, reason: str) -> None:
        self._logger.error(
            "genius_request_failed path=%s status=%s elapsed_ms=%.2f reason=%s",
            path,
            status,
            (time.monotonic() - start) * 1000.0,
            reason,
        )


def _response_body(payload: Dict[str, Any]) -> Dict[str, Any]:
    body = payload.get("response")
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise GeniusUnknownError("Genius returned a malformed response object.")
    return body


def _error_message(response: httpx.Response) -> str:
    """Prefer the upstream meta message, fall back to the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        meta = body.get("meta")
        if isinstance(meta, dict) and isinstance(meta.get("message"), str) and meta["message"]:
            return meta["message"]
        description = body.get("error_description")
        if isinstance(description, str) and description:
            return description
    return f"Request failed with status code {response.status_code}"
