import asyncio
import logging

import httpx
import pytest

from lyrifind.mcp.errors import ErrorKind
from lyrifind.mcp.genius import (
    GeniusAuthError,
    GeniusClient,
    GeniusNotFoundError,
    GeniusRateLimitError,
    GeniusTimeoutError,
    GeniusUnknownError,
    GeniusUpstreamError,
)


def test_search_sends_bearer_token_and_query(fake_genius):
    fake = fake_genius()
    client = fake.client()
    hits = asyncio.run(client.search("hello it's me"))
    assert len(hits) == len(fake.hits)
    request = fake.requests[0]
    assert request.headers["Authorization"] == "Bearer test-token"
    assert request.url.path == "/search"
    assert request.url.params["q"] == "hello it's me"


def test_get_song_returns_song_record(fake_genius):
    client = fake_genius().client()
    song = asyncio.run(client.get_song(78965))
    assert song["title"] == "Hello"
    assert song["primary_artist"]["name"] == "Adele"


def test_empty_token_is_rejected():
    with pytest.raises(ValueError):
        GeniusClient("")


@pytest.mark.parametrize(
    ("status", "error_type", "kind"),
    [
        (401, GeniusAuthError, ErrorKind.AUTH_INVALID),
        (429, GeniusRateLimitError, ErrorKind.RATE_LIMITED),
        (500, GeniusUpstreamError, ErrorKind.UPSTREAM_GENERIC),
        (503, GeniusUpstreamError, ErrorKind.UPSTREAM_GENERIC),
    ],
)
def test_status_codes_map_to_error_kinds(fake_genius, status, error_type, kind):
    client = fake_genius(status=status).client()
    with pytest.raises(error_type) as excinfo:
        asyncio.run(client.search("hello"))
    assert excinfo.value.kind is kind
    assert excinfo.value.status == status


def test_song_404_is_not_found_but_search_404_is_upstream(fake_genius):
    client = fake_genius(status=404).client()
    with pytest.raises(GeniusNotFoundError):
        asyncio.run(client.get_song(1))
    with pytest.raises(GeniusUpstreamError):
        asyncio.run(client.search("hello"))


def test_upstream_message_prefers_meta_message(fake_genius):
    client = fake_genius(status=500, body={"meta": {"status": 500, "message": "Internal failure"}}).client()
    with pytest.raises(GeniusUpstreamError) as excinfo:
        asyncio.run(client.search("hello"))
    assert excinfo.value.message == "Internal failure"


def test_upstream_message_falls_back_to_status_line(fake_genius):
    client = fake_genius(status=502, body={"meta": {"status": 502}}).client()
    with pytest.raises(GeniusUpstreamError) as excinfo:
        asyncio.run(client.search("hello"))
    assert excinfo.value.message == "Request failed with status code 502"


def test_timeout_maps_to_timeout_error(fake_genius):
    client = fake_genius(raise_exc=httpx.ReadTimeout("slow")).client()
    with pytest.raises(GeniusTimeoutError) as excinfo:
        asyncio.run(client.search("hello"))
    assert excinfo.value.kind is ErrorKind.TIMEOUT


def test_connection_failure_maps_to_unknown(fake_genius):
    client = fake_genius(raise_exc=httpx.ConnectError("refused")).client()
    with pytest.raises(GeniusUnknownError):
        asyncio.run(client.search("hello"))


def test_invalid_json_body_maps_to_unknown():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    client = GeniusClient("token", transport=httpx.MockTransport(handler))
    with pytest.raises(GeniusUnknownError):
        asyncio.run(client.get_song(5))


def test_requests_are_logged(fake_genius, caplog):
    client = fake_genius().client()
    with caplog.at_level(logging.INFO, logger="lyrifind.mcp.genius"):
        asyncio.run(client.search("hello"))
    assert any("genius_request path=/search status=200" in message for message in caplog.messages)


def test_failures_are_logged_with_status(fake_genius, caplog):
    client = fake_genius(status=429).client()
    with caplog.at_level(logging.ERROR, logger="lyrifind.mcp.genius"):
        with pytest.raises(GeniusRateLimitError):
            asyncio.run(client.search("hello"))
    assert any("genius_request_failed" in m and "status=429" in m for m in caplog.messages)


@pytest.mark.parametrize("body", [{"response": "oops"}, {"response": ["x"]}])
def test_non_object_response_maps_to_unknown(body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    client = GeniusClient("token", transport=httpx.MockTransport(handler))
    with pytest.raises(GeniusUnknownError):
        asyncio.run(client.search("hello"))
    with pytest.raises(GeniusUnknownError):
        asyncio.run(client.get_song(5))


def test_invalid_url_maps_to_unknown(fake_genius):
    client = fake_genius(raise_exc=httpx.InvalidURL("bad")).client()
    with pytest.raises(GeniusUnknownError):
        asyncio.run(client.get_song(5))
