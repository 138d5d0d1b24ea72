from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from lyrifind.mcp.genius import GeniusClient


def make_hit(song_id: int, title: str, artist: str) -> Dict[str, Any]:
    slug = f"{artist}-{title}".lower().replace(" ", "-").replace("'", "")
    return {
        "type": "song",
        "result": {
            "id": song_id,
            "title": title,
            "url": f"https://genius.com/{slug}-lyrics",
            "song_art_image_url": f"https://images.genius.com/{song_id}.jpg",
            "primary_artist": {"id": song_id + 1000, "name": artist},
        },
    }


HELLO_HITS = [
    make_hit(78965, "Hello", "Adele"),
    make_hit(2417, "Hello", "Lionel Richie"),
    make_hit(3057, "Hello Again", "The Cars"),
    make_hit(99101, "Hello, It's Me", "Todd Rundgren"),
    make_hit(40412, "Hello (Remix)", "Adele"),
    make_hit(50001, "Hello Goodbye", "The Beatles"),
]

HELLO_SONG = {
    "id": 78965,
    "title": "Hello",
    "url": "https://genius.com/Adele-hello-lyrics",
    "release_date_for_display": "October 23, 2015",
    "song_art_image_url": "https://images.genius.com/hello-art.jpg",
    "header_image_url": "https://images.genius.com/hello-header.jpg",
    "apple_music_player_url": "https://genius.com/songs/78965/apple_music_player",
    "spotify_uri": "spotify:track:4sPmO7WMQUAf45kwMOtONw",
    "youtube_url": "http://www.youtube.com/watch?v=YQHsXMglC9A",
    "description": {"plain": "  The lead single from 25.  "},
    "album": {
        "name": "25",
        "url": "https://genius.com/albums/Adele/25",
        "cover_art_url": "https://images.genius.com/25.jpg",
    },
    "primary_artist": {"name": "Adele", "url": "https://genius.com/artists/Adele"},
    "featured_artists": [],
    "producer_artists": [{"name": "Greg Kurstin"}],
    "writer_artists": [{"name": "Adele"}, {"name": "Greg Kurstin"}],
}


class FakeGenius:
    """Canned Genius API behind an httpx.MockTransport."""

    def __init__(
        self,
        *,
        hits: Optional[List[Dict[str, Any]]] = None,
        songs: Optional[Dict[int, Dict[str, Any]]] = None,
        status: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
        raise_exc: Optional[Exception] = None,
    ) -> None:
        self.hits = HELLO_HITS if hits is None else hits
        self.songs = {HELLO_SONG["id"]: HELLO_SONG} if songs is None else songs
        self.status = status
        self.body = body
        self.raise_exc = raise_exc
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.status is not None:
            return httpx.Response(self.status, json=self.body or {"meta": {"status": self.status}})
        path = request.url.path
        if path == "/search":
            return httpx.Response(200, json={"meta": {"status": 200}, "response": {"hits": self.hits}})
        if path.startswith("/songs/"):
            song = self.songs.get(int(path.rsplit("/", 1)[-1]))
            if song is None:
                return httpx.Response(404, json={"meta": {"status": 404, "message": "Not found"}})
            return httpx.Response(200, json={"meta": {"status": 200}, "response": {"song": song}})
        return httpx.Response(404, json={"meta": {"status": 404, "message": "Not found"}})

    def client(self) -> GeniusClient:
        return GeniusClient("test-token", transport=httpx.MockTransport(self))


@pytest.fixture
def fake_genius() -> Callable[..., FakeGenius]:
    return FakeGenius


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("GENIUS_ACCESS_TOKEN", "test-token")
    for key in (
        "MCP_SERVER_URL",
        "LLM_STATIC_RESPONSE",
        "LLM_STATIC_LOOP",
        "GEMINI_API_KEY",
        "CHAT_MAX_STEPS",
        "CHAT_MAX_DURATION_SECONDS",
        "CHAT_RATE_LIMIT",
        "LOG_FORMAT",
        "LOG_JSON",
        "LOG_CONFIG",
        "BACKEND_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
