from __future__ import annotations

"""Song records returned by the tools, and shaping from raw Genius payloads."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SongSummary:
    id: int
    title: str
    primary_artist: str
    url: str
    album_art_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "primary_artist": self.primary_artist,
            "url": self.url,
        }
        if self.album_art_url:
            payload["album_art_url"] = self.album_art_url
        return payload


@dataclass(frozen=True)
class AlbumInfo:
    name: str
    url: str
    cover_art_url: str


@dataclass(frozen=True)
class ArtistInfo:
    name: str
    url: str


@dataclass(frozen=True)
class SongDetails:
    id: int
    title: str
    url: str
    release_date: str
    primary_artist: ArtistInfo
    song_art_url: str
    header_image_url: str
    album: Optional[AlbumInfo] = None
    featured_artists: List[str] = field(default_factory=list)
    producers: List[str] = field(default_factory=list)
    writers: List[str] = field(default_factory=list)
    description: Optional[str] = None
    apple_music_url: Optional[str] = None
    spotify_uri: Optional[str] = None
    youtube_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "release_date": self.release_date,
            "primary_artist": {"name": self.primary_artist.name, "url": self.primary_artist.url},
            "featured_artists": list(self.featured_artists),
            "producers": list(self.producers),
            "writers": list(self.writers),
            "song_art_url": self.song_art_url,
            "header_image_url": self.header_image_url,
        }
        if self.album is not None:
            payload["album"] = {
                "name": self.album.name,
                "url": self.album.url,
                "cover_art_url": self.album.cover_art_url,
            }
        optional = {
            "description": self.description,
            "apple_music_url": self.apple_music_url,
            "spotify_uri": self.spotify_uri,
            "youtube_url": self.youtube_url,
        }
        for key, value in optional.items():
            if value:
                payload[key] = value
        return payload


def summary_from_hit(hit: Dict[str, Any]) -> SongSummary:
    result = hit.get("result") or {}
    artist = result.get("primary_artist") or {}
    return SongSummary(
        id=int(result["id"]),
        title=str(result.get("title") or ""),
        primary_artist=str(artist.get("name") or ""),
        url=str(result.get("url") or ""),
        album_art_url=result.get("song_art_image_url") or None,
    )


def _names(entries: Any) -> List[str]:
    # Genius sends lists of artist records; only the names are kept.
    if not isinstance(entries, list):
        return []
    return [str(entry["name"]) for entry in entries if isinstance(entry, dict) and entry.get("name")]


def details_from_song(song: Dict[str, Any]) -> SongDetails:
    raw_album = song.get("album")
    album = None
    if isinstance(raw_album, dict):
        album = AlbumInfo(
            name=str(raw_album.get("name") or ""),
            url=str(raw_album.get("url") or ""),
            cover_art_url=str(raw_album.get("cover_art_url") or ""),
        )
    artist = song.get("primary_artist") or {}
    description = song.get("description")
    plain = description.get("plain") if isinstance(description, dict) else None
    return SongDetails(
        id=int(song["id"]),
        title=str(song.get("title") or ""),
        url=str(song.get("url") or ""),
        release_date=str(song.get("release_date_for_display") or ""),
        album=album,
        primary_artist=ArtistInfo(name=str(artist.get("name") or ""), url=str(artist.get("url") or "")),
        featured_artists=_names(song.get("featured_artists")),
        producers=_names(song.get("producer_artists")),
        writers=_names(song.get("writer_artists")),
        description=plain.strip() if isinstance(plain, str) and plain.strip() else None,
        song_art_url=str(song.get("song_art_image_url") or ""),
        header_image_url=str(song.get("header_image_url") or ""),
        apple_music_url=song.get("apple_music_player_url") or None,
        spotify_uri=song.get("spotify_uri") or None,
        youtube_url=song.get("youtube_url") or None,
    )


def spotify_uri_to_url(uri: Optional[str]) -> Optional[str]:
    """Turn ``spotify:<type>:<id>`` into an open.spotify.com link, else None."""
    if not uri:
        return None
    parts = uri.split(":")
    if len(parts) == 3 and parts[0] == "spotify":
        return f"https://open.spotify.com/{parts[1]}/{parts[2]}"
    return None
