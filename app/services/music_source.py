"""
Cadence — Spotify taste source.

Builds a taste snapshot from a user's Spotify listening history using a
per-request OAuth access token against the Spotify Web API.

* artists – names of the user's top artists
* genres  – genres attached to those artists, first-seen order, capped
* songs   – top tracks formatted as ``"<track> by <artist>, <artist>"``
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from app.errors import UnavailableError

logger = structlog.get_logger("cadence.music_source")

SPOTIFY_API_BASE = "https://api.spotify.com/v1"


class SpotifyTasteSource:
    source_name = "spotify"

    def __init__(
        self,
        access_token: str,
        limit: int = 10,
        time_range: str = "short_term",
        request_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.access_token = access_token
        self.limit = limit
        self.time_range = time_range
        self.request_timeout = request_timeout
        self._transport = transport

    async def fetch_taste(self) -> dict[str, list[str]]:
        """Return ``{"genres", "artists", "songs"}`` from Spotify.

        Raises
        ------
        UnavailableError
            Spotify rejected the token or could not be reached.
        """
        async with httpx.AsyncClient(
            base_url=SPOTIFY_API_BASE,
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.request_timeout,
            transport=self._transport,
        ) as client:
            top_artists = await self._get_top(client, "artists")
            top_tracks = await self._get_top(client, "tracks")

        return self._build_snapshot(top_artists, top_tracks)

    async def _get_top(self, client: httpx.AsyncClient, kind: str) -> list[dict[str, Any]]:
        try:
            resp = await client.get(
                f"/me/top/{kind}",
                params={"limit": self.limit, "time_range": self.time_range},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "spotify_request_failed",
                kind=kind,
                http_status=exc.response.status_code,
            )
            raise UnavailableError(
                "Spotify request failed", http_status=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("spotify_unreachable", kind=kind, error=str(exc))
            raise UnavailableError("Spotify is unreachable") from exc

        return resp.json().get("items") or []

    def _build_snapshot(
        self, artist_items: list[dict[str, Any]], track_items: list[dict[str, Any]]
    ) -> dict[str, list[str]]:
        artists = [a["name"] for a in artist_items if a.get("name")]

        genres: list[str] = []
        for artist in artist_items:
            for genre in artist.get("genres") or []:
                if genre not in genres:
                    genres.append(genre)
        genres = genres[: self.limit]

        songs = []
        for track in track_items:
            names = ", ".join(a["name"] for a in track.get("artists") or [] if a.get("name"))
            songs.append(f"{track['name']} by {names}" if names else track["name"])

        logger.info(
            "spotify_taste_fetched",
            artists=len(artists),
            genres=len(genres),
            songs=len(songs),
        )
        return {"genres": genres, "artists": artists, "songs": songs}
