"""Unit tests for taste normalization, TasteProfileService and the Spotify source."""
import uuid

import httpx
import pytest

from app.errors import NotFoundError, UnavailableError
from app.services.music_source import SpotifyTasteSource
from app.services.taste_service import TasteProfileService
from app.utils.normalization import normalize_token, normalize_tokens


class TestNormalization:
    def test_token(self):
        assert normalize_token("  Hip   Hop ") == "hip hop"

    def test_delimited_string(self):
        assert normalize_tokens("Rock, indie ,ROCK,, ") == ["indie", "rock"]

    def test_list_input(self):
        assert normalize_tokens(["Taylor Swift", "taylor swift", " Adele"]) == [
            "adele",
            "taylor swift",
        ]

    def test_none(self):
        assert normalize_tokens(None) == []


class FakeSource:
    source_name = "spotify"

    def __init__(self, snapshot):
        self.snapshot = snapshot

    async def fetch_taste(self):
        return self.snapshot


class TestTasteProfileService:
    @pytest.mark.asyncio
    async def test_update_normalizes_and_commits(self, store, make_user):
        user = await make_user(with_profile=False)
        service = TasteProfileService(store)

        result = await service.update_taste(
            user.id, genres="Pop, Rock", artists=["X", "x", "Y"], songs=None
        )

        assert result["genres"] == ["pop", "rock"]
        assert result["artists"] == ["x", "y"]
        assert result["songs"] == []
        assert result["is_empty"] is False
        assert result["source"] == "manual"
        assert store.commits == 1

    @pytest.mark.asyncio
    async def test_update_replaces_existing(self, store, make_user):
        user = await make_user()
        service = TasteProfileService(store)

        await service.update_taste(user.id, genres="jazz")
        result = await service.get_taste(user.id)

        assert result["genres"] == ["jazz"]
        assert result["artists"] == []
        assert result["updated_at"] is not None

    @pytest.mark.asyncio
    async def test_empty_update_flags_profile(self, store, make_user):
        user = await make_user()
        result = await TasteProfileService(store).update_taste(user.id)
        assert result["is_empty"] is True

    @pytest.mark.asyncio
    async def test_unknown_user(self, store):
        with pytest.raises(NotFoundError):
            await TasteProfileService(store).update_taste(uuid.uuid4(), genres="pop")

    @pytest.mark.asyncio
    async def test_get_missing_profile(self, store, make_user):
        user = await make_user(with_profile=False)
        with pytest.raises(NotFoundError):
            await TasteProfileService(store).get_taste(user.id)

    @pytest.mark.asyncio
    async def test_sync_from_source(self, store, make_user):
        user = await make_user(with_profile=False)
        source = FakeSource({
            "genres": ["Indie Pop"],
            "artists": ["Phoebe Bridgers"],
            "songs": ["Motion Sickness by Phoebe Bridgers"],
        })

        result = await TasteProfileService(store).sync_from_source(user.id, source)

        assert result["source"] == "spotify"
        assert result["genres"] == ["indie pop"]
        assert result["songs"] == ["motion sickness by phoebe bridgers"]


def _spotify_transport(status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if status != 200:
            return httpx.Response(status, json={"error": {"status": status}})
        if request.url.path.endswith("/me/top/artists"):
            return httpx.Response(200, json={"items": [
                {"name": "Adele", "genres": ["pop", "soul"]},
                {"name": "Sam Smith", "genres": ["pop", "uk pop"]},
            ]})
        return httpx.Response(200, json={"items": [
            {"name": "Hello", "artists": [{"name": "Adele"}]},
            {"name": "Unholy", "artists": [{"name": "Sam Smith"}, {"name": "Kim Petras"}]},
        ]})

    return httpx.MockTransport(handler)


class TestSpotifyTasteSource:
    @pytest.mark.asyncio
    async def test_fetch_taste(self):
        source = SpotifyTasteSource("token", limit=2, transport=_spotify_transport())

        snapshot = await source.fetch_taste()

        assert snapshot["artists"] == ["Adele", "Sam Smith"]
        assert snapshot["genres"] == ["pop", "soul"]
        assert snapshot["songs"] == [
            "Hello by Adele",
            "Unholy by Sam Smith, Kim Petras",
        ]

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        source = SpotifyTasteSource("expired", transport=_spotify_transport(status=401))
        with pytest.raises(UnavailableError):
            await source.fetch_taste()
