"""
Cadence — Taste profile management.

Accepts genres, artists and songs either as comma-delimited strings or as
lists, normalizes them once, and upserts the user's profile.  Changing a
profile does not touch existing queue entries; their scores refresh as
entries are consumed and the queue refills.
"""

from __future__ import annotations

import uuid
from typing import Any, Iterable

import structlog

from app.errors import NotFoundError
from app.models import TasteProfile
from app.store import ProfileStore
from app.utils.normalization import normalize_tokens

logger = structlog.get_logger("cadence.taste_service")

TokenInput = str | Iterable[str] | None


def _serialize(profile: TasteProfile) -> dict:
    return {
        "user_id": profile.user_id,
        "genres": list(profile.genres or []),
        "artists": list(profile.artists or []),
        "songs": list(profile.songs or []),
        "is_empty": profile.is_empty,
        "source": profile.source,
        "updated_at": profile.updated_at or profile.created_at,
    }


class TasteProfileService:
    def __init__(self, store: ProfileStore) -> None:
        self.store = store

    async def _require_user(self, user_id: uuid.UUID) -> None:
        if await self.store.get_user(user_id) is None:
            raise NotFoundError("User not found", user_id=user_id)

    async def update_taste(
        self,
        user_id: uuid.UUID,
        genres: TokenInput = None,
        artists: TokenInput = None,
        songs: TokenInput = None,
        source: str = "manual",
    ) -> dict:
        await self._require_user(user_id)

        profile = await self.store.upsert_taste_profile(
            user_id,
            genres=normalize_tokens(genres),
            artists=normalize_tokens(artists),
            songs=normalize_tokens(songs),
            source=source,
        )
        await self.store.commit()

        logger.info(
            "taste_profile_updated",
            user_id=str(user_id),
            source=source,
            genres=len(profile.genres),
            artists=len(profile.artists),
            songs=len(profile.songs),
        )
        return _serialize(profile)

    async def get_taste(self, user_id: uuid.UUID) -> dict:
        await self._require_user(user_id)
        profile = await self.store.get_taste_profile(user_id)
        if profile is None:
            raise NotFoundError("User has no taste profile", user_id=user_id)
        return _serialize(profile)

    async def sync_from_source(self, user_id: uuid.UUID, source: Any) -> dict:
        """Replace the user's taste with a snapshot pulled from ``source``.

        ``source`` must expose ``source_name`` and an async ``fetch_taste()``
        returning ``{"genres", "artists", "songs"}``.
        """
        await self._require_user(user_id)
        snapshot = await source.fetch_taste()
        return await self.update_taste(
            user_id,
            genres=snapshot.get("genres"),
            artists=snapshot.get("artists"),
            songs=snapshot.get("songs"),
            source=source.source_name,
        )
