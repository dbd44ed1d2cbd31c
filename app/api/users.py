"""
Cadence — Users API

Endpoints for user registration, lookup, and taste-profile management
(manual entry or Spotify sync).
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status

from app.api.deps import get_store, get_taste_service
from app.config import get_settings
from app.errors import NotFoundError
from app.models.user import User
from app.schemas.user import (
    TasteResponse,
    TasteSyncRequest,
    TasteUpdate,
    UserCreate,
    UserResponse,
)
from app.services.music_source import SpotifyTasteSource
from app.services.taste_service import TasteProfileService
from app.store import ProfileStore

logger = structlog.get_logger("cadence.api.users")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create a new user
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new user",
)
async def create_user(
    payload: UserCreate,
    store: ProfileStore = Depends(get_store),
) -> User:
    """Register a new user account.  Duplicate emails return 409."""
    log = logger.bind(email=payload.email)
    log.info("create_user_start")

    new_user = await store.create_user(**payload.model_dump())
    await store.commit()

    log.info("create_user_complete", user_id=str(new_user.id))
    return new_user


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Get user by ID
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get user by ID",
)
async def get_user(
    user_id: uuid.UUID,
    store: ProfileStore = Depends(get_store),
) -> User:
    user = await store.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found", user_id=user_id)
    return user


# ──────────────────────────────────────────────────────────────────────────────
# Taste profile
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/{user_id}/taste",
    response_model=TasteResponse,
    summary="Replace a user's taste profile",
)
async def update_taste(
    user_id: uuid.UUID,
    payload: TasteUpdate,
    service: TasteProfileService = Depends(get_taste_service),
) -> dict:
    """Set genres, artists and songs.  Each accepts a comma-delimited
    string or a list; values are normalized before storage."""
    return await service.update_taste(
        user_id,
        genres=payload.genres,
        artists=payload.artists,
        songs=payload.songs,
    )


@router.get(
    "/{user_id}/taste",
    response_model=TasteResponse,
    summary="Get a user's taste profile",
)
async def get_taste(
    user_id: uuid.UUID,
    service: TasteProfileService = Depends(get_taste_service),
) -> dict:
    return await service.get_taste(user_id)


@router.post(
    "/{user_id}/taste/sync",
    response_model=TasteResponse,
    summary="Import taste from Spotify",
)
async def sync_taste(
    user_id: uuid.UUID,
    payload: TasteSyncRequest,
    service: TasteProfileService = Depends(get_taste_service),
) -> dict:
    """Replace the taste profile with the user's Spotify top artists,
    their genres, and top tracks.  The access token is used for this
    request only and never stored."""
    settings = get_settings()
    source = SpotifyTasteSource(
        payload.access_token,
        limit=settings.SPOTIFY_TOP_LIMIT,
        time_range=settings.SPOTIFY_TIME_RANGE,
        request_timeout=settings.SPOTIFY_REQUEST_TIMEOUT,
    )
    logger.info("taste_sync_start", user_id=str(user_id), source=source.source_name)
    return await service.sync_from_source(user_id, source)
