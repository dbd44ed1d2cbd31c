"""
Cadence — Swipes API

Like/pass endpoints and per-user swipe statistics.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, status

from app.api.deps import get_swipe_service
from app.schemas.match import SwipeCreate, SwipeResponse, SwipeStatsResponse
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("cadence.api.swipes")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Record a swipe
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Like or pass on a user",
)
async def create_swipe(
    payload: SwipeCreate,
    service: SwipeService = Depends(get_swipe_service),
) -> dict:
    """Record a swipe.  Returns 409 if this pair was already swiped and 422
    for a self-swipe."""
    return await service.swipe(payload.from_user_id, payload.to_user_id, payload.liked)


@router.post(
    "/{from_user_id}/like/{to_user_id}",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Like a user",
)
async def like_user(
    from_user_id: uuid.UUID,
    to_user_id: uuid.UUID,
    service: SwipeService = Depends(get_swipe_service),
) -> dict:
    return await service.swipe(from_user_id, to_user_id, liked=True)


@router.post(
    "/{from_user_id}/pass/{to_user_id}",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pass on a user",
)
async def pass_user(
    from_user_id: uuid.UUID,
    to_user_id: uuid.UUID,
    service: SwipeService = Depends(get_swipe_service),
) -> dict:
    return await service.swipe(from_user_id, to_user_id, liked=False)


# ──────────────────────────────────────────────────────────────────────────────
# GET /stats/{user_id} — Swipe statistics
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/stats/{user_id}",
    response_model=SwipeStatsResponse,
    summary="Swipe statistics for a user",
)
async def get_swipe_stats(
    user_id: uuid.UUID,
    service: SwipeService = Depends(get_swipe_service),
) -> dict:
    return await service.get_stats(user_id)
