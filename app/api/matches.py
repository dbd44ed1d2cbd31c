"""
Cadence — Matches API
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_swipe_service
from app.schemas.match import MatchesResponse
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("cadence.api.matches")

router = APIRouter()


@router.get(
    "/{user_id}",
    response_model=MatchesResponse,
    summary="List a user's mutual matches",
)
async def list_matches(
    user_id: uuid.UUID,
    service: SwipeService = Depends(get_swipe_service),
) -> dict:
    """All users with a like in both directions, most recent match first."""
    matches = await service.get_matches(user_id)
    logger.info("list_matches", user_id=str(user_id), count=len(matches))
    return {
        "matches": matches,
        "count": len(matches),
        "message": "Your matches" if matches else "No matches yet",
    }
