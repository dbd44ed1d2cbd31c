"""
Cadence — Suggestions API

Serves each user's discovery queue, plus queue status, reset and
explicit batch scoring.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_queue_service
from app.config import get_settings
from app.schemas.suggestion import (
    QueueResetResponse,
    QueueStatusResponse,
    ScoreRequest,
    ScoreResponse,
    SuggestionsResponse,
)
from app.services.queue_service import SuggestionQueueService

logger = structlog.get_logger("cadence.api.suggestions")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Next suggestions
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=SuggestionsResponse,
    summary="Get the next suggested users",
)
async def get_suggestions(
    user_id: uuid.UUID,
    count: int | None = Query(None, description="Number of suggestions to return"),
    service: SuggestionQueueService = Depends(get_queue_service),
) -> dict:
    """Return the best queued candidates, refilling the queue when it is low.

    ``count`` is validated by the service (1 to ``SUGGESTION_MAX_COUNT``) so
    out-of-range values surface as the same 422 error body as every other
    invalid argument.
    """
    if count is None:
        count = get_settings().SUGGESTION_DEFAULT_COUNT

    users = await service.get_suggestions(user_id, count)
    return {
        "users": users,
        "count": len(users),
        "message": "Potential matches found" if users else "No more users to show",
    }


@router.get(
    "/{user_id}/status",
    response_model=QueueStatusResponse,
    summary="Inspect a user's suggestion queue",
)
async def get_queue_status(
    user_id: uuid.UUID,
    service: SuggestionQueueService = Depends(get_queue_service),
) -> dict:
    return await service.get_queue_status(user_id)


@router.post(
    "/{user_id}/reset",
    response_model=QueueResetResponse,
    summary="Clear and rebuild a user's suggestion queue",
)
async def reset_queue(
    user_id: uuid.UUID,
    service: SuggestionQueueService = Depends(get_queue_service),
) -> dict:
    return await service.reset_queue(user_id)


@router.post(
    "/{user_id}/score",
    response_model=ScoreResponse,
    summary="Score specific users against this user",
)
async def score_candidates(
    user_id: uuid.UUID,
    payload: ScoreRequest,
    service: SuggestionQueueService = Depends(get_queue_service),
) -> dict:
    """Batch-score the given users, best first, optionally adding them to
    the queue."""
    return await service.score_candidates(
        user_id, payload.target_user_ids, enqueue=payload.enqueue
    )
