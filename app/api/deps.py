"""
Cadence — Request-scoped dependencies.

Services are assembled per request from the long-lived handles the
lifespan places on ``app.state`` (store factory, scorer, background
runner, rescorer, Redis client).  Nothing here is a module-level
singleton, so tests can swap any handle on ``app.state``.
"""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends, Request

from app.config import get_settings
from app.services.queue_service import SuggestionQueueService
from app.services.swipe_service import SwipeService
from app.services.taste_service import TasteProfileService
from app.store import ProfileStore


async def get_store(request: Request) -> AsyncIterator[ProfileStore]:
    async with request.app.state.store_factory() as store:
        yield store


def get_queue_service(
    request: Request,
    store: ProfileStore = Depends(get_store),
) -> SuggestionQueueService:
    state = request.app.state
    return SuggestionQueueService(
        store,
        state.scorer,
        runner=state.runner,
        rescoring=state.rescoring,
        redis=state.redis,
        settings=get_settings(),
    )


def get_swipe_service(
    request: Request,
    store: ProfileStore = Depends(get_store),
    queue_service: SuggestionQueueService = Depends(get_queue_service),
) -> SwipeService:
    return SwipeService(
        store,
        queue_service,
        runner=request.app.state.runner,
        settings=get_settings(),
    )


def get_taste_service(store: ProfileStore = Depends(get_store)) -> TasteProfileService:
    return TasteProfileService(store)
