"""
Cadence — Swipe state machine & mutual-match detection.

A swipe is a directed like/pass from one user to another.  Each ordered
pair may be swiped at most once; the store's unique constraint is the sole
arbiter, so two concurrent swipes on the same pair yield one success and
one ``ConflictError``.

On a like, the reverse edge is checked: if the target has already liked
the swiper, both records are flagged ``is_match``.  The swiped entry is
removed from the swiper's queue, and a background refill is scheduled if
the queue has dropped below its minimum size.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog

from app.config import Settings, get_settings
from app.errors import InvalidArgumentError, NotFoundError
from app.services.queue_service import SuggestionQueueService
from app.store import ProfileStore

logger = structlog.get_logger("cadence.swipe_service")

_MATCH_MESSAGE = "It's a match!"
_LIKE_MESSAGE = "You liked this user"
_PASS_MESSAGE = "You passed on this user"


class SwipeService:
    """Records swipes, detects mutual matches, reports match lists and stats."""

    def __init__(
        self,
        store: ProfileStore,
        queue_service: SuggestionQueueService,
        runner: Any | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.queue_service = queue_service
        self.runner = runner
        self.settings = settings or get_settings()

    # ── Public API ────────────────────────────────────────────────────────

    async def swipe(
        self,
        from_user_id: uuid.UUID,
        to_user_id: uuid.UUID,
        liked: bool,
    ) -> dict:
        """Record a like or pass and report whether it completed a match.

        Parameters
        ----------
        from_user_id:
            The swiping user.
        to_user_id:
            The user being swiped on.
        liked:
            ``True`` for a like, ``False`` for a pass.

        Returns
        -------
        dict
            ``{"swipe_id", "is_match", "action", "message", "target_user"}``.

        Raises
        ------
        InvalidArgumentError
            ``from_user_id == to_user_id``.
        NotFoundError
            Either user does not exist.
        ConflictError
            The ordered pair has already been swiped.
        """
        if from_user_id == to_user_id:
            raise InvalidArgumentError("Cannot swipe on yourself", user_id=from_user_id)

        log = logger.bind(from_user_id=str(from_user_id), to_user_id=str(to_user_id))

        swiper = await self.store.get_user(from_user_id)
        if swiper is None:
            raise NotFoundError("User not found", user_id=from_user_id)
        target = await self.store.get_user(to_user_id)
        if target is None:
            raise NotFoundError("Target user not found", user_id=to_user_id)

        swipe = await self.store.insert_swipe(from_user_id, to_user_id, liked)
        await self.queue_service.remove_entry(from_user_id, to_user_id)

        is_match = False
        if liked:
            reverse = await self.store.find_swipe(to_user_id, from_user_id)
            if reverse is not None and reverse.liked:
                await self.store.mark_match(from_user_id, to_user_id)
                is_match = True

        await self.store.commit()
        log.info("swipe_recorded", liked=liked, is_match=is_match)

        await self._maybe_schedule_refill(from_user_id)

        if liked:
            message = _MATCH_MESSAGE if is_match else _LIKE_MESSAGE
        else:
            message = _PASS_MESSAGE

        return {
            "swipe_id": swipe.id,
            "is_match": is_match,
            "action": "like" if liked else "pass",
            "message": message,
            "target_user": {
                "id": target.id,
                "display_name": target.display_name,
                "age": target.age,
            },
        }

    async def get_matches(self, user_id: uuid.UUID) -> list[dict]:
        """Users who liked ``user_id`` and were liked back, newest first."""
        if await self.store.get_user(user_id) is None:
            raise NotFoundError("User not found", user_id=user_id)

        mutual = await self.store.list_mutual_likes(user_id)
        return [
            {
                "user_id": other.id,
                "display_name": other.display_name,
                "age": other.age,
                "profile_image_url": other.primary_photo,
                "matched_at": matched_at,
            }
            for other, matched_at in mutual
        ]

    async def get_stats(self, user_id: uuid.UUID) -> dict:
        if await self.store.get_user(user_id) is None:
            raise NotFoundError("User not found", user_id=user_id)

        total, likes = await self.store.get_swipe_counts(user_id)
        matches = len(await self.store.list_mutual_likes(user_id))
        return {
            "user_id": user_id,
            "total_swipes": total,
            "likes": likes,
            "passes": total - likes,
            "matches": matches,
            "like_rate": round(likes / total * 100, 1) if total else 0.0,
        }

    # ── Internals ─────────────────────────────────────────────────────────

    async def _maybe_schedule_refill(self, owner_id: uuid.UUID) -> None:
        if self.runner is None:
            return
        if not await self.queue_service.queue_is_low(owner_id):
            return

        queue_service = self.queue_service
        self.runner.submit(
            f"refill:{owner_id}",
            lambda store: queue_service.bind(store).refill(owner_id),
        )
