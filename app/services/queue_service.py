"""
Cadence — Per-user suggestion queue.

Each owner has a bounded queue of pre-scored candidates.  Reads serve the
best entries (score desc, position asc); whenever the queue falls below its
low-water mark it is topped up from the pool of users the owner has neither
swiped nor already queued.

Refill pipeline:
  1. Exclusion set = swiped ∪ queued ∪ {owner}.
  2. Scan up to REFILL_SCAN_LIMIT eligible candidates and score each one.
  3. Keep the top REFILL_BATCH_SIZE and append them at positions
     max+1, max+2, … in one ``ON CONFLICT DO NOTHING`` batch.
  4. Commit, then hand the top-K (score ≥ RESCORE_MIN_SCORE) to the
     background rescorer.

Concurrent refills for the same owner are safe: the (owner, suggested)
primary key discards duplicates, and an optional Redis lock keeps most of
them from doing the scan at all.
"""

from __future__ import annotations

import uuid
from typing import Any, Iterable

import structlog
from redis.exceptions import RedisError

from app.config import Settings, get_settings
from app.errors import InvalidArgumentError, NotFoundError
from app.models import QueueEntry, TasteProfile, User
from app.services.compatibility_service import CompatibilityService
from app.store import ProfileStore

logger = structlog.get_logger("cadence.queue_service")


class SuggestionQueueService:
    """Maintains and serves each user's suggestion queue."""

    def __init__(
        self,
        store: ProfileStore,
        scorer: CompatibilityService,
        runner: Any | None = None,
        rescoring: Any | None = None,
        redis: Any | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Parameters
        ----------
        store:
            Persistence boundary for the current request or job.
        scorer:
            Pure compatibility scorer used for the initial queue scores.
        runner:
            Optional ``BackgroundTaskRunner``; without it no rescoring is
            scheduled.
        rescoring:
            Optional ``RescoringService`` run on ``runner`` after a refill.
        redis:
            Optional ``redis.asyncio`` client used for per-owner refill locks.
        """
        self.store = store
        self.scorer = scorer
        self.runner = runner
        self.rescoring = rescoring
        self.redis = redis
        self.settings = settings or get_settings()

    def bind(self, store: ProfileStore) -> "SuggestionQueueService":
        """Return a copy of this service that operates on ``store``."""
        return SuggestionQueueService(
            store,
            self.scorer,
            runner=self.runner,
            rescoring=self.rescoring,
            redis=self.redis,
            settings=self.settings,
        )

    # ── Preconditions ─────────────────────────────────────────────────────

    async def require_taste_profile(self, owner_id: uuid.UUID) -> tuple[User, TasteProfile]:
        """Load the owner and their taste profile or raise.

        Raises
        ------
        NotFoundError
            Owner or owner's taste profile does not exist.
        InvalidArgumentError
            The profile is empty and empty profiles are not allowed.
        """
        owner = await self.store.get_user(owner_id)
        if owner is None:
            raise NotFoundError("User not found", user_id=owner_id)

        profile = await self.store.get_taste_profile(owner_id)
        if profile is None:
            raise NotFoundError("User has no taste profile", user_id=owner_id)

        if self.settings.REQUIRE_NONEMPTY_TASTE and profile.is_empty:
            raise InvalidArgumentError(
                "Taste profile is empty; add genres, artists or songs first",
                user_id=owner_id,
            )
        return owner, profile

    def low_water_mark(self, count: int | None = None) -> int:
        if count is None:
            return self.settings.MIN_QUEUE_SIZE
        return max(self.settings.MIN_QUEUE_SIZE, count * self.settings.LOW_WATER_MULTIPLIER)

    async def queue_is_low(self, owner_id: uuid.UUID, count: int | None = None) -> bool:
        size = await self.store.count_queue_entries(owner_id)
        return size < self.low_water_mark(count)

    # ── Public API ────────────────────────────────────────────────────────

    async def get_suggestions(self, owner_id: uuid.UUID, count: int) -> list[dict]:
        """Return up to ``count`` queued candidates for ``owner_id``.

        Refills first when the queue is below its low-water mark, and purges
        entries for users the owner has already swiped.  An empty list is a
        valid answer when no candidates remain.
        """
        max_count = self.settings.SUGGESTION_MAX_COUNT
        if not 1 <= count <= max_count:
            raise InvalidArgumentError(
                f"count must be between 1 and {max_count}", count=count
            )

        await self.require_taste_profile(owner_id)
        log = logger.bind(owner_id=str(owner_id), count=count)

        entries = await self.store.get_queue_entries(owner_id)
        if len(entries) < self.low_water_mark(count):
            log.info("queue_below_low_water", size=len(entries))
            if await self.refill(owner_id):
                entries = await self.store.get_queue_entries(owner_id)

        entries = await self._purge_swiped(owner_id, entries)
        suggestions = await self._hydrate(entries[:count])

        log.info("suggestions_served", returned=len(suggestions))
        return suggestions

    async def refill(self, owner_id: uuid.UUID) -> bool:
        """Top up the owner's queue.  Returns True if anything was inserted."""
        log = logger.bind(owner_id=str(owner_id))

        owner = await self.store.get_user(owner_id)
        profile = await self.store.get_taste_profile(owner_id) if owner else None
        if owner is None or profile is None:
            log.info("refill_skipped", reason="no_profile")
            return False
        if self.settings.REQUIRE_NONEMPTY_TASTE and profile.is_empty:
            log.info("refill_skipped", reason="empty_profile")
            return False

        lock_token = await self._acquire_refill_lock(owner_id)
        if lock_token is False:
            log.info("refill_skipped", reason="locked")
            return False

        try:
            swiped = await self.store.get_swiped_ids(owner_id)
            queued = await self.store.get_queued_ids(owner_id)
            excluded = swiped | queued | {owner_id}

            candidates = await self.store.get_users_excluding(
                excluded,
                limit=self.settings.REFILL_SCAN_LIMIT,
                require_nonempty=self.settings.REQUIRE_NONEMPTY_TASTE,
            )
            if not candidates:
                log.info("refill_no_candidates", excluded=len(excluded))
                return False

            scored = [
                (self.scorer.score(profile, candidate_profile, owner, candidate), candidate.id)
                for candidate, candidate_profile in candidates
            ]
            # Stable sort keeps scan order among equal scores.
            scored.sort(key=lambda pair: pair[0], reverse=True)
            batch = scored[: self.settings.REFILL_BATCH_SIZE]

            start = await self.store.max_queue_position(owner_id)
            inserted = await self.store.insert_queue_entries(
                [
                    {
                        "owner_id": owner_id,
                        "suggested_id": suggested_id,
                        "compatibility_score": float(score),
                        "position": start + offset,
                    }
                    for offset, (score, suggested_id) in enumerate(batch, start=1)
                ]
            )
            await self.store.commit()
        finally:
            await self._release_refill_lock(owner_id, lock_token)

        log.info(
            "queue_refilled",
            scanned=len(candidates),
            batch=len(batch),
            inserted=inserted,
            first_position=start + 1,
        )
        if inserted:
            self._schedule_rescore(owner_id, batch, start + 1)
        return inserted > 0

    async def remove_entry(self, owner_id: uuid.UUID, suggested_id: uuid.UUID) -> bool:
        return await self.store.delete_queue_entry(owner_id, suggested_id)

    async def get_queue_status(self, owner_id: uuid.UUID) -> dict:
        if await self.store.get_user(owner_id) is None:
            raise NotFoundError("User not found", user_id=owner_id)

        size = await self.store.count_queue_entries(owner_id)
        excluded = (
            await self.store.get_swiped_ids(owner_id)
            | await self.store.get_queued_ids(owner_id)
            | {owner_id}
        )
        available = await self.store.count_candidates(
            excluded, require_nonempty=self.settings.REQUIRE_NONEMPTY_TASTE
        )
        return {
            "user_id": owner_id,
            "current_queue_size": size,
            "is_queue_low": size < self.low_water_mark(),
            "total_available": available,
            "can_refill": available > 0,
        }

    async def reset_queue(self, owner_id: uuid.UUID) -> dict:
        """Drop every queued entry for the owner and rebuild from scratch."""
        await self.require_taste_profile(owner_id)

        cleared = await self.store.clear_queue(owner_id)
        await self.store.commit()
        refilled = await self.refill(owner_id)

        logger.info(
            "queue_reset",
            owner_id=str(owner_id),
            cleared=cleared,
            refilled=refilled,
        )
        return {
            "user_id": owner_id,
            "cleared": cleared,
            "refilled": refilled,
            "current_queue_size": await self.store.count_queue_entries(owner_id),
        }

    async def score_candidates(
        self,
        owner_id: uuid.UUID,
        target_ids: Iterable[uuid.UUID],
        enqueue: bool = True,
    ) -> dict:
        """Score explicit targets against the owner, best first.

        Unknown and inactive targets are ignored.  With ``enqueue`` the
        results are appended to the queue, except already-swiped users and
        users whose taste profile would make them ineligible for a refill;
        pairs already queued are left untouched.
        """
        owner, profile = await self.require_taste_profile(owner_id)

        ids = [tid for tid in dict.fromkeys(target_ids) if tid != owner_id]
        users = await self.store.get_users(ids)
        profiles = await self.store.get_taste_profiles(ids)

        results: list[dict] = []
        for target_id in ids:
            user = users.get(target_id)
            if user is None or not user.is_active:
                continue
            breakdown = self.scorer.calculate_compatibility(
                profile, profiles.get(target_id), owner, user
            )
            results.append(
                {"user_id": target_id, "display_name": user.display_name, **breakdown}
            )
        results.sort(key=lambda r: r["score"], reverse=True)

        enqueued = 0
        if enqueue and results:
            swiped = await self.store.get_swiped_ids(owner_id)
            start = await self.store.max_queue_position(owner_id)
            fresh = [
                r
                for r in results
                if r["user_id"] not in swiped and self._is_queueable(profiles.get(r["user_id"]))
            ]
            enqueued = await self.store.insert_queue_entries(
                [
                    {
                        "owner_id": owner_id,
                        "suggested_id": r["user_id"],
                        "compatibility_score": float(r["score"]),
                        "position": start + offset,
                    }
                    for offset, r in enumerate(fresh, start=1)
                ]
            )
            await self.store.commit()

        logger.info(
            "candidates_scored",
            owner_id=str(owner_id),
            scored=len(results),
            enqueued=enqueued,
        )
        return {"user_id": owner_id, "results": results, "enqueued": enqueued}

    # ── Internals ─────────────────────────────────────────────────────────

    def _is_queueable(self, profile: TasteProfile | None) -> bool:
        if profile is None:
            return False
        return not (self.settings.REQUIRE_NONEMPTY_TASTE and profile.is_empty)

    async def _purge_swiped(
        self, owner_id: uuid.UUID, entries: list[QueueEntry]
    ) -> list[QueueEntry]:
        if not entries:
            return entries
        swiped = await self.store.get_swiped_ids(owner_id)
        stale = [e for e in entries if e.suggested_id in swiped]
        if not stale:
            return entries

        for entry in stale:
            await self.store.delete_queue_entry(owner_id, entry.suggested_id)
        await self.store.commit()
        logger.info("queue_purged_swiped", owner_id=str(owner_id), purged=len(stale))
        return [e for e in entries if e.suggested_id not in swiped]

    async def _hydrate(self, entries: list[QueueEntry]) -> list[dict]:
        ids = [e.suggested_id for e in entries]
        users = await self.store.get_users(ids)
        profiles = await self.store.get_taste_profiles(ids)

        suggestions: list[dict] = []
        for entry in entries:
            user = users.get(entry.suggested_id)
            if user is None or not user.is_active:
                continue
            taste = profiles.get(entry.suggested_id)
            suggestions.append(
                {
                    "user_id": user.id,
                    "display_name": user.display_name,
                    "age": user.age,
                    "gender": user.gender,
                    "bio": user.bio,
                    "location": user.location,
                    "profile_image_url": user.primary_photo,
                    "compatibility_score": entry.compatibility_score,
                    "genres": list(taste.genres) if taste else [],
                    "artists": list(taste.artists) if taste else [],
                }
            )
        return suggestions

    def _schedule_rescore(
        self,
        owner_id: uuid.UUID,
        batch: list[tuple[int, uuid.UUID]],
        first_position: int,
    ) -> None:
        if self.runner is None or self.rescoring is None:
            return
        if not self.settings.RESCORING_ENABLED:
            return

        ids = [sid for score, sid in batch if score >= self.settings.RESCORE_MIN_SCORE]
        ids = ids[: self.settings.RESCORE_TOP_K]
        if not ids:
            return

        rescoring = self.rescoring
        self.runner.submit(
            f"rescore:{owner_id}:{first_position}",
            lambda store: rescoring.rescore(store, owner_id, ids),
        )

    async def _acquire_refill_lock(self, owner_id: uuid.UUID) -> str | bool | None:
        """Try to take the per-owner refill lock.

        Returns the lock token on success, ``False`` if another worker holds
        it, or ``None`` when no lock is in use (no Redis, or Redis failed).
        """
        if self.redis is None:
            return None
        token = uuid.uuid4().hex
        try:
            acquired = await self.redis.set(
                f"refill_lock:{owner_id}",
                token,
                nx=True,
                ex=self.settings.REFILL_LOCK_TTL_SECONDS,
            )
        except RedisError as exc:
            logger.warning("refill_lock_unavailable", owner_id=str(owner_id), error=str(exc))
            return None
        return token if acquired else False

    async def _release_refill_lock(self, owner_id: uuid.UUID, token: str | bool | None) -> None:
        if self.redis is None or not isinstance(token, str):
            return
        key = f"refill_lock:{owner_id}"
        try:
            if await self.redis.get(key) == token:
                await self.redis.delete(key)
        except RedisError as exc:
            logger.warning("refill_lock_release_failed", owner_id=str(owner_id), error=str(exc))
