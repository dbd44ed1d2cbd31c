"""Unit tests for SuggestionQueueService — refill, serve, status, reset, batch scoring."""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError

from app.errors import InvalidArgumentError, NotFoundError
from app.services.queue_service import SuggestionQueueService


class TestPreconditions:
    """Owner and count validation."""

    @pytest.mark.asyncio
    async def test_count_out_of_range(self, queue_service, make_user):
        owner = await make_user()
        with pytest.raises(InvalidArgumentError):
            await queue_service.get_suggestions(owner.id, 0)
        with pytest.raises(InvalidArgumentError):
            await queue_service.get_suggestions(owner.id, 51)

    @pytest.mark.asyncio
    async def test_unknown_owner(self, queue_service):
        with pytest.raises(NotFoundError):
            await queue_service.get_suggestions(uuid.uuid4(), 5)

    @pytest.mark.asyncio
    async def test_owner_without_profile(self, queue_service, make_user):
        owner = await make_user(with_profile=False)
        with pytest.raises(NotFoundError):
            await queue_service.get_suggestions(owner.id, 5)

    @pytest.mark.asyncio
    async def test_owner_with_empty_profile(self, queue_service, make_user):
        owner = await make_user(genres=(), artists=(), songs=())
        with pytest.raises(InvalidArgumentError):
            await queue_service.get_suggestions(owner.id, 5)


class TestLowWaterMark:
    def test_default_is_min_queue_size(self, queue_service):
        assert queue_service.low_water_mark() == 3

    def test_scales_with_count(self, queue_service):
        assert queue_service.low_water_mark(1) == 3
        assert queue_service.low_water_mark(5) == 10


class TestRefill:
    """Tests for queue refill."""

    @pytest.mark.asyncio
    async def test_refill_excludes_owner_swiped_and_queued(self, store, queue_service, make_user):
        owner = await make_user()
        swiped = await make_user()
        queued = await make_user()
        fresh = await make_user()

        await store.insert_swipe(owner.id, swiped.id, liked=False)
        await store.insert_queue_entries([
            {"owner_id": owner.id, "suggested_id": queued.id,
             "compatibility_score": 50.0, "position": 4},
        ])

        assert await queue_service.refill(owner.id) is True

        queued_ids = await store.get_queued_ids(owner.id)
        assert queued_ids == {queued.id, fresh.id}
        assert owner.id not in queued_ids
        assert swiped.id not in queued_ids

    @pytest.mark.asyncio
    async def test_positions_continue_after_max(self, store, queue_service, make_user):
        owner = await make_user()
        existing = await make_user()
        new_a = await make_user()
        new_b = await make_user()
        await store.insert_queue_entries([
            {"owner_id": owner.id, "suggested_id": existing.id,
             "compatibility_score": 10.0, "position": 7},
        ])

        await queue_service.refill(owner.id)

        positions = sorted(
            store.queue[(owner.id, uid)].position for uid in (new_a.id, new_b.id)
        )
        assert positions == [8, 9]

    @pytest.mark.asyncio
    async def test_positions_follow_score_order(self, store, queue_service, make_user):
        owner = await make_user(genres=("pop",), artists=("x",))
        weak = await make_user(genres=("jazz",), artists=("z",))
        strong = await make_user(genres=("pop",), artists=("x",))

        await queue_service.refill(owner.id)

        assert store.queue[(owner.id, strong.id)].position == 1
        assert store.queue[(owner.id, weak.id)].position == 2
        assert (
            store.queue[(owner.id, strong.id)].compatibility_score
            > store.queue[(owner.id, weak.id)].compatibility_score
        )

    @pytest.mark.asyncio
    async def test_refill_batch_size_cap(self, store, scorer, settings, make_user):
        settings.REFILL_BATCH_SIZE = 2
        service = SuggestionQueueService(store, scorer, settings=settings)
        owner = await make_user()
        for _ in range(5):
            await make_user()

        await service.refill(owner.id)

        assert await store.count_queue_entries(owner.id) == 2

    @pytest.mark.asyncio
    async def test_inactive_and_empty_candidates_skipped(self, store, queue_service, make_user):
        owner = await make_user()
        await make_user(is_active=False)
        await make_user(genres=(), artists=(), songs=())
        await make_user(with_profile=False)
        eligible = await make_user()

        await queue_service.refill(owner.id)

        assert await store.get_queued_ids(owner.id) == {eligible.id}

    @pytest.mark.asyncio
    async def test_no_candidates_returns_false(self, store, queue_service, make_user):
        owner = await make_user()
        assert await queue_service.refill(owner.id) is False
        assert await store.count_queue_entries(owner.id) == 0

    @pytest.mark.asyncio
    async def test_repeated_refill_never_duplicates(self, store, queue_service, make_user):
        owner = await make_user()
        for _ in range(3):
            await make_user()

        await queue_service.refill(owner.id)
        await queue_service.refill(owner.id)

        assert await store.count_queue_entries(owner.id) == 3

    @pytest.mark.asyncio
    async def test_refill_skipped_when_lock_held(self, store, scorer, settings, make_user):
        redis = AsyncMock()
        redis.set.return_value = None
        service = SuggestionQueueService(store, scorer, redis=redis, settings=settings)
        owner = await make_user()
        await make_user()

        assert await service.refill(owner.id) is False
        assert await store.count_queue_entries(owner.id) == 0

    @pytest.mark.asyncio
    async def test_lock_released_after_refill(self, store, scorer, settings, make_user):
        redis = AsyncMock()
        redis.set.return_value = True
        redis.get.side_effect = lambda key: redis.set.call_args.args[1]
        service = SuggestionQueueService(store, scorer, redis=redis, settings=settings)
        owner = await make_user()
        await make_user()

        assert await service.refill(owner.id) is True

        key = f"refill_lock:{owner.id}"
        assert redis.set.call_args.kwargs == {"nx": True, "ex": settings.REFILL_LOCK_TTL_SECONDS}
        redis.delete.assert_awaited_once_with(key)

    @pytest.mark.asyncio
    async def test_foreign_lock_not_released(self, store, scorer, settings, make_user):
        redis = AsyncMock()
        redis.set.return_value = True
        redis.get.return_value = "someone-else"
        service = SuggestionQueueService(store, scorer, redis=redis, settings=settings)
        owner = await make_user()
        await make_user()

        await service.refill(owner.id)

        redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_failure_does_not_block_refill(self, store, scorer, settings, make_user):
        redis = AsyncMock()
        redis.set.side_effect = RedisError("connection refused")
        service = SuggestionQueueService(store, scorer, redis=redis, settings=settings)
        owner = await make_user()
        await make_user()

        assert await service.refill(owner.id) is True


class TestRescoreScheduling:
    """Refill hands high-scoring entries to the background rescorer."""

    @pytest.mark.asyncio
    async def test_top_entries_submitted(self, store, scorer, settings, make_user):
        runner = MagicMock()
        rescoring = MagicMock()
        rescoring.rescore = AsyncMock()
        service = SuggestionQueueService(
            store, scorer, runner=runner, rescoring=rescoring, settings=settings
        )
        owner = await make_user()
        match = await make_user()
        await make_user(genres=("jazz",), artists=("z",), orientation="male")

        await service.refill(owner.id)

        runner.submit.assert_called_once()
        key, job = runner.submit.call_args.args
        assert key == f"rescore:{owner.id}:1"

        await job(store)
        rescoring.rescore.assert_awaited_once_with(store, owner.id, [match.id])

    @pytest.mark.asyncio
    async def test_nothing_submitted_below_threshold(self, store, scorer, settings, make_user):
        runner = MagicMock()
        service = SuggestionQueueService(
            store, scorer, runner=runner, rescoring=MagicMock(), settings=settings
        )
        owner = await make_user()
        await make_user(genres=("jazz",), artists=("z",), orientation="male")

        await service.refill(owner.id)

        runner.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_rescoring(self, store, scorer, settings, make_user):
        settings.RESCORING_ENABLED = False
        runner = MagicMock()
        service = SuggestionQueueService(
            store, scorer, runner=runner, rescoring=MagicMock(), settings=settings
        )
        owner = await make_user()
        await make_user()

        await service.refill(owner.id)

        runner.submit.assert_not_called()


class TestGetSuggestions:
    """Serving suggestions from the queue."""

    @pytest.mark.asyncio
    async def test_fills_and_serves_best_first(self, queue_service, make_user):
        owner = await make_user(genres=("pop",), artists=("x",))
        weak = await make_user(genres=("metal",), artists=("z",))
        strong = await make_user(genres=("pop",), artists=("x",), photos=["a.jpg"])

        result = await queue_service.get_suggestions(owner.id, 5)

        assert [s["user_id"] for s in result] == [strong.id, weak.id]
        assert result[0]["compatibility_score"] == 100.0
        assert result[0]["profile_image_url"] == "a.jpg"
        assert result[0]["genres"] == ["pop"]

    @pytest.mark.asyncio
    async def test_count_limits_result(self, queue_service, make_user):
        owner = await make_user()
        for _ in range(4):
            await make_user()

        result = await queue_service.get_suggestions(owner.id, 2)

        assert len(result) == 2

    @pytest.mark.asyncio
    async def test_empty_when_no_candidates(self, queue_service, make_user):
        owner = await make_user()
        assert await queue_service.get_suggestions(owner.id, 5) == []

    @pytest.mark.asyncio
    async def test_never_returns_owner_or_swiped(self, store, queue_service, make_user):
        owner = await make_user()
        others = [await make_user() for _ in range(4)]
        await store.insert_swipe(owner.id, others[0].id, liked=True)

        result = await queue_service.get_suggestions(owner.id, 10)

        ids = {s["user_id"] for s in result}
        assert owner.id not in ids
        assert others[0].id not in ids
        assert ids == {o.id for o in others[1:]}

    @pytest.mark.asyncio
    async def test_equal_scores_served_by_position(self, store, queue_service, settings, make_user):
        """Ties on score are broken by ascending position, and refilled
        entries land behind older ones with the same score."""
        settings.LOW_WATER_MULTIPLIER = 1
        owner = await make_user()
        b, c, d = [await make_user() for _ in range(3)]
        await store.insert_queue_entries([
            {"owner_id": owner.id, "suggested_id": b.id,
             "compatibility_score": 100.0, "position": 3},
            {"owner_id": owner.id, "suggested_id": c.id,
             "compatibility_score": 100.0, "position": 1},
            {"owner_id": owner.id, "suggested_id": d.id,
             "compatibility_score": 100.0, "position": 2},
        ])

        first = await queue_service.get_suggestions(owner.id, 3)
        assert [s["user_id"] for s in first] == [c.id, d.id, b.id]

        e = await make_user()
        f = await make_user()
        assert await queue_service.refill(owner.id) is True

        second = await queue_service.get_suggestions(owner.id, 5)
        assert [s["user_id"] for s in second] == [c.id, d.id, b.id, e.id, f.id]
        assert store.queue[(owner.id, e.id)].position == 4
        assert store.queue[(owner.id, f.id)].position == 5

    @pytest.mark.asyncio
    async def test_stale_swiped_entries_purged(self, store, queue_service, make_user):
        owner = await make_user()
        target = await make_user()
        await store.insert_queue_entries([
            {"owner_id": owner.id, "suggested_id": target.id,
             "compatibility_score": 90.0, "position": 1},
        ])
        # Swipe recorded without going through the swipe service.
        await store.insert_swipe(owner.id, target.id, liked=False)

        result = await queue_service.get_suggestions(owner.id, 5)

        assert result == []
        assert (owner.id, target.id) not in store.queue


class TestStatusAndReset:
    @pytest.mark.asyncio
    async def test_status(self, store, queue_service, make_user):
        owner = await make_user()
        for _ in range(3):
            await make_user()

        before = await queue_service.get_queue_status(owner.id)
        assert before["current_queue_size"] == 0
        assert before["is_queue_low"] is True
        assert before["total_available"] == 3
        assert before["can_refill"] is True

        await queue_service.refill(owner.id)
        after = await queue_service.get_queue_status(owner.id)
        assert after["current_queue_size"] == 3
        assert after["is_queue_low"] is False
        assert after["total_available"] == 0
        assert after["can_refill"] is False

    @pytest.mark.asyncio
    async def test_status_unknown_user(self, queue_service):
        with pytest.raises(NotFoundError):
            await queue_service.get_queue_status(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_reset_rebuilds_queue(self, store, queue_service, make_user):
        owner = await make_user()
        for _ in range(2):
            await make_user()
        await queue_service.refill(owner.id)

        result = await queue_service.reset_queue(owner.id)

        assert result["cleared"] == 2
        assert result["refilled"] is True
        assert result["current_queue_size"] == 2
        positions = sorted(e.position for e in await store.get_queue_entries(owner.id))
        assert positions == [1, 2]


class TestScoreCandidates:
    @pytest.mark.asyncio
    async def test_scores_sorted_and_enqueued(self, store, queue_service, make_user):
        owner = await make_user(genres=("pop",), artists=("x",))
        weak = await make_user(genres=("metal",), artists=("z",))
        strong = await make_user(genres=("pop",), artists=("x",))

        result = await queue_service.score_candidates(
            owner.id, [weak.id, strong.id, owner.id, uuid.uuid4()]
        )

        assert [r["user_id"] for r in result["results"]] == [strong.id, weak.id]
        assert result["results"][0]["score"] == 100
        assert result["enqueued"] == 2
        assert await store.get_queued_ids(owner.id) == {weak.id, strong.id}

    @pytest.mark.asyncio
    async def test_swiped_targets_scored_but_not_enqueued(self, store, queue_service, make_user):
        owner = await make_user()
        target = await make_user()
        await store.insert_swipe(owner.id, target.id, liked=True)

        result = await queue_service.score_candidates(owner.id, [target.id])

        assert len(result["results"]) == 1
        assert result["enqueued"] == 0

    @pytest.mark.asyncio
    async def test_ineligible_targets_scored_but_not_enqueued(self, store, queue_service, make_user):
        """Targets without a usable taste profile never enter the queue."""
        owner = await make_user()
        no_profile = await make_user(with_profile=False)
        empty = await make_user(genres=(), artists=(), songs=())
        eligible = await make_user()

        result = await queue_service.score_candidates(
            owner.id, [no_profile.id, empty.id, eligible.id]
        )

        assert {r["user_id"] for r in result["results"]} == {
            no_profile.id, empty.id, eligible.id,
        }
        assert result["enqueued"] == 1
        assert await store.get_queued_ids(owner.id) == {eligible.id}

    @pytest.mark.asyncio
    async def test_empty_targets_enqueued_when_allowed(self, store, queue_service, settings, make_user):
        settings.REQUIRE_NONEMPTY_TASTE = False
        owner = await make_user()
        no_profile = await make_user(with_profile=False)
        empty = await make_user(genres=(), artists=(), songs=())

        result = await queue_service.score_candidates(owner.id, [no_profile.id, empty.id])

        assert result["enqueued"] == 1
        assert await store.get_queued_ids(owner.id) == {empty.id}

    @pytest.mark.asyncio
    async def test_no_enqueue(self, store, queue_service, make_user):
        owner = await make_user()
        target = await make_user()

        result = await queue_service.score_candidates(owner.id, [target.id], enqueue=False)

        assert result["enqueued"] == 0
        assert await store.count_queue_entries(owner.id) == 0
