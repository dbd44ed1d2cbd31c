"""Unit tests for SqlProfileStore — statements compiled against the PostgreSQL dialect.

No database is needed: the ``AsyncSession`` is mocked and each test inspects
the statement the store hands to it.
"""
import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from app.errors import ConflictError, InternalError
from app.models import Swipe
from app.store.sql import SqlProfileStore


@asynccontextmanager
async def _savepoint():
    yield


@pytest.fixture
def session():
    session = MagicMock()
    session.execute = AsyncMock(return_value=MagicMock())
    session.scalars = AsyncMock(return_value=MagicMock())
    session.flush = AsyncMock()
    session.get = AsyncMock()
    session.commit = AsyncMock()
    session.begin_nested = MagicMock(side_effect=lambda: _savepoint())
    return session


@pytest.fixture
def sql_store(session):
    return SqlProfileStore(session)


def _compiled(session, method="execute") -> str:
    stmt = getattr(session, method).call_args.args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestQueueInsert:
    @pytest.mark.asyncio
    async def test_batch_uses_on_conflict_do_nothing(self, sql_store, session):
        owner, a, b = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        session.execute.return_value.all.return_value = [(a,)]

        inserted = await sql_store.insert_queue_entries([
            {"owner_id": owner, "suggested_id": a, "compatibility_score": 80.0, "position": 1},
            {"owner_id": owner, "suggested_id": b, "compatibility_score": 70.0, "position": 2},
        ])

        sql = _compiled(session)
        assert sql.startswith("INSERT INTO suggestion_queue")
        assert "ON CONFLICT (owner_id, suggested_id) DO NOTHING" in sql
        assert "RETURNING suggestion_queue.suggested_id" in sql
        assert inserted == 1

    @pytest.mark.asyncio
    async def test_empty_batch_skips_database(self, sql_store, session):
        assert await sql_store.insert_queue_entries([]) == 0
        session.execute.assert_not_awaited()


class TestTasteUpsert:
    @pytest.mark.asyncio
    async def test_upsert_on_user_id(self, sql_store, session):
        profile = object()
        session.scalars.return_value.one.return_value = profile

        result = await sql_store.upsert_taste_profile(
            uuid.uuid4(), genres=["pop"], artists=[], songs=[]
        )

        sql = _compiled(session, "scalars")
        assert "ON CONFLICT (user_id) DO UPDATE" in sql
        assert "excluded.genres" in sql
        assert "RETURNING" in sql
        assert result is profile


class TestSwipeInsert:
    @pytest.mark.asyncio
    async def test_insert_inside_savepoint(self, sql_store, session):
        swiper, target = uuid.uuid4(), uuid.uuid4()

        swipe = await sql_store.insert_swipe(swiper, target, liked=True)

        session.begin_nested.assert_called_once()
        session.add.assert_called_once_with(swipe)
        assert isinstance(swipe, Swipe)
        assert swipe.liked is True
        assert swipe.is_match is False

    @pytest.mark.asyncio
    async def test_duplicate_becomes_conflict(self, sql_store, session):
        session.flush.side_effect = IntegrityError(
            "INSERT INTO swipes", {}, Exception("duplicate key value violates uq_swipe_pair")
        )

        with pytest.raises(ConflictError):
            await sql_store.insert_swipe(uuid.uuid4(), uuid.uuid4(), liked=False)

    @pytest.mark.asyncio
    async def test_duplicate_email_becomes_conflict(self, sql_store, session):
        session.flush.side_effect = IntegrityError("INSERT INTO users", {}, Exception("dup"))

        with pytest.raises(ConflictError):
            await sql_store.create_user(
                email="a@example.com", display_name="A", age=30, gender="female"
            )


class TestSwipeQueries:
    @pytest.mark.asyncio
    async def test_mutual_likes_self_join(self, sql_store, session):
        session.execute.return_value.all.return_value = []

        assert await sql_store.list_mutual_likes(uuid.uuid4()) == []

        sql = _compiled(session)
        assert "FROM swipes AS swipes_1 JOIN swipes AS swipes_2" in sql
        assert "swipes_2.swiper_id = swipes_1.target_id" in sql
        assert "swipes_2.target_id = swipes_1.swiper_id" in sql
        assert "greatest(swipes_1.created_at, swipes_2.created_at)" in sql
        assert "JOIN users ON users.id = swipes_1.target_id" in sql
        assert "ORDER BY matched_at DESC" in sql

    @pytest.mark.asyncio
    async def test_swipe_counts_use_filter(self, sql_store, session):
        session.execute.return_value.one.return_value = (3, 2)

        assert await sql_store.get_swipe_counts(uuid.uuid4()) == (3, 2)
        assert "FILTER (WHERE swipes.liked IS true)" in _compiled(session)


class TestStorageFailures:
    """Unexpected database errors surface as InternalError."""

    @pytest.mark.asyncio
    async def test_operational_error_translated(self, sql_store, session):
        session.execute.side_effect = OperationalError(
            "SELECT", {}, Exception("connection lost")
        )

        with pytest.raises(InternalError) as exc_info:
            await sql_store.get_queued_ids(uuid.uuid4())

        assert exc_info.value.status_code == 500
        assert exc_info.value.context["operation"] == "get_queued_ids"

    @pytest.mark.asyncio
    async def test_commit_failure_translated(self, sql_store, session):
        session.commit.side_effect = OperationalError("COMMIT", {}, Exception("gone"))

        with pytest.raises(InternalError):
            await sql_store.commit()
