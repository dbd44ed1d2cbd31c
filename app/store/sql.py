"""
Cadence — PostgreSQL-backed ProfileStore.

Uniqueness races are resolved by the database, not by read-then-write
checks:

* swipes are inserted inside a SAVEPOINT so a ``uq_swipe_pair`` violation
  surfaces as ``ConflictError`` without poisoning the outer transaction;
* queue batches use ``INSERT … ON CONFLICT DO NOTHING`` on the
  ``(owner_id, suggested_id)`` primary key;
* taste profiles use ``INSERT … ON CONFLICT DO UPDATE`` on ``user_id``.
"""

from __future__ import annotations

import functools
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, TypeVar

import structlog
from sqlalchemy import and_, delete, desc, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.database import session_scope
from app.errors import ConflictError, InternalError
from app.models import QueueEntry, Swipe, TasteProfile, User
from app.store.base import ProfileStore

logger = structlog.get_logger("cadence.store.sql")

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _storage_errors(method: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Re-raise unexpected SQLAlchemy failures as ``InternalError``.

    Integrity violations the store understands are translated inside the
    method itself (``ConflictError``) and pass through untouched.
    """

    @functools.wraps(method)
    async def wrapper(self: "SqlProfileStore", *args: Any, **kwargs: Any) -> T:
        try:
            return await method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error(
                "storage_operation_failed",
                operation=method.__name__,
                error=str(exc),
            )
            raise InternalError("Storage operation failed", operation=method.__name__) from exc

    return wrapper


class SqlProfileStore(ProfileStore):
    """``ProfileStore`` over a single ``AsyncSession``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ── Users ─────────────────────────────────────────────────────────────

    @_storage_errors
    async def get_user(self, user_id: uuid.UUID) -> User | None:
        return await self.session.get(User, user_id)

    @_storage_errors
    async def get_users(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.session.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}

    @_storage_errors
    async def create_user(self, **fields) -> User:
        user = User(created_at=_utcnow(), is_active=True, **fields)
        try:
            async with self.session.begin_nested():
                self.session.add(user)
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(
                "A user with this email already exists", email=fields.get("email")
            ) from exc
        return user

    # ── Taste profiles ────────────────────────────────────────────────────

    @_storage_errors
    async def get_taste_profile(self, user_id: uuid.UUID) -> TasteProfile | None:
        result = await self.session.execute(
            select(TasteProfile).where(TasteProfile.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @_storage_errors
    async def get_taste_profiles(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, TasteProfile]:
        ids = list(user_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(TasteProfile).where(TasteProfile.user_id.in_(ids))
        )
        return {profile.user_id: profile for profile in result.scalars().all()}

    @_storage_errors
    async def upsert_taste_profile(
        self,
        user_id: uuid.UUID,
        genres: list[str],
        artists: list[str],
        songs: list[str],
        source: str = "manual",
    ) -> TasteProfile:
        now = _utcnow()
        is_empty = not (genres or artists or songs)

        stmt = pg_insert(TasteProfile).values(
            id=uuid.uuid4(),
            user_id=user_id,
            genres=genres,
            artists=artists,
            songs=songs,
            is_empty=is_empty,
            source=source,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[TasteProfile.user_id],
            set_={
                "genres": stmt.excluded.genres,
                "artists": stmt.excluded.artists,
                "songs": stmt.excluded.songs,
                "is_empty": stmt.excluded.is_empty,
                "source": stmt.excluded.source,
                "updated_at": now,
            },
        ).returning(TasteProfile)

        result = await self.session.scalars(
            stmt, execution_options={"populate_existing": True}
        )
        return result.one()

    # ── Candidates ────────────────────────────────────────────────────────

    def _candidate_filters(self, excluded: set[uuid.UUID], require_nonempty: bool) -> list:
        filters = [User.is_active.is_(True)]
        if excluded:
            filters.append(User.id.not_in(list(excluded)))
        if require_nonempty:
            filters.append(TasteProfile.is_empty.is_(False))
        return filters

    @_storage_errors
    async def get_users_excluding(
        self,
        excluded: set[uuid.UUID],
        limit: int,
        require_nonempty: bool = True,
    ) -> list[tuple[User, TasteProfile]]:
        stmt = (
            select(User, TasteProfile)
            .join(TasteProfile, TasteProfile.user_id == User.id)
            .where(*self._candidate_filters(excluded, require_nonempty))
            .order_by(User.created_at, User.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [(user, profile) for user, profile in result.all()]

    @_storage_errors
    async def count_candidates(
        self, excluded: set[uuid.UUID], require_nonempty: bool = True
    ) -> int:
        stmt = (
            select(func.count(User.id))
            .join(TasteProfile, TasteProfile.user_id == User.id)
            .where(*self._candidate_filters(excluded, require_nonempty))
        )
        return int((await self.session.execute(stmt)).scalar_one())

    # ── Swipes ────────────────────────────────────────────────────────────

    @_storage_errors
    async def insert_swipe(
        self, swiper_id: uuid.UUID, target_id: uuid.UUID, liked: bool
    ) -> Swipe:
        swipe = Swipe(
            id=uuid.uuid4(),
            swiper_id=swiper_id,
            target_id=target_id,
            liked=liked,
            is_match=False,
            created_at=_utcnow(),
        )
        try:
            async with self.session.begin_nested():
                self.session.add(swipe)
                await self.session.flush()
        except IntegrityError as exc:
            logger.info(
                "swipe_conflict",
                swiper_id=str(swiper_id),
                target_id=str(target_id),
            )
            raise ConflictError(
                "User has already swiped on this target",
                swiper_id=swiper_id,
                target_id=target_id,
            ) from exc
        return swipe

    @_storage_errors
    async def find_swipe(
        self, swiper_id: uuid.UUID, target_id: uuid.UUID
    ) -> Swipe | None:
        result = await self.session.execute(
            select(Swipe).where(
                Swipe.swiper_id == swiper_id, Swipe.target_id == target_id
            )
        )
        return result.scalar_one_or_none()

    @_storage_errors
    async def mark_match(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        await self.session.execute(
            update(Swipe)
            .where(
                or_(
                    and_(Swipe.swiper_id == user_a, Swipe.target_id == user_b),
                    and_(Swipe.swiper_id == user_b, Swipe.target_id == user_a),
                )
            )
            .values(is_match=True)
            .execution_options(synchronize_session="fetch")
        )

    @_storage_errors
    async def get_swiped_ids(self, swiper_id: uuid.UUID) -> set[uuid.UUID]:
        result = await self.session.execute(
            select(Swipe.target_id).where(Swipe.swiper_id == swiper_id)
        )
        return set(result.scalars().all())

    @_storage_errors
    async def get_swipe_counts(self, swiper_id: uuid.UUID) -> tuple[int, int]:
        stmt = select(
            func.count(Swipe.id),
            func.count(Swipe.id).filter(Swipe.liked.is_(True)),
        ).where(Swipe.swiper_id == swiper_id)
        total, likes = (await self.session.execute(stmt)).one()
        return int(total or 0), int(likes or 0)

    @_storage_errors
    async def list_mutual_likes(
        self, user_id: uuid.UUID
    ) -> list[tuple[User, datetime]]:
        outgoing = aliased(Swipe)
        incoming = aliased(Swipe)
        matched_at = func.greatest(outgoing.created_at, incoming.created_at)

        stmt = (
            select(User, matched_at.label("matched_at"))
            .select_from(outgoing)
            .join(
                incoming,
                and_(
                    incoming.swiper_id == outgoing.target_id,
                    incoming.target_id == outgoing.swiper_id,
                    incoming.liked.is_(True),
                ),
            )
            .join(User, User.id == outgoing.target_id)
            .where(outgoing.swiper_id == user_id, outgoing.liked.is_(True))
            .order_by(desc("matched_at"))
        )
        result = await self.session.execute(stmt)
        return [(user, when) for user, when in result.all()]

    # ── Suggestion queue ──────────────────────────────────────────────────

    @_storage_errors
    async def insert_queue_entries(self, entries: list[dict]) -> int:
        if not entries:
            return 0

        now = _utcnow()
        rows = [{"created_at": now, **entry} for entry in entries]
        stmt = (
            pg_insert(QueueEntry)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["owner_id", "suggested_id"])
            .returning(QueueEntry.suggested_id)
        )
        result = await self.session.execute(stmt)
        inserted = len(result.all())

        if inserted < len(rows):
            logger.info(
                "queue_insert_conflicts_skipped",
                requested=len(rows),
                inserted=inserted,
            )
        return inserted

    @_storage_errors
    async def delete_queue_entry(
        self, owner_id: uuid.UUID, suggested_id: uuid.UUID
    ) -> bool:
        result = await self.session.execute(
            delete(QueueEntry).where(
                QueueEntry.owner_id == owner_id,
                QueueEntry.suggested_id == suggested_id,
            )
        )
        return (result.rowcount or 0) > 0

    @_storage_errors
    async def clear_queue(self, owner_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(QueueEntry).where(QueueEntry.owner_id == owner_id)
        )
        return int(result.rowcount or 0)

    @_storage_errors
    async def get_queue_entries(
        self, owner_id: uuid.UUID, limit: int | None = None
    ) -> list[QueueEntry]:
        stmt = (
            select(QueueEntry)
            .where(QueueEntry.owner_id == owner_id)
            .order_by(desc(QueueEntry.compatibility_score), QueueEntry.position)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    @_storage_errors
    async def get_queued_ids(self, owner_id: uuid.UUID) -> set[uuid.UUID]:
        result = await self.session.execute(
            select(QueueEntry.suggested_id).where(QueueEntry.owner_id == owner_id)
        )
        return set(result.scalars().all())

    @_storage_errors
    async def count_queue_entries(self, owner_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(QueueEntry).where(
                QueueEntry.owner_id == owner_id
            )
        )
        return int(result.scalar_one())

    @_storage_errors
    async def max_queue_position(self, owner_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(QueueEntry.position), 0)).where(
                QueueEntry.owner_id == owner_id
            )
        )
        return int(result.scalar_one())

    @_storage_errors
    async def update_queue_score(
        self, owner_id: uuid.UUID, suggested_id: uuid.UUID, score: float
    ) -> bool:
        result = await self.session.execute(
            update(QueueEntry)
            .where(
                QueueEntry.owner_id == owner_id,
                QueueEntry.suggested_id == suggested_id,
            )
            .values(compatibility_score=score)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0

    # ── Transactions ──────────────────────────────────────────────────────

    @_storage_errors
    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


@asynccontextmanager
async def sql_store_scope() -> AsyncIterator[SqlProfileStore]:
    """Open a session-scoped ``SqlProfileStore``; commits on clean exit."""
    async with session_scope() as session:
        yield SqlProfileStore(session)
