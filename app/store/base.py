"""
Cadence — ProfileStore interface.

The matching core talks to persistence only through this interface.  Two
implementations ship with the service:

* ``SqlProfileStore`` – PostgreSQL via async SQLAlchemy (production).
* ``InMemoryProfileStore`` – dict-backed, used for local runs and tests.

Both enforce the same uniqueness rules: one swipe per ordered
``(swiper, target)`` pair and one queue entry per ``(owner, suggested)``
pair.
"""

from __future__ import annotations

import abc
import uuid
from datetime import datetime
from typing import Iterable

from app.models import QueueEntry, Swipe, TasteProfile, User


class ProfileStore(abc.ABC):
    """Abstract persistence boundary for users, taste, swipes and queues."""

    # ── Users ─────────────────────────────────────────────────────────────

    @abc.abstractmethod
    async def get_user(self, user_id: uuid.UUID) -> User | None: ...

    @abc.abstractmethod
    async def get_users(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, User]: ...

    @abc.abstractmethod
    async def create_user(self, **fields) -> User:
        """Persist a new user.  Raises ``ConflictError`` on duplicate email."""

    # ── Taste profiles ────────────────────────────────────────────────────

    @abc.abstractmethod
    async def get_taste_profile(self, user_id: uuid.UUID) -> TasteProfile | None: ...

    @abc.abstractmethod
    async def get_taste_profiles(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, TasteProfile]: ...

    @abc.abstractmethod
    async def upsert_taste_profile(
        self,
        user_id: uuid.UUID,
        genres: list[str],
        artists: list[str],
        songs: list[str],
        source: str = "manual",
    ) -> TasteProfile:
        """Insert or replace the user's taste profile.

        Token lists must already be normalized.
        """

    # ── Candidates ────────────────────────────────────────────────────────

    @abc.abstractmethod
    async def get_users_excluding(
        self,
        excluded: set[uuid.UUID],
        limit: int,
        require_nonempty: bool = True,
    ) -> list[tuple[User, TasteProfile]]:
        """Return up to ``limit`` active users with a taste profile whose id
        is not in ``excluded``."""

    @abc.abstractmethod
    async def count_candidates(
        self, excluded: set[uuid.UUID], require_nonempty: bool = True
    ) -> int: ...

    # ── Swipes ────────────────────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_swipe(
        self, swiper_id: uuid.UUID, target_id: uuid.UUID, liked: bool
    ) -> Swipe:
        """Record a swipe.  Raises ``ConflictError`` if the ordered pair exists."""

    @abc.abstractmethod
    async def find_swipe(
        self, swiper_id: uuid.UUID, target_id: uuid.UUID
    ) -> Swipe | None: ...

    @abc.abstractmethod
    async def mark_match(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        """Set ``is_match`` on both directed swipes between the pair."""

    @abc.abstractmethod
    async def get_swiped_ids(self, swiper_id: uuid.UUID) -> set[uuid.UUID]: ...

    @abc.abstractmethod
    async def get_swipe_counts(self, swiper_id: uuid.UUID) -> tuple[int, int]:
        """Return ``(total_swipes, likes)`` made by the user."""

    @abc.abstractmethod
    async def list_mutual_likes(
        self, user_id: uuid.UUID
    ) -> list[tuple[User, datetime]]:
        """Users with a like in both directions, paired with the later of the
        two swipe timestamps.  Newest first."""

    # ── Suggestion queue ──────────────────────────────────────────────────

    @abc.abstractmethod
    async def insert_queue_entries(self, entries: list[dict]) -> int:
        """Insert entries, silently skipping existing (owner, suggested)
        pairs.  Returns the number actually inserted."""

    @abc.abstractmethod
    async def delete_queue_entry(
        self, owner_id: uuid.UUID, suggested_id: uuid.UUID
    ) -> bool: ...

    @abc.abstractmethod
    async def clear_queue(self, owner_id: uuid.UUID) -> int: ...

    @abc.abstractmethod
    async def get_queue_entries(
        self, owner_id: uuid.UUID, limit: int | None = None
    ) -> list[QueueEntry]:
        """Entries ordered by score descending, then position ascending."""

    @abc.abstractmethod
    async def get_queued_ids(self, owner_id: uuid.UUID) -> set[uuid.UUID]: ...

    @abc.abstractmethod
    async def count_queue_entries(self, owner_id: uuid.UUID) -> int: ...

    @abc.abstractmethod
    async def max_queue_position(self, owner_id: uuid.UUID) -> int:
        """Highest position in the owner's queue, or 0 when empty."""

    @abc.abstractmethod
    async def update_queue_score(
        self, owner_id: uuid.UUID, suggested_id: uuid.UUID, score: float
    ) -> bool:
        """Overwrite the score of an existing entry.  Returns False when the
        entry has already been consumed."""

    # ── Transactions ──────────────────────────────────────────────────────

    @abc.abstractmethod
    async def commit(self) -> None: ...

    async def rollback(self) -> None:
        return None
