"""
Cadence — In-memory ProfileStore.

Holds transient ORM instances in dicts.  Every mutating method runs
without an ``await`` between its check and its write, so on a single
event loop each call is atomic and the uniqueness rules match the
PostgreSQL store.  There is no rollback: writes are visible immediately.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable

from app.errors import ConflictError
from app.models import QueueEntry, Swipe, TasteProfile, User
from app.store.base import ProfileStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryProfileStore(ProfileStore):
    def __init__(self) -> None:
        self.users: dict[uuid.UUID, User] = {}
        self.taste_profiles: dict[uuid.UUID, TasteProfile] = {}
        self.swipes: dict[tuple[uuid.UUID, uuid.UUID], Swipe] = {}
        self.queue: dict[tuple[uuid.UUID, uuid.UUID], QueueEntry] = {}
        self.commits = 0

    # ── Users ─────────────────────────────────────────────────────────────

    async def get_user(self, user_id: uuid.UUID) -> User | None:
        return self.users.get(user_id)

    async def get_users(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, User]:
        return {uid: self.users[uid] for uid in user_ids if uid in self.users}

    async def create_user(self, **fields) -> User:
        email = fields.get("email")
        if any(u.email == email for u in self.users.values()):
            raise ConflictError("A user with this email already exists", email=email)

        fields.setdefault("id", uuid.uuid4())
        fields.setdefault("is_active", True)
        fields.setdefault("photos", [])
        user = User(created_at=_utcnow(), **fields)
        self.users[user.id] = user
        return user

    # ── Taste profiles ────────────────────────────────────────────────────

    async def get_taste_profile(self, user_id: uuid.UUID) -> TasteProfile | None:
        return self.taste_profiles.get(user_id)

    async def get_taste_profiles(
        self, user_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, TasteProfile]:
        return {
            uid: self.taste_profiles[uid]
            for uid in user_ids
            if uid in self.taste_profiles
        }

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
        profile = self.taste_profiles.get(user_id)

        if profile is None:
            profile = TasteProfile(
                id=uuid.uuid4(),
                user_id=user_id,
                created_at=now,
            )
            self.taste_profiles[user_id] = profile
        else:
            profile.updated_at = now

        profile.genres = list(genres)
        profile.artists = list(artists)
        profile.songs = list(songs)
        profile.is_empty = is_empty
        profile.source = source
        return profile

    # ── Candidates ────────────────────────────────────────────────────────

    def _eligible(
        self, excluded: set[uuid.UUID], require_nonempty: bool
    ) -> Iterable[tuple[User, TasteProfile]]:
        for user_id, user in self.users.items():
            if user_id in excluded or not user.is_active:
                continue
            profile = self.taste_profiles.get(user_id)
            if profile is None or (require_nonempty and profile.is_empty):
                continue
            yield user, profile

    async def get_users_excluding(
        self,
        excluded: set[uuid.UUID],
        limit: int,
        require_nonempty: bool = True,
    ) -> list[tuple[User, TasteProfile]]:
        found: list[tuple[User, TasteProfile]] = []
        for pair in self._eligible(excluded, require_nonempty):
            if len(found) >= limit:
                break
            found.append(pair)
        return found

    async def count_candidates(
        self, excluded: set[uuid.UUID], require_nonempty: bool = True
    ) -> int:
        return sum(1 for _ in self._eligible(excluded, require_nonempty))

    # ── Swipes ────────────────────────────────────────────────────────────

    async def insert_swipe(
        self, swiper_id: uuid.UUID, target_id: uuid.UUID, liked: bool
    ) -> Swipe:
        key = (swiper_id, target_id)
        if key in self.swipes:
            raise ConflictError(
                "User has already swiped on this target",
                swiper_id=swiper_id,
                target_id=target_id,
            )
        swipe = Swipe(
            id=uuid.uuid4(),
            swiper_id=swiper_id,
            target_id=target_id,
            liked=liked,
            is_match=False,
            created_at=_utcnow(),
        )
        self.swipes[key] = swipe
        return swipe

    async def find_swipe(
        self, swiper_id: uuid.UUID, target_id: uuid.UUID
    ) -> Swipe | None:
        return self.swipes.get((swiper_id, target_id))

    async def mark_match(self, user_a: uuid.UUID, user_b: uuid.UUID) -> None:
        for key in ((user_a, user_b), (user_b, user_a)):
            swipe = self.swipes.get(key)
            if swipe is not None:
                swipe.is_match = True

    async def get_swiped_ids(self, swiper_id: uuid.UUID) -> set[uuid.UUID]:
        return {target for swiper, target in self.swipes if swiper == swiper_id}

    async def get_swipe_counts(self, swiper_id: uuid.UUID) -> tuple[int, int]:
        mine = [s for (swiper, _), s in self.swipes.items() if swiper == swiper_id]
        return len(mine), sum(1 for s in mine if s.liked)

    async def list_mutual_likes(
        self, user_id: uuid.UUID
    ) -> list[tuple[User, datetime]]:
        matches: list[tuple[User, datetime]] = []
        for (swiper, target), outgoing in self.swipes.items():
            if swiper != user_id or not outgoing.liked:
                continue
            incoming = self.swipes.get((target, user_id))
            if incoming is None or not incoming.liked or target not in self.users:
                continue
            matches.append(
                (self.users[target], max(outgoing.created_at, incoming.created_at))
            )
        matches.sort(key=lambda pair: pair[1], reverse=True)
        return matches

    # ── Suggestion queue ──────────────────────────────────────────────────

    async def insert_queue_entries(self, entries: list[dict]) -> int:
        inserted = 0
        now = _utcnow()
        for entry in entries:
            key = (entry["owner_id"], entry["suggested_id"])
            if key in self.queue:
                continue
            self.queue[key] = QueueEntry(created_at=now, **entry)
            inserted += 1
        return inserted

    async def delete_queue_entry(
        self, owner_id: uuid.UUID, suggested_id: uuid.UUID
    ) -> bool:
        return self.queue.pop((owner_id, suggested_id), None) is not None

    async def clear_queue(self, owner_id: uuid.UUID) -> int:
        keys = [key for key in self.queue if key[0] == owner_id]
        for key in keys:
            del self.queue[key]
        return len(keys)

    async def get_queue_entries(
        self, owner_id: uuid.UUID, limit: int | None = None
    ) -> list[QueueEntry]:
        entries = sorted(
            (e for (owner, _), e in self.queue.items() if owner == owner_id),
            key=lambda e: (-e.compatibility_score, e.position),
        )
        return entries if limit is None else entries[:limit]

    async def get_queued_ids(self, owner_id: uuid.UUID) -> set[uuid.UUID]:
        return {suggested for owner, suggested in self.queue if owner == owner_id}

    async def count_queue_entries(self, owner_id: uuid.UUID) -> int:
        return sum(1 for owner, _ in self.queue if owner == owner_id)

    async def max_queue_position(self, owner_id: uuid.UUID) -> int:
        positions = [e.position for (owner, _), e in self.queue.items() if owner == owner_id]
        return max(positions, default=0)

    async def update_queue_score(
        self, owner_id: uuid.UUID, suggested_id: uuid.UUID, score: float
    ) -> bool:
        entry = self.queue.get((owner_id, suggested_id))
        if entry is None:
            return False
        entry.compatibility_score = score
        return True

    # ── Transactions ──────────────────────────────────────────────────────

    async def commit(self) -> None:
        self.commits += 1
