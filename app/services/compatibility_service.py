"""
Cadence — Music-taste compatibility scoring.

Score for a pair (A, B):

  music      = 100 × (w_genre × J(genres) + w_artist × J(artists) + w_song × J(songs))
  preference = 100 if A is attracted to B's gender and B to A's, else 0
  score      = round_half_up(w_music × music + w_pref × preference)

J is Jaccard similarity over normalized token sets.  Two empty sets are
defined as identical (1.0); an empty set against a non-empty one scores 0.0.
Default weights: genre=0.3, artist=0.4, song=0.3, music=0.8, preference=0.2.

The service is pure and deterministic: no I/O, no shared state, safe to
call from any number of concurrent requests.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

import structlog

from app.config import Settings, get_settings
from app.errors import InvalidArgumentError
from app.utils.normalization import normalize_token

logger = structlog.get_logger("cadence.compatibility_service")

_WEIGHT_TOLERANCE = 1e-6


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B| with the empty-set convention described above."""
    set_a = {normalize_token(t) for t in a}
    set_b = {normalize_token(t) for t in b}
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class TasteSet:
    """Immutable view of a taste profile's three token sets."""

    genres: frozenset[str] = frozenset()
    artists: frozenset[str] = frozenset()
    songs: frozenset[str] = frozenset()

    @classmethod
    def from_profile(cls, profile: Any | None) -> "TasteSet":
        if profile is None:
            return cls()
        return cls(
            genres=frozenset(profile.genres or ()),
            artists=frozenset(profile.artists or ()),
            songs=frozenset(profile.songs or ()),
        )

    @property
    def is_empty(self) -> bool:
        return not (self.genres or self.artists or self.songs)


class CompatibilityService:
    """Computes the weighted music + preference compatibility score."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Load and validate scoring weights.

        Parameters
        ----------
        settings:
            Optional settings object; defaults to ``get_settings()``.

        Raises
        ------
        InvalidArgumentError
            If either weight group does not sum to 1.
        """
        settings = settings or get_settings()
        self.w_genre: float = settings.GENRE_WEIGHT
        self.w_artist: float = settings.ARTIST_WEIGHT
        self.w_song: float = settings.SONG_WEIGHT
        self.w_music: float = settings.MUSIC_WEIGHT
        self.w_pref: float = settings.PREFERENCE_WEIGHT
        self.wildcard: str = settings.WILDCARD_ORIENTATION.strip().lower()

        music_total = self.w_genre + self.w_artist + self.w_song
        combined_total = self.w_music + self.w_pref
        if abs(music_total - 1.0) > _WEIGHT_TOLERANCE:
            raise InvalidArgumentError(
                "Genre, artist and song weights must sum to 1",
                total=music_total,
            )
        if abs(combined_total - 1.0) > _WEIGHT_TOLERANCE:
            raise InvalidArgumentError(
                "Music and preference weights must sum to 1",
                total=combined_total,
            )

        logger.debug(
            "compatibility_service_initialised",
            w_genre=self.w_genre,
            w_artist=self.w_artist,
            w_song=self.w_song,
            w_music=self.w_music,
            w_pref=self.w_pref,
        )

    # ── Components ────────────────────────────────────────────────────────

    def music_score(self, a: TasteSet, b: TasteSet) -> dict:
        genre_sim = jaccard_similarity(a.genres, b.genres)
        artist_sim = jaccard_similarity(a.artists, b.artists)
        song_sim = jaccard_similarity(a.songs, b.songs)

        music = 100.0 * (
            self.w_genre * genre_sim
            + self.w_artist * artist_sim
            + self.w_song * song_sim
        )
        return {
            "genre_similarity": genre_sim,
            "artist_similarity": artist_sim,
            "song_similarity": song_sim,
            "music_score": music,
        }

    def is_attracted_to(self, orientation: str | None, gender: str | None) -> bool:
        """True when ``orientation`` targets ``gender`` or is the wildcard.

        A missing orientation is treated as the wildcard.
        """
        if orientation is None or not orientation.strip():
            return True
        wanted = orientation.strip().lower()
        if wanted == self.wildcard:
            return True
        return gender is not None and wanted == gender.strip().lower()

    def preference_score(self, user_a: Any, user_b: Any) -> float:
        mutual = self.is_attracted_to(
            user_a.orientation, user_b.gender
        ) and self.is_attracted_to(user_b.orientation, user_a.gender)
        return 100.0 if mutual else 0.0

    # ── Public API ────────────────────────────────────────────────────────

    def calculate_compatibility(
        self,
        profile_a: Any | None,
        profile_b: Any | None,
        user_a: Any,
        user_b: Any,
    ) -> dict:
        """Score a pair and return the full breakdown.

        Parameters
        ----------
        profile_a, profile_b:
            Taste profiles (anything exposing ``genres``/``artists``/``songs``)
            or ``None``, which is treated as an empty profile.
        user_a, user_b:
            Objects exposing ``gender`` and ``orientation``.

        Returns
        -------
        dict
            ``score`` (int, 0-100) plus ``music_score``, ``preference_score``
            and the three per-component similarities.  Symmetric in (A, B).
        """
        music = self.music_score(
            TasteSet.from_profile(profile_a), TasteSet.from_profile(profile_b)
        )
        preference = self.preference_score(user_a, user_b)
        combined = self.w_music * music["music_score"] + self.w_pref * preference

        return {
            "score": round_half_up(combined),
            "music_score": round(music["music_score"], 2),
            "preference_score": preference,
            "genre_similarity": round(music["genre_similarity"], 4),
            "artist_similarity": round(music["artist_similarity"], 4),
            "song_similarity": round(music["song_similarity"], 4),
        }

    def score(
        self,
        profile_a: Any | None,
        profile_b: Any | None,
        user_a: Any,
        user_b: Any,
    ) -> int:
        return self.calculate_compatibility(profile_a, profile_b, user_a, user_b)["score"]
