"""Shared pytest fixtures for Cadence tests."""
import os

# Must be set before ``app.config.get_settings`` is first called.
os.environ["STORE_BACKEND"] = "memory"
os.environ["REDIS_URL"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest

from app.config import Settings
from app.services.compatibility_service import CompatibilityService
from app.services.queue_service import SuggestionQueueService
from app.services.swipe_service import SwipeService
from app.store.memory import InMemoryProfileStore
from app.utils.normalization import normalize_tokens


@pytest.fixture
def settings():
    """Real validated settings with no rate-limit delay."""
    return Settings(
        _env_file=None,
        STORE_BACKEND="memory",
        REDIS_URL="",
        GEMINI_API_KEY="",
        RESCORE_DELAY_SECONDS=0.0,
        RESCORE_TIMEOUT_SECONDS=0.5,
    )


@pytest.fixture
def store():
    return InMemoryProfileStore()


@pytest.fixture
def scorer(settings):
    return CompatibilityService(settings)


@pytest.fixture
def queue_service(store, scorer, settings):
    return SuggestionQueueService(store, scorer, settings=settings)


@pytest.fixture
def swipe_service(store, queue_service, settings):
    return SwipeService(store, queue_service, settings=settings)


@pytest.fixture
def make_user(store):
    """Factory creating a user (and, by default, a taste profile) in ``store``."""
    counter = {"n": 0}

    async def _make(
        name=None,
        gender="female",
        orientation="both",
        genres=("pop", "rock"),
        artists=("x", "y"),
        songs=(),
        with_profile=True,
        **extra,
    ):
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        user = await store.create_user(
            email=f"{name.lower()}@example.com",
            display_name=name,
            age=extra.pop("age", 25),
            gender=gender,
            orientation=orientation,
            **extra,
        )
        if with_profile:
            await store.upsert_taste_profile(
                user.id,
                genres=normalize_tokens(genres),
                artists=normalize_tokens(artists),
                songs=normalize_tokens(songs),
            )
        return user

    return _make
