"""
Cadence — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Cadence matching service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Storage backend
    # ------------------------------------------------------------------ #
    STORE_BACKEND: str = "postgres"  # postgres / memory

    # ------------------------------------------------------------------ #
    # Database – Cloud SQL via Unix socket or private IP
    # ------------------------------------------------------------------ #
    DATABASE_URL: str = ""
    DB_USER: str = "cadence_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "cadence"
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = True

    # ------------------------------------------------------------------ #
    # Redis – optional, used for refill locks and health checks
    # ------------------------------------------------------------------ #
    REDIS_URL: str = ""
    REFILL_LOCK_TTL_SECONDS: int = 30

    # ------------------------------------------------------------------ #
    # Gemini LLM (external rescorer)
    # ------------------------------------------------------------------ #
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL_PRIMARY: str = "gemini-2.5-flash"
    GEMINI_MODEL_FALLBACK: str = "gemini-2.5-flash-lite"

    # ------------------------------------------------------------------ #
    # Compatibility scoring weights
    # ------------------------------------------------------------------ #
    GENRE_WEIGHT: float = 0.3
    ARTIST_WEIGHT: float = 0.4
    SONG_WEIGHT: float = 0.3
    MUSIC_WEIGHT: float = 0.8
    PREFERENCE_WEIGHT: float = 0.2
    WILDCARD_ORIENTATION: str = "both"

    # ------------------------------------------------------------------ #
    # Suggestion queue policy
    # ------------------------------------------------------------------ #
    SUGGESTION_DEFAULT_COUNT: int = 10
    SUGGESTION_MAX_COUNT: int = 50
    MIN_QUEUE_SIZE: int = 3
    LOW_WATER_MULTIPLIER: int = 2
    REFILL_BATCH_SIZE: int = 10
    REFILL_SCAN_LIMIT: int = 50
    REQUIRE_NONEMPTY_TASTE: bool = True

    # ------------------------------------------------------------------ #
    # Asynchronous rescoring
    # ------------------------------------------------------------------ #
    RESCORING_ENABLED: bool = True
    RESCORE_TOP_K: int = 10
    RESCORE_MIN_SCORE: float = 60.0
    RESCORE_DELAY_SECONDS: float = 0.5
    RESCORE_TIMEOUT_SECONDS: float = 5.0

    # ------------------------------------------------------------------ #
    # Background task pool
    # ------------------------------------------------------------------ #
    BACKGROUND_MAX_CONCURRENCY: int = 4
    BACKGROUND_SHUTDOWN_TIMEOUT: float = 10.0

    # ------------------------------------------------------------------ #
    # Spotify taste sync
    # ------------------------------------------------------------------ #
    SPOTIFY_TOP_LIMIT: int = 10
    SPOTIFY_TIME_RANGE: str = "short_term"
    SPOTIFY_REQUEST_TIMEOUT: float = 5.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def uses_memory_store(self) -> bool:
        return self.STORE_BACKEND == "memory"

    @field_validator(
        "GENRE_WEIGHT",
        "ARTIST_WEIGHT",
        "SONG_WEIGHT",
        "MUSIC_WEIGHT",
        "PREFERENCE_WEIGHT",
    )
    @classmethod
    def _weight_must_be_between_0_and_1(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Weight must be between 0 and 1, got {v}")
        return v

    @field_validator("STORE_BACKEND")
    @classmethod
    def _known_store_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("postgres", "memory"):
            raise ValueError(f"STORE_BACKEND must be 'postgres' or 'memory', got {v!r}")
        return v

    @model_validator(mode="after")
    def _weight_groups_sum_to_one(self) -> "Settings":
        music = self.GENRE_WEIGHT + self.ARTIST_WEIGHT + self.SONG_WEIGHT
        combined = self.MUSIC_WEIGHT + self.PREFERENCE_WEIGHT
        if abs(music - 1.0) > 1e-6:
            raise ValueError(f"Genre/artist/song weights must sum to 1, got {music}")
        if abs(combined - 1.0) > 1e-6:
            raise ValueError(f"Music/preference weights must sum to 1, got {combined}")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()
