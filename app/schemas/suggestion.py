from pydantic import BaseModel, Field
from uuid import UUID
from typing import Optional

class SuggestionItem(BaseModel):
    user_id: UUID
    display_name: str
    age: int
    gender: str
    bio: Optional[str] = None
    location: Optional[str] = None
    profile_image_url: str = ""
    compatibility_score: float
    genres: list[str] = []
    artists: list[str] = []

class SuggestionsResponse(BaseModel):
    users: list[SuggestionItem]
    count: int
    message: str

class QueueStatusResponse(BaseModel):
    user_id: UUID
    current_queue_size: int
    is_queue_low: bool
    total_available: int
    can_refill: bool

class QueueResetResponse(BaseModel):
    user_id: UUID
    cleared: int
    refilled: bool
    current_queue_size: int

class ScoreRequest(BaseModel):
    target_user_ids: list[UUID] = Field(min_length=1, max_length=100)
    enqueue: bool = True

class ScoreItem(BaseModel):
    user_id: UUID
    display_name: str
    score: int
    music_score: float
    preference_score: float
    genre_similarity: float
    artist_similarity: float
    song_similarity: float

class ScoreResponse(BaseModel):
    user_id: UUID
    results: list[ScoreItem]
    enqueued: int
