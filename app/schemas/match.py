from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

class SwipeCreate(BaseModel):
    from_user_id: UUID
    to_user_id: UUID
    liked: bool

class SwipeTarget(BaseModel):
    id: UUID
    display_name: str
    age: int

class SwipeResponse(BaseModel):
    swipe_id: UUID
    is_match: bool
    action: str  # like/pass
    message: str
    target_user: SwipeTarget

class SwipeStatsResponse(BaseModel):
    user_id: UUID
    total_swipes: int
    likes: int
    passes: int
    matches: int
    like_rate: float

class MatchListItem(BaseModel):
    user_id: UUID
    display_name: str
    age: int
    profile_image_url: str = ""
    matched_at: datetime

class MatchesResponse(BaseModel):
    matches: list[MatchListItem]
    count: int
    message: str
