from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional, Union

class UserCreate(BaseModel):
    email: str
    display_name: str
    age: int = Field(ge=18, le=120)
    gender: str
    orientation: Optional[str] = None  # gender attracted to, or "both"
    bio: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = None
    photos: list[str] = []

class UserResponse(BaseModel):
    id: UUID
    email: str
    display_name: str
    age: int
    gender: str
    orientation: Optional[str]
    bio: Optional[str]
    location: Optional[str]
    photos: list[str] = []
    created_at: datetime
    is_active: bool

    model_config = {"from_attributes": True}

# Accepts "rock, indie" or ["rock", "indie"]
TokenField = Union[str, list[str], None]

class TasteUpdate(BaseModel):
    genres: TokenField = None
    artists: TokenField = None
    songs: TokenField = None

class TasteResponse(BaseModel):
    user_id: UUID
    genres: list[str]
    artists: list[str]
    songs: list[str]
    is_empty: bool
    source: str
    updated_at: Optional[datetime] = None

class TasteSyncRequest(BaseModel):
    access_token: str = Field(min_length=1)
