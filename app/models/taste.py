"""
Cadence — TasteProfile model (normalized genres / artists / songs).

Token lists are stored already normalized (lowercase, trimmed, de-duplicated,
sorted) so the scorer never re-parses delimited strings.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class TasteProfile(Base):
    __tablename__ = "taste_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    genres: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list, comment="Normalized genre tokens"
    )
    artists: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list, comment="Normalized artist tokens"
    )
    songs: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list, comment="Normalized song tokens"
    )
    is_empty: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default="true"
    )
    source: Mapped[str] = mapped_column(
        String, nullable=False, default="manual", comment="manual / spotify"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    user: Mapped["User"] = relationship("User", back_populates="taste_profile")

    def __repr__(self) -> str:
        return (
            f"<TasteProfile user={self.user_id} genres={len(self.genres or [])} "
            f"artists={len(self.artists or [])} songs={len(self.songs or [])}>"
        )
