"""
Cadence — Swipe and suggestion-queue models.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Swipe(Base):
    __tablename__ = "swipes"
    __table_args__ = (
        UniqueConstraint("swiper_id", "target_id", name="uq_swipe_pair"),
        Index("ix_swipes_target_liked", "target_id", "liked"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    swiper_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    liked: Mapped[bool] = mapped_column(
        Boolean, nullable=False, comment="True = like, False = pass"
    )
    is_match: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default="false"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    swiper: Mapped["User"] = relationship("User", foreign_keys=[swiper_id])
    target: Mapped["User"] = relationship("User", foreign_keys=[target_id])

    def __repr__(self) -> str:
        action = "like" if self.liked else "pass"
        return f"<Swipe {self.swiper_id} -> {self.target_id} {action} match={self.is_match}>"


class QueueEntry(Base):
    __tablename__ = "suggestion_queue"
    __table_args__ = (
        Index("ix_suggestion_queue_owner_position", "owner_id", "position"),
        Index("ix_suggestion_queue_owner_score", "owner_id", "compatibility_score"),
    )

    # (owner_id, suggested_id) is the uniqueness constraint refills rely on.
    owner_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    suggested_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    compatibility_score: Mapped[float] = mapped_column(Float, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    owner: Mapped["User"] = relationship("User", foreign_keys=[owner_id])
    suggested: Mapped["User"] = relationship("User", foreign_keys=[suggested_id])

    def __repr__(self) -> str:
        return (
            f"<QueueEntry {self.owner_id} -> {self.suggested_id} "
            f"score={self.compatibility_score:.1f} pos={self.position}>"
        )
