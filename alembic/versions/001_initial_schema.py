"""Initial schema — users, taste profiles, swipes, suggestion queue.

Revision ID: 001_initial
Revises:
Create Date: 2025-09-12 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String, unique=True, index=True, nullable=False),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column("age", sa.Integer, nullable=False),
        sa.Column("gender", sa.String, nullable=False),
        sa.Column(
            "orientation",
            sa.String,
            nullable=True,
            comment="Gender the user is attracted to, or 'both'",
        ),
        sa.Column("bio", sa.String(500), nullable=True),
        sa.Column("location", sa.String, nullable=True),
        sa.Column(
            "photos",
            postgresql.JSONB,
            nullable=True,
            comment="Array of photo URLs",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "is_active",
            sa.Boolean,
            server_default="true",
            nullable=False,
        ),
    )

    # ── 2. taste_profiles (1:1 with users) ──────────────────────────
    op.create_table(
        "taste_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            unique=True,
            nullable=False,
        ),
        sa.Column("genres", postgresql.JSONB, nullable=False, comment="Normalized genre tokens"),
        sa.Column("artists", postgresql.JSONB, nullable=False, comment="Normalized artist tokens"),
        sa.Column("songs", postgresql.JSONB, nullable=False, comment="Normalized song tokens"),
        sa.Column("is_empty", sa.Boolean, server_default="true", nullable=False),
        sa.Column("source", sa.String, nullable=False, comment="manual / spotify"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── 3. swipes ───────────────────────────────────────────────────
    op.create_table(
        "swipes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "swiper_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("liked", sa.Boolean, nullable=False, comment="True = like, False = pass"),
        sa.Column("is_match", sa.Boolean, server_default="false", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("swiper_id", "target_id", name="uq_swipe_pair"),
    )
    op.create_index("ix_swipes_target_liked", "swipes", ["target_id", "liked"])

    # ── 4. suggestion_queue ─────────────────────────────────────────
    op.create_table(
        "suggestion_queue",
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "suggested_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("compatibility_score", sa.Float, nullable=False),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_suggestion_queue_owner_position",
        "suggestion_queue",
        ["owner_id", "position"],
    )
    op.create_index(
        "ix_suggestion_queue_owner_score",
        "suggestion_queue",
        ["owner_id", "compatibility_score"],
    )


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_suggestion_queue_owner_score", table_name="suggestion_queue")
    op.drop_index("ix_suggestion_queue_owner_position", table_name="suggestion_queue")
    op.drop_table("suggestion_queue")

    op.drop_index("ix_swipes_target_liked", table_name="swipes")
    op.drop_table("swipes")

    op.drop_table("taste_profiles")
    op.drop_table("users")
