"""Challenge tracking schema: users, profile counters, challenges,
participations and check-in notes.

Uses portable column types so the same revision runs on PostgreSQL and SQLite.

Revision ID: 001_challenge_tables
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from alembic import op

revision: str = "001_challenge_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("auth_subject", sa.String(64), nullable=False, unique=True),
        sa.Column("username", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(64), nullable=True),
        sa.Column("avatar_url", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
    )

    # --- Profile counters ---
    op.create_table(
        "user_stats",
        sa.Column(
            "user_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("challenges_completed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_points", sa.Integer, nullable=False, server_default="0"),
        sa.Column("current_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    # --- Challenges ---
    op.create_table(
        "challenges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("difficulty", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("duration_days", sa.Integer, nullable=False),
        sa.Column("points_reward", sa.Integer, nullable=False, server_default="100"),
        sa.Column("tags", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("participant_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("duration_days > 0", name="challenges_duration_positive"),
        sa.CheckConstraint("points_reward >= 0", name="challenges_points_non_negative"),
        sa.CheckConstraint(
            "difficulty IN ('easy', 'medium', 'hard', 'extreme')",
            name="challenges_difficulty_check",
        ),
    )
    op.create_index("idx_challenges_public_created", "challenges", ["is_public", "created_at"])

    # --- Participations ---
    op.create_table(
        "challenge_participants",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "challenge_id",
            sa.Integer,
            sa.ForeignKey("challenges.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("progress", sa.Float, nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_check_in_day", sa.Date, nullable=True),
        sa.Column("check_in_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("check_in_streak", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("challenge_id", "user_id", name="challenge_participants_challenge_user_key"),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'abandoned')",
            name="challenge_participants_status_check",
        ),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="challenge_participants_progress_range"),
        sa.CheckConstraint("check_in_streak >= 0", name="challenge_participants_streak_non_negative"),
    )
    op.create_index("idx_challenge_participants_user", "challenge_participants", ["user_id"])

    # --- Check-in notes ---
    op.create_table(
        "check_in_notes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "participation_id",
            sa.Integer,
            sa.ForeignKey("challenge_participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("noted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.Text, nullable=False),
    )
    op.create_index("idx_check_in_notes_participation", "check_in_notes", ["participation_id", "id"])


def downgrade() -> None:
    op.drop_index("idx_check_in_notes_participation", table_name="check_in_notes")
    op.drop_table("check_in_notes")
    op.drop_index("idx_challenge_participants_user", table_name="challenge_participants")
    op.drop_table("challenge_participants")
    op.drop_index("idx_challenges_public_created", table_name="challenges")
    op.drop_table("challenges")
    op.drop_table("user_stats")
    op.drop_table("users")
