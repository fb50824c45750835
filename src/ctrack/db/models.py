"""ORM models for users, challenges and participations.

Column types stay portable (JSON falls back from JSONB, booleans via true())
so the same metadata builds on PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ctrack.db.base import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Local mirror of an identity issued by the hosted auth provider."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    auth_subject: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, server_default=func.now()
    )


class UserStats(Base):
    """Denormalized profile counters, one row per user."""

    __tablename__ = "user_stats"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    challenges_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """A public or private habit challenge created by a user."""

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint("duration_days > 0", name="challenges_duration_positive"),
        CheckConstraint("points_reward >= 0", name="challenges_points_non_negative"),
        CheckConstraint(
            "difficulty IN ('easy', 'medium', 'hard', 'extreme')",
            name="challenges_difficulty_check",
        ),
        Index("idx_challenges_public_created", "is_public", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default="100")
    tags: Mapped[list[str]] = mapped_column(_JSON, nullable=False, default=list)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_by: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Participation
# ---------------------------------------------------------------------------


class Participation(Base):
    """One user's engagement with one challenge."""

    __tablename__ = "challenge_participants"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="challenge_participants_challenge_user_key"),
        CheckConstraint(
            "status IN ('active', 'completed', 'abandoned')",
            name="challenge_participants_status_check",
        ),
        CheckConstraint("progress >= 0 AND progress <= 100", name="challenge_participants_progress_range"),
        CheckConstraint("check_in_streak >= 0", name="challenge_participants_streak_non_negative"),
        Index("idx_challenge_participants_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_check_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_check_in_day: Mapped[date | None] = mapped_column(Date, nullable=True)
    check_in_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    check_in_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CheckInNote(Base):
    """Append-only note attached to an accepted check-in."""

    __tablename__ = "check_in_notes"
    __table_args__ = (Index("idx_check_in_notes_participation", "participation_id", "id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("challenge_participants.id", ondelete="CASCADE"), nullable=False
    )
    noted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False)
