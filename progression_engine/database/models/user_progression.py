"""
User Progression Model
======================

One row per user holding XP counters, the day streak, streak freezes, the
daily goal and activity counters.

Schema-only representation; rules live in
``domain.models.progression.Progression``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, Date, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from progression_engine.core.database.base import (
    Base,
    IdMixin,
    TimestampMixin,
    UTCDateTime,
)
from progression_engine.modules.shared.constants import (
    DEFAULT_DAILY_GOAL,
    DEFAULT_PROFICIENCY,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UserProgression(Base, IdMixin, TimestampMixin):
    """
    Persisted progression state.

    ``version`` is managed by the mapper: every UPDATE checks and bumps it,
    so a concurrent writer that read an older version fails with a stale
    data error instead of overwriting.
    """

    __tablename__ = "user_progression"
    __table_args__ = (
        Index("ix_user_progression_language_weekly", "target_language", "weekly_xp"),
        Index("ix_user_progression_language_total", "target_language", "total_xp"),
        Index("ix_user_progression_last_activity", "last_activity_date"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, unique=True, doc="Owning user"
    )

    version: Mapped[int] = mapped_column(
        nullable=False, doc="Optimistic locking version for concurrent updates"
    )

    # ========================================================================
    # XP
    # ========================================================================

    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    weekly_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    daily_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_xp_earned_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    # ========================================================================
    # STREAKS
    # ========================================================================

    current_streak: Mapped[int] = mapped_column(nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(nullable=False, default=0)
    last_activity_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, doc="User-local date of the last activity"
    )
    streak_freezes: Mapped[int] = mapped_column(nullable=False, default=0)
    streak_freeze_used_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # ========================================================================
    # GOALS & PROFILE
    # ========================================================================

    daily_goal: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DEFAULT_DAILY_GOAL
    )
    days_completed_this_week: Mapped[int] = mapped_column(nullable=False, default=0)
    daily_goal_completed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    proficiency_level: Mapped[str] = mapped_column(
        String(2), nullable=False, default=DEFAULT_PROFICIENCY
    )
    target_language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    # ========================================================================
    # ACTIVITY COUNTERS
    # ========================================================================

    stats: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    __mapper_args__ = {"version_id_col": version}
