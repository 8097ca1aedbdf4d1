"""
Activity Record Model
=====================

Append-only ledger of XP awards and the activity behind them. Feeds the
daily/weekly summaries and partner statistics, and makes keyed awards
idempotent.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Date, Float, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from progression_engine.core.database.base import Base, IdMixin, UTCDateTime
from progression_engine.modules.shared.constants import (
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_REASON_LENGTH,
)


class ActivityRecord(Base, IdMixin):
    """One recorded activity; never updated after insert."""

    __tablename__ = "activity_log"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_activity_log_user_key"),
        Index("ix_activity_log_user_day", "user_id", "activity_date"),
        Index("ix_activity_log_user_partner", "user_id", "partner_id"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[str] = mapped_column(
        String(MAX_REASON_LENGTH), nullable=False, default=""
    )

    base_xp: Mapped[int] = mapped_column(nullable=False, default=0)
    xp_awarded: Mapped[int] = mapped_column(nullable=False, default=0)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    total_xp_after: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level_before: Mapped[int] = mapped_column(nullable=False, default=1)
    level_after: Mapped[int] = mapped_column(nullable=False, default=1)

    partner_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    is_target_language: Mapped[bool] = mapped_column(nullable=False, default=False)
    word_count: Mapped[int] = mapped_column(nullable=False, default=0)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    activity_date: Mapped[date] = mapped_column(
        Date, nullable=False, doc="User-local calendar day"
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(MAX_IDEMPOTENCY_KEY_LENGTH), nullable=True
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "activity_type": self.activity_type,
            "reason": self.reason,
            "base_xp": self.base_xp,
            "xp_awarded": self.xp_awarded,
            "multiplier": self.multiplier,
            "partner_id": self.partner_id,
            "is_target_language": self.is_target_language,
            "word_count": self.word_count,
            "occurred_at": self.occurred_at.isoformat(),
            "activity_date": self.activity_date.isoformat(),
        }
