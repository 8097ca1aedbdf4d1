"""
Vocabulary Item Model
=====================

A word saved by one user, with its spaced-repetition state.

Schema-only representation of:
- Word identity (word, translation, languages)
- Descriptive fields (part of speech, notes, tags, examples)
- SRS scheduling state (level, ease factor, interval, next review)
- Review counters and the bounded review history
- Mastery and soft-delete flags

All review rules live in ``domain.models.vocabulary.VocabularyCard``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, BigInteger, Float, Index, String, Text, false
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from progression_engine.core.database.base import (
    Base,
    IdMixin,
    TimestampMixin,
    UTCDateTime,
    utc_now,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class VocabularyItem(Base, IdMixin, TimestampMixin):
    """
    Persisted vocabulary item.

    ``word_key`` is the trimmed, lower-cased word; a user holds at most one
    non-archived item per ``(word_key, language)``.
    """

    __tablename__ = "vocabulary_items"
    __table_args__ = (
        Index("ix_vocabulary_items_user_due", "user_id", "is_archived", "next_review"),
        Index("ix_vocabulary_items_user_level", "user_id", "srs_level"),
        Index("ix_vocabulary_items_user_language", "user_id", "language", "created_at"),
    )

    # ========================================================================
    # OWNERSHIP & IDENTITY
    # ========================================================================

    user_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, index=True, doc="Owning user"
    )

    word: Mapped[str] = mapped_column(String(200), nullable=False)
    word_key: Mapped[str] = mapped_column(
        String(200), nullable=False, doc="Normalized word used for duplicate checks"
    )
    translation: Mapped[str] = mapped_column(String(500), nullable=False)
    language: Mapped[str] = mapped_column(String(16), nullable=False)
    native_language: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    version: Mapped[int] = mapped_column(
        nullable=False, doc="Optimistic locking version for concurrent reviews"
    )

    # ========================================================================
    # DESCRIPTIVE FIELDS
    # ========================================================================

    part_of_speech: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    pronunciation: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    examples: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    is_favorite: Mapped[bool] = mapped_column(nullable=False, default=False)

    # ========================================================================
    # SRS STATE
    # ========================================================================

    srs_level: Mapped[int] = mapped_column(nullable=False, default=0)
    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    interval: Mapped[int] = mapped_column(nullable=False, default=0, doc="Days")
    next_review: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )

    # ========================================================================
    # REVIEW STATISTICS
    # ========================================================================

    total_reviews: Mapped[int] = mapped_column(nullable=False, default=0)
    correct_reviews: Mapped[int] = mapped_column(nullable=False, default=0)
    incorrect_reviews: Mapped[int] = mapped_column(nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(nullable=False, default=0)
    review_history: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list, doc="Last 10 review events"
    )
    first_reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    # ========================================================================
    # MASTERY & ARCHIVING
    # ========================================================================

    is_mastered: Mapped[bool] = mapped_column(nullable=False, default=False)
    mastered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    is_archived: Mapped[bool] = mapped_column(nullable=False, default=False)
    archived_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> Dict[str, Any]:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "user_id": self.user_id,
            "word": self.word,
            "translation": self.translation,
            "language": self.language,
            "native_language": self.native_language,
            "part_of_speech": self.part_of_speech,
            "pronunciation": self.pronunciation,
            "notes": self.notes,
            "tags": list(self.tags or []),
            "examples": list(self.examples or []),
            "source": self.source,
            "is_favorite": self.is_favorite,
            "srs_level": self.srs_level,
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "next_review": iso(self.next_review),
            "total_reviews": self.total_reviews,
            "correct_reviews": self.correct_reviews,
            "incorrect_reviews": self.incorrect_reviews,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "review_history": list(self.review_history or []),
            "is_mastered": self.is_mastered,
            "mastered_at": iso(self.mastered_at),
            "is_archived": self.is_archived,
            "created_at": iso(self.created_at),
        }


# One active item per (user, language, word); archived rows may repeat
Index(
    "uq_vocabulary_items_active_word",
    VocabularyItem.user_id,
    VocabularyItem.language,
    VocabularyItem.word_key,
    unique=True,
    postgresql_where=VocabularyItem.is_archived == false(),
    sqlite_where=VocabularyItem.is_archived == false(),
)
