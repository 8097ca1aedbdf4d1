"""
Vocabulary Card Domain Model.

Purpose
-------
Rich domain model for a single vocabulary item under spaced-repetition
scheduling (modified SM-2). Holds the review state machine; the database
model ``VocabularyItem`` is only its persisted shape.

Responsibilities
----------------
- Validate review quality before touching any state
- Update review counters, per-item streaks and the bounded review history
- Schedule the next review (SRS level, interval, ease factor)
- Flag mastery exactly once
- Emit ``vocabulary.reviewed`` / ``vocabulary.mastered`` domain events

Usage Example
-------------
>>> card = VocabularyCard.from_db(item_row)
>>> result = card.review(quality=4, now=clock.now())
>>> for field, value in card.to_db_updates().items():
...     setattr(item_row, field, value)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from progression_engine.core.clock import ensure_utc
from progression_engine.domain.models.base import AggregateRoot
from progression_engine.modules.shared.constants import (
    DEFAULT_EASE_FACTOR,
    MAX_QUALITY,
    MAX_SRS_LEVEL,
    MIN_QUALITY,
    PASSING_QUALITY,
    REVIEW_HISTORY_SIZE,
)
from progression_engine.modules.shared.exceptions import InvalidQualityError
from progression_engine.modules.shared.formulas import next_ease_factor, next_interval

if TYPE_CHECKING:
    from progression_engine.database.models.vocabulary_item import VocabularyItem


# ============================================================================
# VALUE OBJECTS
# ============================================================================


@dataclass(frozen=True)
class ReviewEvent:
    """One entry of an item's review history."""

    quality: int
    response_time_ms: Optional[int]
    was_correct: bool
    reviewed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quality": self.quality,
            "response_time_ms": self.response_time_ms,
            "was_correct": self.was_correct,
            "reviewed_at": self.reviewed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ReviewEvent:
        reviewed_at = data["reviewed_at"]
        if isinstance(reviewed_at, str):
            reviewed_at = datetime.fromisoformat(reviewed_at)
        return cls(
            quality=int(data["quality"]),
            response_time_ms=data.get("response_time_ms"),
            was_correct=bool(data["was_correct"]),
            reviewed_at=ensure_utc(reviewed_at),
        )


@dataclass(frozen=True)
class ReviewResult:
    """
    Outcome of a single review.

    Attributes
    ----------
    was_correct : bool
        ``quality >= 3``
    new_srs_level : int
        SRS level after the review (0..9)
    next_review : datetime
        When the item becomes due again (UTC)
    interval : int
        Days between this review and the next
    is_mastered : bool
        Mastery flag after the review
    just_mastered : bool
        True only for the review that first reached level 9
    """

    item_id: int
    was_correct: bool
    new_srs_level: int
    next_review: datetime
    interval: int
    ease_factor: float
    is_mastered: bool
    just_mastered: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["next_review"] = self.next_review.isoformat()
        return data


# ============================================================================
# AGGREGATE
# ============================================================================


class VocabularyCard(AggregateRoot):
    """
    Spaced-repetition state of one vocabulary item.

    Invariants
    ----------
    - ``0 <= srs_level <= 9``; it only goes down when a review fails (to 0)
    - ``ease_factor >= 1.3``
    - ``longest_streak >= current_streak``
    - ``review_history`` holds at most 10 events, oldest first
    - once mastered, always mastered
    """

    def __init__(
        self,
        item_id: int,
        user_id: int,
        word: str,
        language: str,
        srs_level: int = 0,
        ease_factor: float = DEFAULT_EASE_FACTOR,
        interval: int = 0,
        next_review: Optional[datetime] = None,
        total_reviews: int = 0,
        correct_reviews: int = 0,
        incorrect_reviews: int = 0,
        current_streak: int = 0,
        longest_streak: int = 0,
        review_history: Optional[List[ReviewEvent]] = None,
        is_mastered: bool = False,
        mastered_at: Optional[datetime] = None,
        first_reviewed_at: Optional[datetime] = None,
        last_reviewed_at: Optional[datetime] = None,
    ) -> None:
        super().__init__(item_id)
        self.user_id = user_id
        self.word = word
        self.language = language
        self.srs_level = srs_level
        self.ease_factor = ease_factor
        self.interval = interval
        self.next_review = next_review
        self.total_reviews = total_reviews
        self.correct_reviews = correct_reviews
        self.incorrect_reviews = incorrect_reviews
        self.current_streak = current_streak
        self.longest_streak = longest_streak
        self.review_history: List[ReviewEvent] = list(review_history or [])
        self.is_mastered = is_mastered
        self.mastered_at = mastered_at
        self.first_reviewed_at = first_reviewed_at
        self.last_reviewed_at = last_reviewed_at

    # ========================================================================
    # FACTORY / PERSISTENCE
    # ========================================================================

    @classmethod
    def from_db(cls, row: VocabularyItem) -> VocabularyCard:
        return cls(
            item_id=row.id,
            user_id=row.user_id,
            word=row.word,
            language=row.language,
            srs_level=row.srs_level,
            ease_factor=row.ease_factor,
            interval=row.interval,
            next_review=row.next_review,
            total_reviews=row.total_reviews,
            correct_reviews=row.correct_reviews,
            incorrect_reviews=row.incorrect_reviews,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            review_history=[ReviewEvent.from_dict(e) for e in row.review_history or []],
            is_mastered=row.is_mastered,
            mastered_at=row.mastered_at,
            first_reviewed_at=row.first_reviewed_at,
            last_reviewed_at=row.last_reviewed_at,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        """Column values to write back onto the database row."""
        return {
            "srs_level": self.srs_level,
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "next_review": self.next_review,
            "total_reviews": self.total_reviews,
            "correct_reviews": self.correct_reviews,
            "incorrect_reviews": self.incorrect_reviews,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "review_history": [e.to_dict() for e in self.review_history],
            "is_mastered": self.is_mastered,
            "mastered_at": self.mastered_at,
            "first_reviewed_at": self.first_reviewed_at,
            "last_reviewed_at": self.last_reviewed_at,
        }

    # ========================================================================
    # BUSINESS LOGIC
    # ========================================================================

    @staticmethod
    def validate_quality(quality: Any) -> int:
        """
        Raises
        ------
        InvalidQualityError
            If quality is not an int in 0..5 (bools are rejected).
        """
        if (
            isinstance(quality, bool)
            or not isinstance(quality, int)
            or not MIN_QUALITY <= quality <= MAX_QUALITY
        ):
            raise InvalidQualityError(quality)
        return quality

    @property
    def accuracy(self) -> float:
        if self.total_reviews == 0:
            return 0.0
        return round(self.correct_reviews / self.total_reviews * 100, 2)

    def review(
        self,
        quality: int,
        now: datetime,
        response_time_ms: Optional[int] = None,
    ) -> ReviewResult:
        """
        Apply one review with the given recall quality (0..5).

        The interval grows from the ease factor held *before* this review;
        the ease factor update is applied afterwards on every review.

        Raises
        ------
        InvalidQualityError
            If quality is outside 0..5; the card is left untouched.
        """
        quality = self.validate_quality(quality)
        now = ensure_utc(now)
        was_correct = quality >= PASSING_QUALITY

        self.total_reviews += 1
        if was_correct:
            self.correct_reviews += 1
            self.current_streak += 1
            self.longest_streak = max(self.longest_streak, self.current_streak)
        else:
            self.incorrect_reviews += 1
            self.current_streak = 0

        self.review_history.append(
            ReviewEvent(
                quality=quality,
                response_time_ms=response_time_ms,
                was_correct=was_correct,
                reviewed_at=now,
            )
        )
        if len(self.review_history) > REVIEW_HISTORY_SIZE:
            self.review_history = self.review_history[-REVIEW_HISTORY_SIZE:]

        if was_correct:
            self.interval = next_interval(self.interval, self.srs_level, self.ease_factor)
            self.srs_level = min(self.srs_level + 1, MAX_SRS_LEVEL)
            self.next_review = now + timedelta(days=self.interval)
        else:
            self.srs_level = 0
            self.interval = 0
            self.next_review = now

        self.ease_factor = next_ease_factor(self.ease_factor, quality)

        if self.first_reviewed_at is None:
            self.first_reviewed_at = now
        self.last_reviewed_at = now

        just_mastered = False
        if self.srs_level >= MAX_SRS_LEVEL and not self.is_mastered:
            self.is_mastered = True
            self.mastered_at = now
            just_mastered = True

        result = ReviewResult(
            item_id=self.id,  # type: ignore[arg-type]
            was_correct=was_correct,
            new_srs_level=self.srs_level,
            next_review=self.next_review,
            interval=self.interval,
            ease_factor=self.ease_factor,
            is_mastered=self.is_mastered,
            just_mastered=just_mastered,
        )

        self.add_domain_event(
            "vocabulary.reviewed",
            {
                "user_id": self.user_id,
                "item_id": self.id,
                "quality": quality,
                "was_correct": was_correct,
                "new_srs_level": self.srs_level,
                "interval": self.interval,
                "next_review": self.next_review.isoformat(),
            },
        )
        if just_mastered:
            self.add_domain_event(
                "vocabulary.mastered",
                {
                    "user_id": self.user_id,
                    "item_id": self.id,
                    "word": self.word,
                    "language": self.language,
                },
            )

        return result
