"""
Activity Tracker
================

Purpose
-------
Turns learning events reported by the calling application (messages,
corrections, lessons, quizzes, vocabulary work, challenges) into XP awards,
streak updates and activity counters.

Flow per tracked event
----------------------
1. ``award_xp`` with the reward from ``XP_REWARDS`` and the matching counter
   increments (one transaction, one ledger row)
2. ``record_activity`` for the user's local today. After a move to a zone
   behind the previous one, local today can precede the last active day;
   that day is already counted and the streak is reported unchanged
3. When the streak lands exactly on a milestone, the milestone bonus is
   awarded under an idempotency key so a replayed event cannot pay it twice

Each step is its own transaction; a failure after step 1 leaves the award in
place and propagates the error to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from progression_engine.core.logging.logger import LogContext
from progression_engine.domain.models.progression import (
    ActivityDetails,
    AwardResult,
    StreakResult,
)
from progression_engine.domain.models.vocabulary import ReviewResult
from progression_engine.modules.shared.base_service import BaseService
from progression_engine.modules.shared.constants import (
    STREAK_MILESTONES,
    XP_REWARDS,
    ActivityType,
    ChallengeType,
)
from progression_engine.modules.shared.exceptions import (
    ItemNotFoundError,
    StaleActivityError,
    ValidationError,
)
from progression_engine.modules.shared.formulas import count_words, is_target_language

if TYPE_CHECKING:
    from logging import Logger

    from progression_engine.core.event.bus import EventBus
    from progression_engine.modules.progression.service import ProgressionService
    from progression_engine.modules.srs.service import SrsService


_CHALLENGE_REWARDS = {
    ChallengeType.DAILY: "COMPLETE_DAILY_CHALLENGE",
    ChallengeType.WEEKLY: "COMPLETE_WEEKLY_CHALLENGE",
    ChallengeType.SPECIAL: "COMPLETE_SPECIAL_CHALLENGE",
}


@dataclass(frozen=True)
class TrackingResult:
    """What a tracked event changed."""

    award: AwardResult
    streak: StreakResult
    milestone_award: Optional[AwardResult] = None
    is_target_language: Optional[bool] = None
    review: Optional[ReviewResult] = None
    item: Optional[Dict[str, Any]] = None

    @property
    def xp_awarded(self) -> int:
        total = self.award.adjusted_amount
        if self.milestone_award is not None and not self.milestone_award.duplicate:
            total += self.milestone_award.adjusted_amount
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "xp_awarded": self.xp_awarded,
            "award": self.award.to_dict(),
            "streak": self.streak.to_dict(),
            "milestone_award": (
                self.milestone_award.to_dict() if self.milestone_award else None
            ),
            "is_target_language": self.is_target_language,
            "review": self.review.to_dict() if self.review else None,
            "item": self.item,
        }


class ActivityTracker(BaseService):
    """
    Composes ``ProgressionService`` and ``SrsService`` for application events.

    Public Methods
    --------------
    - track_message()
    - track_correction_given() / track_correction_received() / track_correction_accepted()
    - track_lesson_completion() / track_quiz_completion()
    - track_vocabulary_added() / track_vocabulary_review()
    - track_challenge_completion()
    """

    def __init__(
        self,
        config: Any,
        event_bus: EventBus,
        logger: Logger,
        progression_service: ProgressionService,
        srs_service: SrsService,
    ) -> None:
        super().__init__(config, event_bus, logger)
        self.progression = progression_service
        self.srs = srs_service

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _track(
        self,
        user_id: int,
        reward: int,
        reason: str,
        details: ActivityDetails,
        idempotency_key: Optional[str] = None,
        **extra: Any,
    ) -> TrackingResult:
        async with LogContext(user_id=user_id, operation=f"track_{reason}"):
            award = await self.progression.award_xp(
                user_id,
                reward,
                reason,
                details=details,
                idempotency_key=idempotency_key,
            )
            streak = await self._record_streak(user_id)
            milestone = await self._award_streak_milestone(user_id, streak)
            self.log_operation(
                f"track_{reason}",
                user_id=user_id,
                xp_awarded=award.adjusted_amount,
                current_streak=streak.current_streak,
            )
        return TrackingResult(
            award=award, streak=streak, milestone_award=milestone, **extra
        )

    async def _record_streak(self, user_id: int) -> StreakResult:
        try:
            return await self.progression.record_activity(user_id)
        except StaleActivityError as exc:
            self.log.info(
                f"User {user_id} local day {exc.activity_date} precedes last "
                f"activity {exc.last_activity_date}; streak unchanged",
                extra={"user_id": user_id, "operation": "record_activity"},
            )
            return await self._unchanged_streak(user_id, exc.last_activity_date)

    async def _unchanged_streak(self, user_id: int, last_activity: date) -> StreakResult:
        snapshot = await self.progression.get_progression(user_id)
        return StreakResult(
            user_id=user_id,
            current_streak=snapshot["current_streak"],
            longest_streak=snapshot["longest_streak"],
            streak_updated=False,
            last_activity_date=last_activity,
        )

    async def _award_streak_milestone(
        self, user_id: int, streak: StreakResult
    ) -> Optional[AwardResult]:
        if not streak.streak_updated or streak.last_activity_date is None:
            return None

        for length, reward_key in STREAK_MILESTONES:
            if streak.current_streak != length:
                continue
            self.log.info(
                f"User {user_id} reached a {length}-day streak",
                extra={"user_id": user_id, "operation": "streak_milestone"},
            )
            return await self.progression.award_xp(
                user_id,
                XP_REWARDS[reward_key],
                reward_key.lower(),
                details=ActivityDetails(activity_type=ActivityType.STREAK_MILESTONE.value),
                idempotency_key=(
                    f"streak-milestone:{length}:{streak.last_activity_date.isoformat()}"
                ),
            )
        return None

    @staticmethod
    def _details(
        activity_type: ActivityType,
        stat_increments: Mapping[str, int],
        **fields: Any,
    ) -> ActivityDetails:
        return ActivityDetails(
            activity_type=activity_type.value,
            stat_increments=dict(stat_increments),
            **fields,
        )

    # ========================================================================
    # PUBLIC API - Conversation
    # ========================================================================

    async def track_message(
        self,
        user_id: int,
        text: Optional[str],
        detected_language: Optional[str],
        *,
        partner_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        """
        A message sent by the user. Only messages in the target language
        earn XP; every message counts toward the streak.
        """
        profile = await self.progression.ensure_progression(user_id)
        in_target = is_target_language(detected_language, profile["target_language"])

        increments = {"messages_sent": 1}
        if in_target:
            increments["messages_in_target_language"] = 1

        return await self._track(
            user_id,
            XP_REWARDS["MESSAGE_TARGET_LANGUAGE" if in_target else "MESSAGE_NATIVE_LANGUAGE"],
            "message_sent",
            self._details(
                ActivityType.MESSAGE_SENT,
                increments,
                partner_id=partner_id,
                is_target_language=in_target,
                word_count=count_words(text),
                language=detected_language,
            ),
            idempotency_key,
            is_target_language=in_target,
        )

    async def track_correction_given(
        self,
        user_id: int,
        *,
        partner_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        return await self._track(
            user_id,
            XP_REWARDS["GIVE_CORRECTION"],
            "correction_given",
            self._details(
                ActivityType.CORRECTION_GIVEN,
                {"corrections_given": 1},
                partner_id=partner_id,
            ),
            idempotency_key,
        )

    async def track_correction_received(
        self,
        user_id: int,
        *,
        partner_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        return await self._track(
            user_id,
            XP_REWARDS["RECEIVE_CORRECTION"],
            "correction_received",
            self._details(
                ActivityType.CORRECTION_RECEIVED,
                {"corrections_received": 1},
                partner_id=partner_id,
            ),
            idempotency_key,
        )

    async def track_correction_accepted(
        self,
        user_id: int,
        *,
        partner_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        return await self._track(
            user_id,
            XP_REWARDS["ACCEPT_CORRECTION"],
            "correction_accepted",
            self._details(
                ActivityType.CORRECTION_ACCEPTED,
                {"corrections_accepted": 1},
                partner_id=partner_id,
            ),
            idempotency_key,
        )

    # ========================================================================
    # PUBLIC API - Lessons & Quizzes
    # ========================================================================

    async def track_lesson_completion(
        self,
        user_id: int,
        *,
        is_perfect: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        """
        Lesson reward plus the perfect-lesson bonus and, for the user's very
        first lesson, the first-lesson bonus.
        """
        profile = await self.progression.ensure_progression(user_id)
        first_lesson = int(profile["stats"].get("lessons_completed", 0)) == 0

        reward = XP_REWARDS["COMPLETE_LESSON"]
        increments = {"lessons_completed": 1}
        if is_perfect:
            reward += XP_REWARDS["PERFECT_LESSON_BONUS"]
            increments["perfect_lessons"] = 1
        if first_lesson:
            reward += XP_REWARDS["FIRST_LESSON_BONUS"]

        return await self._track(
            user_id,
            reward,
            "lesson_completed",
            self._details(ActivityType.LESSON_COMPLETED, increments),
            idempotency_key,
        )

    async def track_quiz_completion(
        self,
        user_id: int,
        score: Union[int, float],
        *,
        is_perfect: bool = False,
        is_placement_test: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        """
        Quiz reward with perfect and placement bonuses; ``score`` (0..100)
        folds into the running average quiz score.
        """
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValidationError("score", f"score must be a number, got {score!r}")
        if not 0 <= score <= 100:
            raise ValidationError("score", f"score must be between 0 and 100, got {score}")

        reward = XP_REWARDS["COMPLETE_QUIZ"]
        if is_perfect:
            reward += XP_REWARDS["PERFECT_QUIZ_BONUS"]
        if is_placement_test:
            reward += XP_REWARDS["PLACEMENT_TEST_BONUS"]

        return await self._track(
            user_id,
            reward,
            "quiz_completed",
            self._details(
                ActivityType.QUIZ_COMPLETED,
                {"quizzes_completed": 1},
                quiz_score=float(score),
            ),
            idempotency_key,
        )

    # ========================================================================
    # PUBLIC API - Vocabulary
    # ========================================================================

    async def track_vocabulary_added(
        self,
        user_id: int,
        word: str,
        translation: str,
        language: str,
        **fields: Any,
    ) -> TrackingResult:
        """Save a word through the SRS service, then award the add reward."""
        item = await self.srs.add_vocabulary(user_id, word, translation, language, **fields)

        return await self._track(
            user_id,
            XP_REWARDS["ADD_VOCABULARY"],
            "vocabulary_added",
            self._details(
                ActivityType.VOCABULARY_ADDED,
                {"vocabulary_learned": 1},
                language=item["language"],
            ),
            f"vocabulary-added:{item['id']}",
            item=item,
        )

    async def track_vocabulary_review(
        self,
        user_id: int,
        item_id: int,
        quality: int,
        *,
        response_time_ms: Optional[int] = None,
    ) -> TrackingResult:
        """
        Review an item and award the review reward, plus the mastery reward
        on the review that first masters it.

        Raises:
            ItemNotFoundError: If the item does not belong to the user
        """
        item = await self.srs.get_vocabulary(item_id)
        if item["user_id"] != user_id:
            raise ItemNotFoundError(item_id)

        review = await self.srs.review(item_id, quality, response_time_ms)

        reward = XP_REWARDS["REVIEW_VOCABULARY"]
        increments = {"vocabulary_reviewed": 1}
        if review.just_mastered:
            reward += XP_REWARDS["MASTER_VOCABULARY"]
            increments["vocabulary_mastered"] = 1

        return await self._track(
            user_id,
            reward,
            "vocabulary_reviewed",
            self._details(
                ActivityType.VOCABULARY_MASTERED
                if review.just_mastered
                else ActivityType.VOCABULARY_REVIEWED,
                increments,
                language=item["language"],
            ),
            review=review,
        )

    # ========================================================================
    # PUBLIC API - Challenges
    # ========================================================================

    async def track_challenge_completion(
        self,
        user_id: int,
        challenge_type: Union[ChallengeType, str],
        *,
        idempotency_key: Optional[str] = None,
    ) -> TrackingResult:
        try:
            challenge_type = ChallengeType(challenge_type)
        except ValueError as exc:
            raise ValidationError(
                "challenge_type", f"unknown challenge type {challenge_type!r}"
            ) from exc

        return await self._track(
            user_id,
            XP_REWARDS[_CHALLENGE_REWARDS[challenge_type]],
            f"challenge_{challenge_type.value}",
            self._details(ActivityType.CHALLENGE_COMPLETED, {"challenges_completed": 1}),
            idempotency_key,
        )


__all__ = ["ActivityTracker", "TrackingResult"]
