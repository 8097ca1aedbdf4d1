"""
Progression Service
===================

Purpose
-------
Owns every write to a user's progression: the XP ledger, the day streak,
streak freezes, windowed XP resets and the daily goal.

Domain
------
- XP awards with the streak multiplier, level-up detection and an
  append-only activity ledger (optionally idempotent per key)
- Day-streak updates for user-local activity dates
- Streak freezes (grant, spend, automatic use by the daily expiry job)
- Daily/weekly window resets and daily goal bookkeeping

Design Notes
------------
- Each operation is one transaction: the progression row is read with
  ``SELECT ... FOR UPDATE`` and written back with an optimistic version
  check, so concurrent writers for the same user never lose updates
- Lost races surface as ``PersistenceConflictError`` and the whole
  operation is retried by the retry policy
- The progression row is created lazily by writes; reads never create it
- Domain events are published only after the transaction committed
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select

from progression_engine.core.clock import Clock, resolve_timezone
from progression_engine.core.database.service import DatabaseService
from progression_engine.core.logging.logger import get_logger
from progression_engine.database.models.activity_record import ActivityRecord
from progression_engine.database.models.user_progression import UserProgression
from progression_engine.domain.models.base import DomainEvent
from progression_engine.domain.models.progression import (
    ActivityDetails,
    AwardResult,
    Progression,
    StreakResult,
    default_stats,
)
from progression_engine.modules.shared.base_repository import BaseRepository
from progression_engine.modules.shared.base_service import BaseService
from progression_engine.modules.shared.constants import (
    DAILY_GOALS,
    DEFAULT_PROFICIENCY,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_REASON_LENGTH,
    ResetWindow,
)
from progression_engine.modules.shared.exceptions import (
    UserNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from progression_engine.core.event.bus import EventBus


# ============================================================================
# Repositories
# ============================================================================


class UserProgressionRepository(BaseRepository[UserProgression]):
    """Repository for UserProgression rows, keyed by user id."""

    async def find_by_user(
        self, session: AsyncSession, user_id: int, for_update: bool = False
    ) -> Optional[UserProgression]:
        return await self.find_one_where(
            session, UserProgression.user_id == user_id, for_update=for_update
        )

    async def user_ids_where(self, session: AsyncSession, *conditions: Any) -> List[int]:
        result = await session.execute(
            select(UserProgression.user_id)
            .where(*conditions)
            .order_by(UserProgression.user_id)
        )
        return [int(uid) for uid in result.scalars().all()]


class ActivityRepository(BaseRepository[ActivityRecord]):
    """Append-only activity ledger."""

    async def find_by_key(
        self, session: AsyncSession, user_id: int, idempotency_key: str
    ) -> Optional[ActivityRecord]:
        return await self.find_one_where(
            session,
            ActivityRecord.user_id == user_id,
            ActivityRecord.idempotency_key == idempotency_key,
        )

    async def find_between(
        self, session: AsyncSession, user_id: int, first_day: date, last_day: date
    ) -> List[ActivityRecord]:
        return await self.find_many_where(
            session,
            ActivityRecord.user_id == user_id,
            ActivityRecord.activity_date >= first_day,
            ActivityRecord.activity_date <= last_day,
            order_by=[ActivityRecord.occurred_at.asc(), ActivityRecord.id.asc()],
        )


# ============================================================================
# ProgressionService
# ============================================================================


class ProgressionService(BaseService):
    """
    XP ledger and streak tracker.

    Public Methods
    --------------
    - award_xp() -> AwardResult
    - record_activity() -> StreakResult
    - grant_streak_freezes() / use_streak_freeze() / expire_streak()
    - expire_inactive_streaks() -> batch form of expire_streak for the daily job
    - reset_window() / reset_all_windows()
    - set_daily_goal() / ensure_progression() / get_progression()
    """

    def __init__(
        self,
        config: Any,
        event_bus: EventBus,
        logger: Logger,
        clock: Clock,
    ) -> None:
        super().__init__(config, event_bus, logger)
        self.clock = clock

        self._progression_repo = UserProgressionRepository(
            model_class=UserProgression,
            logger=get_logger(f"{__name__}.UserProgressionRepository"),
        )
        self._activity_repo = ActivityRepository(
            model_class=ActivityRecord,
            logger=get_logger(f"{__name__}.ActivityRepository"),
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _get_or_create_for_update(
        self,
        session: AsyncSession,
        user_id: int,
        target_language: Optional[str] = None,
        timezone_name: Optional[str] = None,
    ) -> UserProgression:
        row = await self._progression_repo.find_by_user(session, user_id, for_update=True)
        if row is not None:
            return row

        now = self.clock.now()
        row = UserProgression(
            user_id=user_id,
            target_language=(
                target_language or self.get_config("DEFAULT_TARGET_LANGUAGE", "en")
            ),
            timezone=timezone_name or self.get_config("DEFAULT_TIMEZONE", "UTC"),
            daily_goal=self.get_config("DEFAULT_DAILY_GOAL", "regular"),
            proficiency_level=DEFAULT_PROFICIENCY,
            stats=default_stats(),
            total_xp=0,
            weekly_xp=0,
            daily_xp=0,
            current_streak=0,
            longest_streak=0,
            streak_freezes=0,
            days_completed_this_week=0,
            created_at=now,
            updated_at=now,
        )
        self._progression_repo.add(session, row)
        # A concurrent creator for the same user fails here on the unique key
        await self._progression_repo.flush(session)

        self.log.info(
            "Created progression record",
            extra={"user_id": user_id, "operation": "create_progression"},
        )
        return row

    async def _get_existing_for_update(
        self, session: AsyncSession, user_id: int
    ) -> UserProgression:
        row = await self._progression_repo.find_by_user(session, user_id, for_update=True)
        if row is None:
            raise UserNotFoundError(user_id)
        return row

    def _write_back(self, row: UserProgression, progression: Progression) -> None:
        for name, value in progression.to_db_updates().items():
            setattr(row, name, value)
        row.updated_at = self.clock.now()

    def local_today(self, row: UserProgression) -> date:
        return self.clock.today(resolve_timezone(row.timezone))

    @staticmethod
    def _replay(record: ActivityRecord) -> AwardResult:
        return AwardResult(
            user_id=record.user_id,
            adjusted_amount=record.xp_awarded,
            base_amount=record.base_xp,
            multiplier=record.multiplier,
            total_xp=record.total_xp_after,
            leveled_up=record.level_after > record.level_before,
            new_level=record.level_after,
            previous_level=record.level_before,
            reason=record.reason,
            duplicate=True,
        )

    # ========================================================================
    # PUBLIC API - XP Ledger
    # ========================================================================

    async def award_xp(
        self,
        user_id: int,
        base_amount: int,
        reason: str,
        *,
        details: Optional[ActivityDetails] = None,
        idempotency_key: Optional[str] = None,
    ) -> AwardResult:
        """
        Award XP with the streak multiplier applied.

        ``adjusted = floor(base_amount * multiplier(current_streak))`` is added
        to total, weekly and daily XP in one transaction together with an
        activity ledger row. A zero ``base_amount`` records the activity only.

        Args:
            user_id: User receiving XP
            base_amount: Non-negative XP before the multiplier
            reason: Short label stored in the ledger (e.g. "lesson_completed")
            details: Optional activity description and stat counter increments
            idempotency_key: When given, a repeated key returns the first
                award's result without applying XP again

        Raises:
            ValidationError: If base_amount is not a non-negative int, or reason or
                idempotency_key is blank or longer than its ledger column
            PersistenceConflictError: If retries are exhausted under contention

        Example:
            >>> result = await progression.award_xp(1, 25, "lesson_completed")
            >>> result.leveled_up
            True
        """
        self.validate_positive_int(user_id, "user_id")
        self.validate_non_negative_int(base_amount, "base_amount")
        self.validate_text(reason, "reason", MAX_REASON_LENGTH)
        if idempotency_key is not None:
            self.validate_text(
                idempotency_key, "idempotency_key", MAX_IDEMPOTENCY_KEY_LENGTH
            )
        details = details or ActivityDetails()

        self.log_operation(
            "award_xp", user_id=user_id, base_amount=base_amount, reason=reason
        )

        async def operation() -> Tuple[AwardResult, List[DomainEvent]]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                if idempotency_key is not None:
                    previous = await self._activity_repo.find_by_key(
                        session, user_id, idempotency_key
                    )
                    if previous is not None:
                        return self._replay(previous), []

                row = await self._get_or_create_for_update(session, user_id)
                progression = Progression.from_db(row)
                now = self.clock.now()

                result = progression.apply_xp(base_amount, reason, now)
                if details.stat_increments or details.quiz_score is not None:
                    progression.apply_activity_stats(
                        details.stat_increments, details.quiz_score
                    )
                self._write_back(row, progression)

                self._activity_repo.add(
                    session,
                    ActivityRecord(
                        user_id=user_id,
                        activity_type=details.activity_type,
                        reason=reason,
                        base_xp=base_amount,
                        xp_awarded=result.adjusted_amount,
                        multiplier=result.multiplier,
                        total_xp_after=result.total_xp,
                        level_before=result.previous_level,
                        level_after=result.new_level,
                        partner_id=details.partner_id,
                        language=details.language,
                        is_target_language=details.is_target_language,
                        word_count=details.word_count,
                        occurred_at=now,
                        activity_date=self.local_today(row),
                        idempotency_key=idempotency_key,
                    ),
                )
                return result, progression.clear_domain_events()

        result, events = await self.run_with_retry(
            operation,
            operation_name="progression.award_xp",
            context={"user_id": user_id, "reason": reason},
        )

        await self.publish_domain_events(events)

        if result.leveled_up:
            self.log.info(
                f"User {user_id} reached level {result.new_level}",
                extra={
                    "user_id": user_id,
                    "old_level": result.previous_level,
                    "new_level": result.new_level,
                },
            )
        return result

    # ========================================================================
    # PUBLIC API - Streaks
    # ========================================================================

    async def record_activity(
        self, user_id: int, activity_date: Optional[date] = None
    ) -> StreakResult:
        """
        Count ``activity_date`` (default: the user's local today) toward the
        day streak.

        Raises:
            StaleActivityError: If the date precedes the last recorded activity
        """
        self.validate_positive_int(user_id, "user_id")
        self.log_operation("record_activity", user_id=user_id)

        async def operation() -> Tuple[StreakResult, List[DomainEvent]]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_or_create_for_update(session, user_id)
                progression = Progression.from_db(row)

                result = progression.record_activity(activity_date or self.local_today(row))
                if result.streak_updated:
                    self._write_back(row, progression)
                return result, progression.clear_domain_events()

        result, events = await self.run_with_retry(
            operation,
            operation_name="progression.record_activity",
            context={"user_id": user_id},
        )
        await self.publish_domain_events(events)
        return result

    async def grant_streak_freezes(self, user_id: int, count: int = 1) -> int:
        """Add streak freezes (capped at 5). Returns the new number of freezes."""
        self.validate_positive_int(count, "count")
        self.log_operation("grant_streak_freezes", user_id=user_id, count=count)

        async def operation() -> int:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_or_create_for_update(session, user_id)
                progression = Progression.from_db(row)
                freezes = progression.grant_streak_freezes(count)
                self._write_back(row, progression)
                return freezes

        return await self.run_with_retry(
            operation,
            operation_name="progression.grant_streak_freezes",
            context={"user_id": user_id},
        )

    async def use_streak_freeze(self, user_id: int, missed_date: date) -> bool:
        """
        Spend a freeze to cover ``missed_date``, the day right after the last
        activity. Returns False when no freeze applies.

        Raises:
            UserNotFoundError: If the user has no progression record
        """
        self.log_operation("use_streak_freeze", user_id=user_id)

        async def operation() -> Tuple[bool, List[DomainEvent]]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_existing_for_update(session, user_id)
                progression = Progression.from_db(row)
                used = progression.use_streak_freeze(missed_date)
                if used:
                    self._write_back(row, progression)
                return used, progression.clear_domain_events()

        used, events = await self.run_with_retry(
            operation,
            operation_name="progression.use_streak_freeze",
            context={"user_id": user_id},
        )
        await self.publish_domain_events(events)
        return used

    async def expire_streak(
        self, user_id: int, today: Optional[date] = None
    ) -> StreakResult:
        """
        Daily check for one user: a missed yesterday breaks the streak unless
        a freeze covers a single missed day.

        Raises:
            UserNotFoundError: If the user has no progression record
        """
        async def operation() -> Tuple[StreakResult, List[DomainEvent]]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_existing_for_update(session, user_id)
                progression = Progression.from_db(row)
                result = progression.expire_streak(today or self.local_today(row))
                if result.streak_updated or result.freeze_used:
                    self._write_back(row, progression)
                return result, progression.clear_domain_events()

        result, events = await self.run_with_retry(
            operation,
            operation_name="progression.expire_streak",
            context={"user_id": user_id},
        )
        await self.publish_domain_events(events)

        if result.streak_broken:
            self.log.info(
                f"Streak expired for user {user_id}",
                extra={"user_id": user_id, "operation": "expire_streak"},
            )
        return result

    async def expire_inactive_streaks(self) -> Dict[str, int]:
        """
        Run ``expire_streak`` for every user with a streak who may have
        missed a day. Each user is handled in their own transaction.
        """
        # Candidates are selected by UTC day; expire_streak applies each
        # user's local today, which may be a day ahead of UTC
        cutoff = self.clock.today()

        async with DatabaseService.get_session() as session:
            user_ids = await self._progression_repo.user_ids_where(
                session,
                UserProgression.current_streak > 0,
                UserProgression.last_activity_date < cutoff,
            )

        summary = {"checked": len(user_ids), "broken": 0, "frozen": 0}
        for user_id in user_ids:
            result = await self.expire_streak(user_id)
            summary["broken"] += int(result.streak_broken)
            summary["frozen"] += int(result.freeze_used)

        self.log_operation("expire_inactive_streaks", **summary)
        return summary

    # ========================================================================
    # PUBLIC API - Windows & Goals
    # ========================================================================

    async def reset_window(
        self, user_id: int, window: Union[ResetWindow, str]
    ) -> Dict[str, Any]:
        """
        Clear the daily or weekly XP window for one user.

        Daily: a met goal counts toward ``days_completed_this_week`` first.
        Weekly: also clears ``days_completed_this_week``.

        Raises:
            ValidationError: If window is not "daily" or "weekly"
            UserNotFoundError: If the user has no progression record
        """
        try:
            window = ResetWindow(window)
        except ValueError as exc:
            raise ValidationError("window", f"unknown window {window!r}") from exc

        self.log_operation("reset_window", user_id=user_id, window=window.value)

        async def operation() -> Tuple[Dict[str, Any], List[DomainEvent]]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_existing_for_update(session, user_id)
                progression = Progression.from_db(row)
                summary = progression.reset_window(window, self.clock.now())
                self._write_back(row, progression)
                return summary, progression.clear_domain_events()

        summary, events = await self.run_with_retry(
            operation,
            operation_name="progression.reset_window",
            context={"user_id": user_id},
        )
        await self.publish_domain_events(events)
        return summary

    async def reset_all_windows(self, window: Union[ResetWindow, str]) -> int:
        """Reset a window for every user. Returns the number of users reset."""
        try:
            window = ResetWindow(window)
        except ValueError as exc:
            raise ValidationError("window", f"unknown window {window!r}") from exc

        async with DatabaseService.get_session() as session:
            user_ids = await self._progression_repo.user_ids_where(session)

        for user_id in user_ids:
            await self.reset_window(user_id, window)

        self.log_operation("reset_all_windows", window=window.value, users=len(user_ids))
        return len(user_ids)

    async def set_daily_goal(self, user_id: int, goal: str) -> Dict[str, Any]:
        """
        Raises:
            ValidationError: If goal is not casual, regular, serious or intense
        """
        if goal not in DAILY_GOALS:
            raise ValidationError(
                "daily_goal", f"daily_goal must be one of {sorted(DAILY_GOALS)}"
            )
        self.log_operation("set_daily_goal", user_id=user_id, goal=goal)

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_or_create_for_update(session, user_id)
                progression = Progression.from_db(row)
                progression.set_daily_goal(goal)
                self._write_back(row, progression)
                return progression.snapshot()

        return await self.run_with_retry(
            operation,
            operation_name="progression.set_daily_goal",
            context={"user_id": user_id},
        )

    async def ensure_progression(
        self,
        user_id: int,
        *,
        target_language: Optional[str] = None,
        timezone_name: Optional[str] = None,
        proficiency_level: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create the progression record if missing and update profile fields.

        Raises:
            ValidationError: If the time zone or proficiency level is unknown
        """
        self.validate_positive_int(user_id, "user_id")
        if timezone_name is not None:
            try:
                ZoneInfo(timezone_name)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValidationError(
                    "timezone", f"unknown time zone {timezone_name!r}"
                ) from exc

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction("UserProgression") as session:
                row = await self._get_or_create_for_update(
                    session, user_id, target_language, timezone_name
                )
                progression = Progression.from_db(row)
                if proficiency_level is not None:
                    progression.set_proficiency_level(proficiency_level)
                    self._write_back(row, progression)
                if target_language is not None:
                    row.target_language = target_language
                if timezone_name is not None:
                    row.timezone = timezone_name
                return Progression.from_db(row).snapshot()

        return await self.run_with_retry(
            operation,
            operation_name="progression.ensure_progression",
            context={"user_id": user_id},
        )

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_progression(self, user_id: int) -> Dict[str, Any]:
        """
        Snapshot of a user's progression with derived values.

        Raises:
            UserNotFoundError: If the user has no progression record
        """
        async with DatabaseService.get_session() as session:
            row = await self._progression_repo.find_by_user(session, user_id)
            if row is None:
                raise UserNotFoundError(user_id)
            return Progression.from_db(row).snapshot()

    async def activity_between(
        self, user_id: int, first_day: date, last_day: date
    ) -> List[Dict[str, Any]]:
        """Ledger rows for a range of user-local days, oldest first."""
        async with DatabaseService.get_session() as session:
            records = await self._activity_repo.find_between(
                session, user_id, first_day, last_day
            )
            return [record.to_dict() for record in records]


__all__ = [
    "ActivityRepository",
    "ProgressionService",
    "UserProgressionRepository",
]
