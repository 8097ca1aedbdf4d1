"""
Progression Domain Model.

Purpose
-------
Rich domain model for a user's learning progression: the XP ledger with its
level curve and streak multiplier, the day-streak state machine with streak
freezes, windowed XP counters and the daily goal.

This is separate from the database model (``UserProgression``). Services
lock the row, build this aggregate, call one business method, write the
updates back and publish the recorded events after commit.

Responsibilities
----------------
- Apply XP with the streak multiplier and report level-ups
- Advance, keep or reset the day streak for an activity date
- Bridge single missed days with streak freezes
- Reset daily/weekly windows and track daily goal completion
- Maintain activity counters (stats)

Usage Example
-------------
>>> progression = Progression.from_db(row)
>>> result = progression.apply_xp(25, reason="lesson_completed", now=now)
>>> result.leveled_up
True
>>> for field, value in progression.to_db_updates().items():
...     setattr(row, field, value)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from progression_engine.core.clock import ensure_utc
from progression_engine.domain.models.base import AggregateRoot
from progression_engine.modules.shared.constants import (
    DAILY_GOALS,
    DEFAULT_DAILY_GOAL,
    DEFAULT_PROFICIENCY,
    MAX_STREAK_FREEZES,
    PROFICIENCY_LEVELS,
    STAT_KEYS,
    ResetWindow,
)
from progression_engine.modules.shared.exceptions import (
    StaleActivityError,
    ValidationError,
)
from progression_engine.modules.shared.formulas import (
    apply_multiplier,
    daily_goal_progress,
    level_for_xp,
    level_progress_percent,
    streak_multiplier,
    xp_to_next_level,
)

if TYPE_CHECKING:
    from progression_engine.database.models.user_progression import UserProgression


def default_stats() -> Dict[str, Any]:
    stats: Dict[str, Any] = {key: 0 for key in STAT_KEYS}
    stats["average_quiz_score"] = 0.0
    return stats


# ============================================================================
# RESULT VALUE OBJECTS
# ============================================================================


@dataclass(frozen=True)
class AwardResult:
    """
    Outcome of an XP award.

    Attributes
    ----------
    adjusted_amount : int
        XP actually added (``floor(base_amount * multiplier)``)
    base_amount : int
        XP requested by the caller
    multiplier : float
        Streak multiplier in effect
    total_xp : int
        Lifetime XP after the award
    leveled_up : bool
        Whether the award crossed a level boundary
    new_level : int
        Level after the award
    duplicate : bool
        True when an earlier award with the same idempotency key was replayed
    """

    user_id: int
    adjusted_amount: int
    base_amount: int
    multiplier: float
    total_xp: int
    leveled_up: bool
    new_level: int
    previous_level: int
    reason: str = ""
    duplicate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StreakResult:
    """
    Outcome of a streak update.

    ``streak_updated`` is True only when the streak count was recomputed for a
    new day; ``streak_broken`` is True when a positive streak was lost.
    """

    user_id: int
    current_streak: int
    longest_streak: int
    streak_updated: bool
    streak_broken: bool = False
    freeze_used: bool = False
    last_activity_date: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.last_activity_date is not None:
            data["last_activity_date"] = self.last_activity_date.isoformat()
        return data


@dataclass(frozen=True)
class ActivityDetails:
    """
    Optional description of the activity behind an XP award.

    Written to the activity ledger and used to bump ``stats`` counters in
    the same transaction as the award.
    """

    activity_type: str = "xp_award"
    partner_id: Optional[int] = None
    is_target_language: bool = False
    word_count: int = 0
    language: Optional[str] = None
    stat_increments: Mapping[str, int] = field(default_factory=dict)
    quiz_score: Optional[float] = None


# ============================================================================
# AGGREGATE
# ============================================================================


class Progression(AggregateRoot):
    """
    A user's progression state.

    Invariants
    ----------
    - ``total_xp`` never decreases; ``weekly_xp`` / ``daily_xp`` only drop
      through ``reset_window``
    - ``longest_streak >= current_streak``
    - ``last_activity_date`` never moves backwards
    - ``0 <= streak_freezes <= 5``
    """

    def __init__(
        self,
        progression_id: Optional[int],
        user_id: int,
        total_xp: int = 0,
        weekly_xp: int = 0,
        daily_xp: int = 0,
        current_streak: int = 0,
        longest_streak: int = 0,
        last_activity_date: Optional[date] = None,
        proficiency_level: str = DEFAULT_PROFICIENCY,
        stats: Optional[Dict[str, Any]] = None,
        target_language: str = "en",
        timezone: str = "UTC",
        last_xp_earned_at: Optional[datetime] = None,
        streak_freezes: int = 0,
        streak_freeze_used_on: Optional[date] = None,
        daily_goal: str = DEFAULT_DAILY_GOAL,
        days_completed_this_week: int = 0,
        daily_goal_completed_at: Optional[datetime] = None,
    ) -> None:
        super().__init__(progression_id)
        self.user_id = user_id
        self.total_xp = total_xp
        self.weekly_xp = weekly_xp
        self.daily_xp = daily_xp
        self.current_streak = current_streak
        self.longest_streak = longest_streak
        self.last_activity_date = last_activity_date
        self.proficiency_level = proficiency_level
        self.stats: Dict[str, Any] = {**default_stats(), **(stats or {})}
        self.target_language = target_language
        self.timezone = timezone
        self.last_xp_earned_at = last_xp_earned_at
        self.streak_freezes = streak_freezes
        self.streak_freeze_used_on = streak_freeze_used_on
        self.daily_goal = daily_goal
        self.days_completed_this_week = days_completed_this_week
        self.daily_goal_completed_at = daily_goal_completed_at

    # ========================================================================
    # FACTORY / PERSISTENCE
    # ========================================================================

    @classmethod
    def from_db(cls, row: UserProgression) -> Progression:
        return cls(
            progression_id=row.id,
            user_id=row.user_id,
            total_xp=row.total_xp,
            weekly_xp=row.weekly_xp,
            daily_xp=row.daily_xp,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_activity_date=row.last_activity_date,
            proficiency_level=row.proficiency_level,
            stats=dict(row.stats or {}),
            target_language=row.target_language,
            timezone=row.timezone,
            last_xp_earned_at=row.last_xp_earned_at,
            streak_freezes=row.streak_freezes,
            streak_freeze_used_on=row.streak_freeze_used_on,
            daily_goal=row.daily_goal,
            days_completed_this_week=row.days_completed_this_week,
            daily_goal_completed_at=row.daily_goal_completed_at,
        )

    def to_db_updates(self) -> Dict[str, Any]:
        return {
            "total_xp": self.total_xp,
            "weekly_xp": self.weekly_xp,
            "daily_xp": self.daily_xp,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_activity_date": self.last_activity_date,
            "proficiency_level": self.proficiency_level,
            "stats": dict(self.stats),
            "last_xp_earned_at": self.last_xp_earned_at,
            "streak_freezes": self.streak_freezes,
            "streak_freeze_used_on": self.streak_freeze_used_on,
            "daily_goal": self.daily_goal,
            "days_completed_this_week": self.days_completed_this_week,
            "daily_goal_completed_at": self.daily_goal_completed_at,
        }

    # ========================================================================
    # DERIVED VALUES
    # ========================================================================

    @property
    def level(self) -> int:
        return level_for_xp(self.total_xp)

    @property
    def multiplier(self) -> float:
        return streak_multiplier(self.current_streak)

    @property
    def xp_to_next_level(self) -> int:
        return xp_to_next_level(self.total_xp)

    @property
    def level_progress_percent(self) -> int:
        return level_progress_percent(self.total_xp)

    @property
    def daily_goal_target(self) -> int:
        return DAILY_GOALS.get(self.daily_goal, DAILY_GOALS[DEFAULT_DAILY_GOAL])

    @property
    def daily_goal_progress(self) -> int:
        return daily_goal_progress(self.daily_xp, self.daily_goal_target)

    def _streak_result(
        self,
        updated: bool,
        broken: bool = False,
        freeze_used: bool = False,
    ) -> StreakResult:
        return StreakResult(
            user_id=self.user_id,
            current_streak=self.current_streak,
            longest_streak=self.longest_streak,
            streak_updated=updated,
            streak_broken=broken,
            freeze_used=freeze_used,
            last_activity_date=self.last_activity_date,
        )

    # ========================================================================
    # XP LEDGER
    # ========================================================================

    def apply_xp(self, base_amount: int, reason: str, now: datetime) -> AwardResult:
        """
        Add ``floor(base_amount * multiplier)`` XP to every counter.

        Raises
        ------
        ValidationError
            If base_amount is not a non-negative integer.
        """
        if (
            isinstance(base_amount, bool)
            or not isinstance(base_amount, int)
            or base_amount < 0
        ):
            raise ValidationError(
                "base_amount",
                f"base_amount must be a non-negative integer, got {base_amount!r}",
            )

        multiplier = self.multiplier
        adjusted = apply_multiplier(base_amount, multiplier)
        previous_level = self.level

        self.total_xp += adjusted
        self.weekly_xp += adjusted
        self.daily_xp += adjusted
        if adjusted > 0:
            self.last_xp_earned_at = ensure_utc(now)

        new_level = self.level
        leveled_up = new_level > previous_level

        if adjusted > 0:
            self.add_domain_event(
                "progression.xp_awarded",
                {
                    "user_id": self.user_id,
                    "base_amount": base_amount,
                    "adjusted_amount": adjusted,
                    "multiplier": multiplier,
                    "total_xp": self.total_xp,
                    "reason": reason,
                },
            )
        if leveled_up:
            self.add_domain_event(
                "progression.leveled_up",
                {
                    "user_id": self.user_id,
                    "old_level": previous_level,
                    "new_level": new_level,
                    "total_xp": self.total_xp,
                },
            )

        return AwardResult(
            user_id=self.user_id,
            adjusted_amount=adjusted,
            base_amount=base_amount,
            multiplier=multiplier,
            total_xp=self.total_xp,
            leveled_up=leveled_up,
            new_level=new_level,
            previous_level=previous_level,
            reason=reason,
        )

    def apply_activity_stats(
        self,
        increments: Mapping[str, int],
        quiz_score: Optional[float] = None,
    ) -> None:
        """
        Bump activity counters. A quiz score folds into the running average
        over the quizzes completed before this one.

        Raises
        ------
        ValidationError
            If a counter name is unknown or an increment is negative.
        """
        for key, amount in increments.items():
            if key not in STAT_KEYS or key == "average_quiz_score":
                raise ValidationError("stat_increments", f"unknown stat counter {key!r}")
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
                raise ValidationError(
                    "stat_increments", f"increment for {key} must be a non-negative int"
                )

        if quiz_score is not None:
            taken = int(self.stats.get("quizzes_completed", 0))
            current = Decimal(str(self.stats.get("average_quiz_score", 0.0)))
            average = (current * taken + Decimal(str(quiz_score))) / (taken + 1)
            self.stats["average_quiz_score"] = float(
                average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            )

        for key, amount in increments.items():
            self.stats[key] = int(self.stats.get(key, 0)) + amount

    # ========================================================================
    # STREAKS
    # ========================================================================

    def record_activity(self, activity_date: date) -> StreakResult:
        """
        Update the day streak for activity on ``activity_date`` (user-local).

        Raises
        ------
        StaleActivityError
            If activity_date precedes the last recorded activity day.
        """
        last = self.last_activity_date

        if last is not None and activity_date < last:
            raise StaleActivityError(activity_date, last)

        if last is not None and activity_date == last:
            return self._streak_result(updated=False)

        broken = False
        if last is not None and activity_date == last + timedelta(days=1):
            self.current_streak += 1
        else:
            broken = self.current_streak > 0
            self.current_streak = 1

        self.longest_streak = max(self.longest_streak, self.current_streak)
        self.last_activity_date = activity_date

        self.add_domain_event(
            "progression.streak_updated",
            {
                "user_id": self.user_id,
                "current_streak": self.current_streak,
                "longest_streak": self.longest_streak,
                "activity_date": activity_date.isoformat(),
                "streak_broken": broken,
            },
        )
        return self._streak_result(updated=True, broken=broken)

    def grant_streak_freezes(self, count: int = 1) -> int:
        """Add streak freezes, capped at the maximum. Returns the new count."""
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError("count", f"count must be a positive integer, got {count!r}")
        self.streak_freezes = min(MAX_STREAK_FREEZES, self.streak_freezes + count)
        return self.streak_freezes

    def can_use_streak_freeze(self, missed_date: date) -> bool:
        return (
            self.streak_freezes > 0
            and self.last_activity_date is not None
            and missed_date == self.last_activity_date + timedelta(days=1)
            and self.streak_freeze_used_on != missed_date
        )

    def use_streak_freeze(self, missed_date: date) -> bool:
        """
        Spend a freeze so ``missed_date`` counts as active without growing the
        streak. Returns False when the freeze does not apply.
        """
        if not self.can_use_streak_freeze(missed_date):
            return False

        self.streak_freezes -= 1
        self.streak_freeze_used_on = missed_date
        self.last_activity_date = missed_date

        self.add_domain_event(
            "progression.streak_freeze_used",
            {
                "user_id": self.user_id,
                "missed_date": missed_date.isoformat(),
                "current_streak": self.current_streak,
                "streak_freezes_left": self.streak_freezes,
            },
        )
        return True

    def expire_streak(self, today: date) -> StreakResult:
        """
        Daily check: break the streak when yesterday was missed, unless a
        freeze can cover a single missed day.
        """
        last = self.last_activity_date
        yesterday = today - timedelta(days=1)

        if last is None or last >= yesterday or self.current_streak <= 0:
            return self._streak_result(updated=False)

        if last == yesterday - timedelta(days=1) and self.use_streak_freeze(yesterday):
            return self._streak_result(updated=False, freeze_used=True)

        self.current_streak = 0
        self.add_domain_event(
            "progression.streak_updated",
            {
                "user_id": self.user_id,
                "current_streak": 0,
                "longest_streak": self.longest_streak,
                "activity_date": None,
                "streak_broken": True,
            },
        )
        return self._streak_result(updated=True, broken=True)

    # ========================================================================
    # WINDOWS & GOALS
    # ========================================================================

    def reset_window(self, window: ResetWindow, now: datetime) -> Dict[str, Any]:
        """
        Clear a windowed XP counter. Returns the values that were cleared.
        """
        summary: Dict[str, Any] = {"user_id": self.user_id, "window": window.value}

        if window is ResetWindow.DAILY:
            goal_met = self.daily_xp >= self.daily_goal_target
            if goal_met:
                self.days_completed_this_week += 1
                self.daily_goal_completed_at = ensure_utc(now)
            summary.update(cleared_xp=self.daily_xp, goal_met=goal_met)
            self.daily_xp = 0
        else:
            summary.update(
                cleared_xp=self.weekly_xp,
                days_completed=self.days_completed_this_week,
            )
            self.weekly_xp = 0
            self.days_completed_this_week = 0

        self.add_domain_event("progression.window_reset", dict(summary))
        return summary

    def set_daily_goal(self, goal: str) -> None:
        if goal not in DAILY_GOALS:
            raise ValidationError(
                "daily_goal",
                f"daily_goal must be one of {sorted(DAILY_GOALS)}, got {goal!r}",
            )
        self.daily_goal = goal

    def set_proficiency_level(self, level: str) -> None:
        if level not in PROFICIENCY_LEVELS:
            raise ValidationError(
                "proficiency_level",
                f"proficiency_level must be one of {list(PROFICIENCY_LEVELS)}",
            )
        self.proficiency_level = level

    def snapshot(self) -> Dict[str, Any]:
        """Read model of the progression with derived values."""
        return {
            "user_id": self.user_id,
            "level": self.level,
            "total_xp": self.total_xp,
            "weekly_xp": self.weekly_xp,
            "daily_xp": self.daily_xp,
            "xp_to_next_level": self.xp_to_next_level,
            "level_progress_percent": self.level_progress_percent,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_activity_date": (
                self.last_activity_date.isoformat() if self.last_activity_date else None
            ),
            "multiplier": self.multiplier,
            "streak_freezes": self.streak_freezes,
            "daily_goal": self.daily_goal,
            "daily_goal_target": self.daily_goal_target,
            "daily_goal_progress": self.daily_goal_progress,
            "days_completed_this_week": self.days_completed_this_week,
            "proficiency_level": self.proficiency_level,
            "target_language": self.target_language,
            "timezone": self.timezone,
            "stats": dict(self.stats),
        }
