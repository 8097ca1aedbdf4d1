"""
Unit Tests for the Progression Domain Model
===========================================

Test Coverage
-------------
- XP awards with the streak multiplier and level-up detection
- Activity counters and the running quiz average
- Day-streak transitions, stale dates and streak freezes
- Daily/weekly window resets and the daily goal

Testing Strategy
----------------
- Pure domain tests, no database
- AAA pattern (Arrange, Act, Assert)
"""

from datetime import date, datetime, timezone

import pytest

from progression_engine.domain.models.progression import Progression
from progression_engine.modules.shared.constants import ResetWindow
from progression_engine.modules.shared.exceptions import (
    StaleActivityError,
    ValidationError,
)
from tests.conftest import assert_domain_event_emitted, get_domain_event_payload

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
MONDAY = date(2025, 3, 10)


def make_progression(**overrides) -> Progression:
    fields = {"progression_id": 1, "user_id": 7}
    fields.update(overrides)
    return Progression(**fields)


# ============================================================================
# XP LEDGER
# ============================================================================


@pytest.mark.unit
@pytest.mark.domain
class TestApplyXp:
    """XP awards and level-ups."""

    def test_level_up_at_boundary(self):
        """24 XP plus 1 crosses into level 2; the next award of 5 does not."""
        # Arrange
        progression = make_progression(total_xp=24)

        # Act
        result = progression.apply_xp(1, "lesson_completed", NOW)

        # Assert
        assert result.leveled_up
        assert result.previous_level == 1
        assert result.new_level == 2
        assert result.total_xp == 25
        assert progression.apply_xp(5, "lesson_completed", NOW).leveled_up is False

    def test_multiplier_applies_to_every_counter(self):
        progression = make_progression(current_streak=7, weekly_xp=10, daily_xp=4)

        result = progression.apply_xp(25, "quiz_completed", NOW)

        assert result.multiplier == 1.2
        assert result.adjusted_amount == 30
        assert progression.total_xp == 30
        assert progression.weekly_xp == 40
        assert progression.daily_xp == 34
        assert progression.last_xp_earned_at == NOW

    def test_zero_award_records_no_xp_event(self):
        progression = make_progression()

        result = progression.apply_xp(0, "message_sent", NOW)

        assert result.adjusted_amount == 0
        assert progression.last_xp_earned_at is None
        assert progression.get_pending_events() == []

    @pytest.mark.parametrize("amount", [-1, 1.5, "10", True])
    def test_invalid_amount_rejected(self, amount):
        progression = make_progression(total_xp=10)

        with pytest.raises(ValidationError):
            progression.apply_xp(amount, "bad", NOW)

        assert progression.total_xp == 10

    def test_events(self):
        progression = make_progression(total_xp=20)

        progression.apply_xp(10, "lesson_completed", NOW)

        assert assert_domain_event_emitted(progression, "progression.xp_awarded")
        payload = get_domain_event_payload(progression, "progression.leveled_up")
        assert payload == {"user_id": 7, "old_level": 1, "new_level": 2, "total_xp": 30}


@pytest.mark.unit
@pytest.mark.domain
class TestActivityStats:
    def test_increments(self):
        progression = make_progression()

        progression.apply_activity_stats({"lessons_completed": 1, "perfect_lessons": 1})

        assert progression.stats["lessons_completed"] == 1
        assert progression.stats["perfect_lessons"] == 1

    def test_running_quiz_average(self):
        progression = make_progression(
            stats={"quizzes_completed": 2, "average_quiz_score": 80.0}
        )

        progression.apply_activity_stats({"quizzes_completed": 1}, quiz_score=91)

        assert progression.stats["average_quiz_score"] == 83.67
        assert progression.stats["quizzes_completed"] == 3

    def test_unknown_counter_rejected(self):
        progression = make_progression()

        with pytest.raises(ValidationError):
            progression.apply_activity_stats({"logins": 1})


# ============================================================================
# STREAKS
# ============================================================================


@pytest.mark.unit
@pytest.mark.domain
class TestRecordActivity:
    """Day-streak transitions."""

    def test_first_activity_starts_streak(self):
        progression = make_progression()

        result = progression.record_activity(MONDAY)

        assert result.streak_updated
        assert result.current_streak == 1
        assert result.longest_streak == 1
        assert progression.last_activity_date == MONDAY

    def test_same_day_is_idempotent(self):
        progression = make_progression(
            current_streak=3, longest_streak=3, last_activity_date=MONDAY
        )

        result = progression.record_activity(MONDAY)

        assert not result.streak_updated
        assert result.current_streak == 3
        assert progression.get_pending_events() == []

    def test_next_day_extends(self):
        progression = make_progression(
            current_streak=3, longest_streak=5, last_activity_date=date(2025, 3, 9)
        )

        result = progression.record_activity(MONDAY)

        assert result.current_streak == 4
        assert result.longest_streak == 5

    def test_gap_resets_to_one(self):
        progression = make_progression(
            current_streak=6, longest_streak=6, last_activity_date=date(2025, 3, 7)
        )

        result = progression.record_activity(MONDAY)

        assert result.current_streak == 1
        assert result.longest_streak == 6
        assert result.streak_broken

    def test_stale_date_rejected_without_change(self):
        progression = make_progression(
            current_streak=2, longest_streak=2, last_activity_date=MONDAY
        )

        with pytest.raises(StaleActivityError):
            progression.record_activity(date(2025, 3, 8))

        assert progression.current_streak == 2
        assert progression.last_activity_date == MONDAY


@pytest.mark.unit
@pytest.mark.domain
class TestStreakFreezes:
    def test_grant_caps_at_five(self):
        progression = make_progression(streak_freezes=4)

        assert progression.grant_streak_freezes(3) == 5

    def test_freeze_bridges_one_missed_day(self):
        progression = make_progression(
            current_streak=4,
            longest_streak=4,
            last_activity_date=date(2025, 3, 8),
            streak_freezes=1,
        )

        used = progression.use_streak_freeze(date(2025, 3, 9))

        assert used
        assert progression.streak_freezes == 0
        assert progression.last_activity_date == date(2025, 3, 9)
        assert progression.current_streak == 4
        # The bridged day lets today's activity continue the streak
        assert progression.record_activity(MONDAY).current_streak == 5

    def test_freeze_not_applicable(self):
        progression = make_progression(
            current_streak=4, last_activity_date=date(2025, 3, 7), streak_freezes=2
        )

        assert not progression.use_streak_freeze(date(2025, 3, 9))
        assert progression.streak_freezes == 2

    def test_expire_breaks_streak_without_freeze(self):
        progression = make_progression(
            current_streak=5, longest_streak=5, last_activity_date=date(2025, 3, 8)
        )

        result = progression.expire_streak(MONDAY)

        assert result.streak_broken
        assert progression.current_streak == 0
        assert progression.longest_streak == 5

    def test_expire_uses_freeze_for_single_missed_day(self):
        progression = make_progression(
            current_streak=5, last_activity_date=date(2025, 3, 8), streak_freezes=1
        )

        result = progression.expire_streak(MONDAY)

        assert result.freeze_used
        assert not result.streak_broken
        assert progression.current_streak == 5
        assert progression.last_activity_date == date(2025, 3, 9)

    def test_expire_noop_when_active_yesterday(self):
        progression = make_progression(
            current_streak=5, last_activity_date=date(2025, 3, 9)
        )

        result = progression.expire_streak(MONDAY)

        assert not result.streak_updated
        assert progression.current_streak == 5


# ============================================================================
# WINDOWS & GOALS
# ============================================================================


@pytest.mark.unit
@pytest.mark.domain
class TestWindows:
    def test_daily_reset_counts_met_goal(self):
        progression = make_progression(daily_xp=35, daily_goal="regular")

        summary = progression.reset_window(ResetWindow.DAILY, NOW)

        assert summary["goal_met"]
        assert summary["cleared_xp"] == 35
        assert progression.daily_xp == 0
        assert progression.days_completed_this_week == 1
        assert progression.daily_goal_completed_at == NOW

    def test_daily_reset_below_goal(self):
        progression = make_progression(daily_xp=29, daily_goal="regular")

        summary = progression.reset_window(ResetWindow.DAILY, NOW)

        assert not summary["goal_met"]
        assert progression.days_completed_this_week == 0

    def test_weekly_reset(self):
        progression = make_progression(weekly_xp=400, days_completed_this_week=5)

        progression.reset_window(ResetWindow.WEEKLY, NOW)

        assert progression.weekly_xp == 0
        assert progression.days_completed_this_week == 0
        assert assert_domain_event_emitted(progression, "progression.window_reset")

    def test_daily_goal_progress(self):
        progression = make_progression(daily_xp=20, daily_goal="casual")

        assert progression.daily_goal_target == 10
        assert progression.daily_goal_progress == 100

    def test_unknown_goal_rejected(self):
        with pytest.raises(ValidationError):
            make_progression().set_daily_goal("extreme")
