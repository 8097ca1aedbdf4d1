"""
Unit Tests for Progression Formulas
===================================

Test Coverage
-------------
- Level curve and level progress
- Daily goal progress
- Streak multiplier tiers and exact XP flooring
- SM-2 ease factor and interval growth
- Language matching and word counting
"""

import pytest

from progression_engine.modules.shared.formulas import (
    apply_multiplier,
    count_words,
    daily_goal_progress,
    is_target_language,
    level_for_xp,
    level_progress_percent,
    next_ease_factor,
    next_interval,
    streak_multiplier,
    xp_for_level,
    xp_to_next_level,
)


# ============================================================================
# LEVEL CURVE
# ============================================================================


@pytest.mark.unit
class TestLevelCurve:
    """Test the square-root level curve."""

    @pytest.mark.parametrize(
        "total_xp, level",
        [(-10, 1), (0, 1), (24, 1), (25, 2), (99, 2), (100, 3), (225, 4), (2500, 11)],
    )
    def test_level_for_xp(self, total_xp, level):
        assert level_for_xp(total_xp) == level

    def test_level_start_round_trips(self):
        """The XP at which a level starts maps back to that level."""
        for level in range(1, 60):
            assert level_for_xp(xp_for_level(level)) == level
            assert level_for_xp(xp_for_level(level + 1) - 1) == level

    def test_xp_for_level_below_two_is_zero(self):
        assert xp_for_level(0) == 0
        assert xp_for_level(1) == 0

    def test_xp_to_next_level(self):
        # Level 2 spans 25..99
        assert xp_to_next_level(30) == 70
        assert xp_to_next_level(0) == 25

    def test_level_progress_percent_is_floored(self):
        # 50 XP: level 2 spans 75 XP, 25 earned -> 33.3%
        assert level_progress_percent(50) == 33
        assert level_progress_percent(25) == 0
        assert level_progress_percent(99) == 98


@pytest.mark.unit
class TestDailyGoalProgress:
    """Test the capped daily goal percentage."""

    def test_partial_progress_is_floored(self):
        assert daily_goal_progress(10, 30) == 33

    def test_progress_caps_at_100(self):
        assert daily_goal_progress(90, 30) == 100

    def test_zero_xp(self):
        assert daily_goal_progress(0, 30) == 0


# ============================================================================
# STREAK MULTIPLIER
# ============================================================================


@pytest.mark.unit
class TestStreakMultiplier:
    """Test multiplier tiers and exact flooring."""

    @pytest.mark.parametrize(
        "streak, multiplier",
        [(0, 1.0), (2, 1.0), (3, 1.1), (6, 1.1), (7, 1.2), (13, 1.2), (14, 1.3), (30, 1.5), (365, 1.5)],
    )
    def test_tiers(self, streak, multiplier):
        assert streak_multiplier(streak) == multiplier

    def test_multiplier_never_decreases_with_streak(self):
        values = [streak_multiplier(streak) for streak in range(0, 100)]
        assert values == sorted(values)

    def test_apply_multiplier_floors_exact_product(self):
        # 3 * 1.1 is 3.3000000000000003 in binary floating point
        assert apply_multiplier(3, 1.1) == 3
        assert apply_multiplier(10, 1.1) == 11
        assert apply_multiplier(25, 1.2) == 30
        assert apply_multiplier(5, 1.3) == 6

    def test_apply_multiplier_zero_base(self):
        assert apply_multiplier(0, 1.5) == 0


# ============================================================================
# SM-2
# ============================================================================


@pytest.mark.unit
class TestEaseFactor:
    """Test the SM-2 ease factor update."""

    @pytest.mark.parametrize(
        "quality, expected",
        [(5, 2.6), (4, 2.5), (3, 2.36), (2, 2.18), (1, 1.96), (0, 1.7)],
    )
    def test_update_from_default(self, quality, expected):
        assert next_ease_factor(2.5, quality) == expected

    def test_floor_at_minimum(self):
        assert next_ease_factor(1.3, 0) == 1.3
        assert next_ease_factor(1.4, 2) == 1.3

    def test_monotonic_in_quality(self):
        """Better recall never lowers the resulting ease factor."""
        for ease in (1.3, 1.75, 2.5, 3.1):
            values = [next_ease_factor(ease, q) for q in range(6)]
            assert values == sorted(values)

    def test_repeated_updates_stay_on_grid(self):
        ease = 2.5
        for _ in range(20):
            ease = next_ease_factor(ease, 3)
        assert ease == 1.3


@pytest.mark.unit
class TestInterval:
    """Test interval growth after passing reviews."""

    def test_first_and_second_intervals(self):
        assert next_interval(0, 0, 2.5) == 1
        assert next_interval(1, 1, 2.5) == 6

    def test_growth_uses_ease_factor(self):
        assert next_interval(6, 2, 2.5) == 15
        assert next_interval(6, 2, 2.36) == 14

    def test_growth_rounds_half_up(self):
        # 5 * 2.5 = 12.5
        assert next_interval(5, 3, 2.5) == 13


# ============================================================================
# TEXT HELPERS
# ============================================================================


@pytest.mark.unit
class TestTextHelpers:
    def test_language_prefix_match(self):
        assert is_target_language("es-MX", "es")
        assert is_target_language("EN", "en-us")
        assert not is_target_language("fr", "es")

    def test_missing_language_never_matches(self):
        assert not is_target_language(None, "es")
        assert not is_target_language("es", "")

    def test_count_words(self):
        assert count_words("  hola   que tal ") == 3
        assert count_words("") == 0
        assert count_words(None) == 0
