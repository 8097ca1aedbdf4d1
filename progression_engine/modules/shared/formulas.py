"""
Progression Formulas

Purpose
-------
Pure calculation functions for learning progression: the level curve, the
streak multiplier, the SM-2 ease factor and interval rules, and small text
helpers used when classifying activity.

Design Notes
------------
- Pure functions only (no side effects, no config, no database access)
- Fractional arithmetic goes through ``decimal.Decimal`` so results are
  reproducible bit for bit:
  - ease factors live on a 0.01 grid (every SM-2 delta is a multiple of 0.01)
  - multiplied XP is floored from the exact product
  - interval growth is rounded half-up from the exact product

Usage
-----
    from progression_engine.modules.shared.formulas import level_for_xp

    level_for_xp(100)        # 3
    streak_multiplier(7)     # 1.2
"""

from __future__ import annotations

import math
from decimal import ROUND_DOWN, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional

from progression_engine.modules.shared.constants import (
    FIRST_INTERVAL_DAYS,
    MIN_EASE_FACTOR,
    SECOND_INTERVAL_DAYS,
    STREAK_MULTIPLIER_TIERS,
)

_XP_PER_LEVEL_STEP = 25
_EASE_GRID = Decimal("0.01")


# ============================================================================
# LEVEL CURVE
# ============================================================================


def level_for_xp(total_xp: int) -> int:
    """
    Calculate the level for a total XP amount.

    ``level = floor(sqrt(total_xp / 25)) + 1``; never below 1.

    Args:
        total_xp: Lifetime XP

    Returns:
        Level (minimum 1)

    Example:
        >>> level_for_xp(0)
        1
        >>> level_for_xp(24)
        1
        >>> level_for_xp(25)
        2
        >>> level_for_xp(100)
        3
    """
    if total_xp <= 0:
        return 1
    return math.isqrt(total_xp // _XP_PER_LEVEL_STEP) + 1


def xp_for_level(level: int) -> int:
    """
    Total XP at which ``level`` starts: ``(level - 1)^2 * 25``.

    Example:
        >>> xp_for_level(1)
        0
        >>> xp_for_level(3)
        100
    """
    if level <= 1:
        return 0
    return (level - 1) ** 2 * _XP_PER_LEVEL_STEP


def xp_to_next_level(total_xp: int) -> int:
    """XP still missing until the next level starts."""
    return xp_for_level(level_for_xp(total_xp) + 1) - max(total_xp, 0)


def level_progress_percent(total_xp: int) -> int:
    """
    Floored percentage of the way through the current level, in ``[0, 100)``.

    Example:
        >>> level_progress_percent(50)
        33
    """
    total_xp = max(total_xp, 0)
    level = level_for_xp(total_xp)
    floor_xp = xp_for_level(level)
    span = xp_for_level(level + 1) - floor_xp
    return (total_xp - floor_xp) * 100 // span


def daily_goal_progress(daily_xp: int, target: int) -> int:
    """Floored percentage of the daily goal, capped at 100."""
    if target <= 0:
        return 100
    return min(100, max(daily_xp, 0) * 100 // target)


# ============================================================================
# STREAK MULTIPLIER
# ============================================================================


def streak_multiplier(current_streak: int) -> float:
    """
    XP multiplier for a streak length.

    Step function: >=30 -> 1.5, >=14 -> 1.3, >=7 -> 1.2, >=3 -> 1.1, else 1.0.

    Example:
        >>> streak_multiplier(2)
        1.0
        >>> streak_multiplier(14)
        1.3
    """
    for threshold, multiplier in STREAK_MULTIPLIER_TIERS:
        if current_streak >= threshold:
            return float(multiplier)
    return 1.0


def apply_multiplier(base_amount: int, multiplier: float) -> int:
    """
    Floor of ``base_amount * multiplier`` computed exactly.

    Example:
        >>> apply_multiplier(25, 1.2)
        30
        >>> apply_multiplier(3, 1.1)
        3
    """
    product = Decimal(base_amount) * Decimal(str(multiplier))
    return int(product.to_integral_value(rounding=ROUND_FLOOR))


# ============================================================================
# SM-2 SCHEDULING
# ============================================================================


def next_ease_factor(ease_factor: float, quality: int) -> float:
    """
    Apply the SM-2 ease factor update for a review of ``quality`` (0..5).

    ``EF' = max(1.3, EF + (0.1 - (5-q) * (0.08 + (5-q) * 0.02)))``

    Example:
        >>> next_ease_factor(2.5, 5)
        2.6
        >>> next_ease_factor(2.5, 3)
        2.36
        >>> next_ease_factor(1.3, 0)
        1.3
    """
    miss = Decimal(5 - quality)
    delta = Decimal("0.1") - miss * (Decimal("0.08") + miss * Decimal("0.02"))
    updated = (Decimal(str(ease_factor)) + delta).quantize(
        _EASE_GRID, rounding=ROUND_DOWN
    )
    return float(max(Decimal(str(MIN_EASE_FACTOR)), updated))


def next_interval(interval: int, srs_level: int, ease_factor: float) -> int:
    """
    Interval in days after a passing review.

    Level 0 -> 1 day, level 1 -> 6 days, otherwise
    ``round_half_up(interval * ease_factor)``.

    Args:
        interval: Current interval in days
        srs_level: SRS level *before* the review
        ease_factor: Ease factor used for growth

    Example:
        >>> next_interval(6, 2, 2.5)
        15
    """
    if srs_level <= 0:
        return FIRST_INTERVAL_DAYS
    if srs_level == 1:
        return SECOND_INTERVAL_DAYS
    product = Decimal(interval) * Decimal(str(ease_factor))
    return int(product.to_integral_value(rounding=ROUND_HALF_UP))


# ============================================================================
# TEXT HELPERS
# ============================================================================


def is_target_language(detected: Optional[str], target: Optional[str]) -> bool:
    """
    True when two language codes share their ISO 639-1 prefix.

    Example:
        >>> is_target_language("es-MX", "es")
        True
    """
    if not detected or not target:
        return False
    return detected.lower()[:2] == target.lower()[:2]


def count_words(text: Optional[str]) -> int:
    """Number of whitespace-separated words."""
    if not text:
        return 0
    return len(text.split())
