"""
Progression Domain Constants

Purpose
-------
Provide the domain-level constants for learning progression: XP rewards per
activity, daily goal targets, streak milestones and SRS scheduler limits.

IMPORTANT:
This module contains DOMAIN constants only. Infrastructure concerns (database
pool sizes, retry backoff, logging) belong in ``core/config``.

Design Notes
------------
- Values are annotated with typing.Final to signal immutability
- Grouped by subsystem (XP, goals, streaks, SRS)
- No side effects at import time
"""

from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Final, Mapping, Tuple

# ============================================================================
# XP REWARDS
# ============================================================================

XP_REWARDS: Final[Mapping[str, int]] = MappingProxyType(
    {
        # Messages
        "MESSAGE_TARGET_LANGUAGE": 2,
        "MESSAGE_NATIVE_LANGUAGE": 0,
        # Corrections
        "GIVE_CORRECTION": 5,
        "RECEIVE_CORRECTION": 1,
        "ACCEPT_CORRECTION": 3,
        # Lessons
        "COMPLETE_LESSON": 20,
        "PERFECT_LESSON_BONUS": 5,
        "FIRST_LESSON_BONUS": 10,
        # Quizzes
        "COMPLETE_QUIZ": 30,
        "PLACEMENT_TEST_BONUS": 50,
        "PERFECT_QUIZ_BONUS": 10,
        # Vocabulary
        "ADD_VOCABULARY": 2,
        "REVIEW_VOCABULARY": 1,
        "MASTER_VOCABULARY": 10,
        # Challenges
        "COMPLETE_DAILY_CHALLENGE": 50,
        "COMPLETE_WEEKLY_CHALLENGE": 200,
        "COMPLETE_SPECIAL_CHALLENGE": 100,
        # Streaks
        "WEEKLY_STREAK_MILESTONE": 50,
        "MONTHLY_STREAK_MILESTONE": 200,
    }
)

# ============================================================================
# DAILY GOALS
# ============================================================================

DAILY_GOALS: Final[Mapping[str, int]] = MappingProxyType(
    {
        "casual": 10,
        "regular": 30,
        "serious": 50,
        "intense": 100,
    }
)
DEFAULT_DAILY_GOAL: Final[str] = "regular"

# ============================================================================
# STREAKS
# ============================================================================

# (streak length, reward key) fired only when the streak lands exactly on it
STREAK_MILESTONES: Final[Tuple[Tuple[int, str], ...]] = (
    (7, "WEEKLY_STREAK_MILESTONE"),
    (30, "MONTHLY_STREAK_MILESTONE"),
)

# (minimum streak, multiplier) checked top-down
STREAK_MULTIPLIER_TIERS: Final[Tuple[Tuple[int, str], ...]] = (
    (30, "1.5"),
    (14, "1.3"),
    (7, "1.2"),
    (3, "1.1"),
)

MAX_STREAK_FREEZES: Final[int] = 5

# ============================================================================
# SRS SCHEDULER
# ============================================================================

MAX_SRS_LEVEL: Final[int] = 9
DEFAULT_EASE_FACTOR: Final[float] = 2.5
MIN_EASE_FACTOR: Final[float] = 1.3
PASSING_QUALITY: Final[int] = 3
MIN_QUALITY: Final[int] = 0
MAX_QUALITY: Final[int] = 5
REVIEW_HISTORY_SIZE: Final[int] = 10
FIRST_INTERVAL_DAYS: Final[int] = 1
SECOND_INTERVAL_DAYS: Final[int] = 6

DEFAULT_DUE_LIMIT: Final[int] = 20
DEFAULT_FORECAST_DAYS: Final[int] = 7
MAX_FORECAST_DAYS: Final[int] = 366

# ============================================================================
# ACTIVITY LEDGER
# ============================================================================

MAX_REASON_LENGTH: Final[int] = 64
MAX_IDEMPOTENCY_KEY_LENGTH: Final[int] = 128

# ============================================================================
# PROFICIENCY
# ============================================================================

PROFICIENCY_LEVELS: Final[Tuple[str, ...]] = ("A1", "A2", "B1", "B2", "C1", "C2")
DEFAULT_PROFICIENCY: Final[str] = "A1"

# ============================================================================
# ENUMS
# ============================================================================


class ActivityType(str, enum.Enum):
    """Kinds of activity recorded in the activity ledger."""

    XP_AWARD = "xp_award"
    MESSAGE_SENT = "message_sent"
    CORRECTION_GIVEN = "correction_given"
    CORRECTION_RECEIVED = "correction_received"
    CORRECTION_ACCEPTED = "correction_accepted"
    LESSON_COMPLETED = "lesson_completed"
    QUIZ_COMPLETED = "quiz_completed"
    VOCABULARY_ADDED = "vocabulary_added"
    VOCABULARY_REVIEWED = "vocabulary_reviewed"
    VOCABULARY_MASTERED = "vocabulary_mastered"
    CHALLENGE_COMPLETED = "challenge_completed"
    STREAK_MILESTONE = "streak_milestone"


class ResetWindow(str, enum.Enum):
    """Windowed XP counters cleared by the external scheduler."""

    DAILY = "daily"
    WEEKLY = "weekly"


class LeaderboardBoard(str, enum.Enum):
    WEEKLY = "weekly"
    ALL_TIME = "all_time"


class ChallengeType(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    SPECIAL = "special"


# Counters kept in UserProgression.stats
STAT_KEYS: Final[Tuple[str, ...]] = (
    "lessons_completed",
    "perfect_lessons",
    "quizzes_completed",
    "average_quiz_score",
    "vocabulary_learned",
    "vocabulary_reviewed",
    "vocabulary_mastered",
    "corrections_given",
    "corrections_received",
    "corrections_accepted",
    "messages_sent",
    "messages_in_target_language",
    "challenges_completed",
)
