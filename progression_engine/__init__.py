"""
Learning progression engine: spaced-repetition scheduling, XP with a level
curve, day streaks and progress dashboards on an async SQL database.
"""

from progression_engine.core.clock import Clock, FrozenClock, SystemClock
from progression_engine.core.event.bus import EventBus
from progression_engine.domain.models.progression import (
    ActivityDetails,
    AwardResult,
    StreakResult,
)
from progression_engine.domain.models.vocabulary import ReviewResult
from progression_engine.engine import ProgressionEngine
from progression_engine.modules.shared.exceptions import (
    DuplicateVocabularyError,
    InvalidQualityError,
    ItemNotFoundError,
    PersistenceConflictError,
    ProgressionError,
    StaleActivityError,
    UserNotFoundError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "ProgressionEngine",
    "Clock",
    "SystemClock",
    "FrozenClock",
    "EventBus",
    "ActivityDetails",
    "AwardResult",
    "StreakResult",
    "ReviewResult",
    "ProgressionError",
    "ValidationError",
    "InvalidQualityError",
    "ItemNotFoundError",
    "UserNotFoundError",
    "StaleActivityError",
    "DuplicateVocabularyError",
    "PersistenceConflictError",
]
