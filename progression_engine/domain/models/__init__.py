"""
Rich domain models holding the progression rules.
"""

from progression_engine.domain.models.base import AggregateRoot, DomainEvent, Entity
from progression_engine.domain.models.progression import (
    ActivityDetails,
    AwardResult,
    Progression,
    StreakResult,
)
from progression_engine.domain.models.vocabulary import (
    ReviewEvent,
    ReviewResult,
    VocabularyCard,
)

__all__ = [
    "AggregateRoot",
    "DomainEvent",
    "Entity",
    "ActivityDetails",
    "AwardResult",
    "Progression",
    "StreakResult",
    "ReviewEvent",
    "ReviewResult",
    "VocabularyCard",
]
