"""
ORM models. Importing this package registers every table on ``Base.metadata``.
"""

from progression_engine.database.models.activity_record import ActivityRecord
from progression_engine.database.models.user_progression import UserProgression
from progression_engine.database.models.vocabulary_item import VocabularyItem

__all__ = ["ActivityRecord", "UserProgression", "VocabularyItem"]
