from progression_engine.modules.progression.service import (
    ActivityRepository,
    ProgressionService,
    UserProgressionRepository,
)

__all__ = ["ActivityRepository", "ProgressionService", "UserProgressionRepository"]
