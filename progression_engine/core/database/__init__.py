"""
Database infrastructure: engine/session management, retry policy, ORM base.
"""

from progression_engine.core.database.base import (
    Base,
    IdMixin,
    TimestampMixin,
    UTCDateTime,
    utc_now,
)
from progression_engine.core.database.retry_policy import (
    DatabaseRetryConfig,
    DatabaseRetryPolicy,
)
from progression_engine.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utc_now",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
