"""
Progression Engine
==================

Purpose
-------
Single entry point for calling applications. Wires configuration, the event
bus, the clock and every service, owns the database lifecycle and exposes
the public operations as async methods.

Responsibilities
----------------
- Initialize logging and the database (optionally creating the schema)
- Construct services with shared dependencies
- Delegate public operations to the owning service
- Shut everything down in reverse order

Usage
-----
>>> engine = ProgressionEngine()
>>> await engine.initialize(create_schema=True)
>>> await engine.award_xp(42, 20, "lesson_completed")
>>> await engine.dashboard(42)
>>> await engine.shutdown()
"""

from __future__ import annotations

import time
from datetime import date
from typing import Any, Dict, List, Optional, Union

from progression_engine.core.clock import Clock, SystemClock
from progression_engine.core.config.config import Config
from progression_engine.core.database.service import DatabaseService
from progression_engine.core.event.bus import EventBus
from progression_engine.core.logging.logger import (
    get_logger,
    setup_logging,
    shutdown_logging,
)
from progression_engine.domain.models.progression import (
    ActivityDetails,
    AwardResult,
    StreakResult,
)
from progression_engine.domain.models.vocabulary import ReviewResult
from progression_engine.modules.activity.tracker import ActivityTracker
from progression_engine.modules.dashboard.service import DashboardService
from progression_engine.modules.progression.service import ProgressionService
from progression_engine.modules.shared.constants import (
    DEFAULT_DUE_LIMIT,
    DEFAULT_FORECAST_DAYS,
    LeaderboardBoard,
    ResetWindow,
)
from progression_engine.modules.srs.service import SrsService

logger = get_logger(__name__)


class ProgressionEngine:
    """
    Facade over the SRS, progression, dashboard and tracking services.

    Services are constructed eagerly so they can be used in tests with a
    database initialized elsewhere; ``initialize()`` only prepares
    infrastructure.
    """

    def __init__(
        self,
        config: Any = Config,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.clock = clock or SystemClock()

        self.srs = SrsService(
            config, self.event_bus, get_logger("progression_engine.srs"), self.clock
        )
        self.progression = ProgressionService(
            config,
            self.event_bus,
            get_logger("progression_engine.progression"),
            self.clock,
        )
        self.dashboards = DashboardService(
            config,
            self.event_bus,
            get_logger("progression_engine.dashboard"),
            self.clock,
            self.srs,
        )
        self.tracker = ActivityTracker(
            config,
            self.event_bus,
            get_logger("progression_engine.activity"),
            self.progression,
            self.srs,
        )

        self._initialized = False

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(
        self, database_url: Optional[str] = None, create_schema: bool = False
    ) -> None:
        """
        Prepare logging and the database. Idempotent.

        Raises:
            DatabaseInitializationError: If the database cannot be reached
        """
        if self._initialized:
            logger.warning("ProgressionEngine already initialized")
            return

        start = time.perf_counter()
        setup_logging()

        try:
            await DatabaseService.initialize(database_url)
            if create_schema:
                await DatabaseService.create_schema()
        except Exception as exc:
            logger.critical(f"Database initialization failed: {exc}", exc_info=True)
            raise

        self._initialized = True
        logger.info(
            "ProgressionEngine initialized",
            extra={"duration_ms": round((time.perf_counter() - start) * 1000, 2)},
        )

    async def shutdown(self) -> None:
        """Dispose the database engine, drop event listeners and flush logs."""
        if not self._initialized:
            return

        logger.info("ProgressionEngine shutting down")
        self.event_bus.clear()
        await DatabaseService.shutdown()
        shutdown_logging()
        self._initialized = False

    async def health_check(self) -> Dict[str, Any]:
        return {
            "initialized": self._initialized,
            "database": await DatabaseService.health_check(),
            "listeners": self.event_bus.get_listener_count(),
        }

    async def __aenter__(self) -> "ProgressionEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ========================================================================
    # SRS Scheduler
    # ========================================================================

    async def add_vocabulary(
        self, user_id: int, word: str, translation: str, language: str, **fields: Any
    ) -> Dict[str, Any]:
        return await self.srs.add_vocabulary(user_id, word, translation, language, **fields)

    async def review(
        self, item_id: int, quality: int, response_time_ms: Optional[int] = None
    ) -> ReviewResult:
        return await self.srs.review(item_id, quality, response_time_ms)

    async def due_for_review(
        self, user_id: int, limit: int = DEFAULT_DUE_LIMIT
    ) -> List[Dict[str, Any]]:
        return await self.srs.due_for_review(user_id, limit)

    async def review_forecast(
        self, user_id: int, days: int = DEFAULT_FORECAST_DAYS
    ) -> List[Dict[str, Any]]:
        return await self.srs.review_forecast(user_id, days)

    async def review_stats(self, user_id: int) -> Dict[str, Any]:
        return await self.srs.review_stats(user_id)

    # ========================================================================
    # XP Ledger & Streaks
    # ========================================================================

    async def award_xp(
        self,
        user_id: int,
        base_amount: int,
        reason: str,
        *,
        details: Optional[ActivityDetails] = None,
        idempotency_key: Optional[str] = None,
    ) -> AwardResult:
        return await self.progression.award_xp(
            user_id,
            base_amount,
            reason,
            details=details,
            idempotency_key=idempotency_key,
        )

    async def record_activity(
        self, user_id: int, activity_date: Optional[date] = None
    ) -> StreakResult:
        return await self.progression.record_activity(user_id, activity_date)

    async def reset_window(
        self, user_id: int, window: Union[ResetWindow, str]
    ) -> Dict[str, Any]:
        return await self.progression.reset_window(user_id, window)

    async def get_progression(self, user_id: int) -> Dict[str, Any]:
        return await self.progression.get_progression(user_id)

    # ========================================================================
    # Aggregator
    # ========================================================================

    async def dashboard(self, user_id: int) -> Dict[str, Any]:
        return await self.dashboards.dashboard(user_id)

    async def leaderboard(
        self,
        board: Union[LeaderboardBoard, str] = LeaderboardBoard.WEEKLY,
        language: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        return await self.dashboards.leaderboard(board, language, limit, offset)


__all__ = ["ProgressionEngine"]
