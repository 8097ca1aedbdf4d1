"""
Dashboard Service
=================

Purpose
-------
Read-only views over a user's progression: the combined dashboard, daily and
weekly activity summaries, per-partner interaction stats and leaderboards.

Design Notes
------------
- Never creates records: a user without a progression row is reported as
  ``UserNotFoundError``
- Summaries aggregate the activity ledger in SQL, bucketed by the user-local
  ``activity_date`` written with each award
- SRS figures come from ``SrsService`` so the scheduling rules stay in one place
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from sqlalchemy import case, func, select

from progression_engine.core.clock import Clock, resolve_timezone
from progression_engine.core.database.service import DatabaseService
from progression_engine.core.logging.logger import get_logger
from progression_engine.database.models.activity_record import ActivityRecord
from progression_engine.database.models.user_progression import UserProgression
from progression_engine.domain.models.progression import Progression
from progression_engine.modules.progression.service import UserProgressionRepository
from progression_engine.modules.shared.base_service import BaseService
from progression_engine.modules.shared.constants import (
    ActivityType,
    LeaderboardBoard,
)
from progression_engine.modules.shared.exceptions import (
    UserNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from progression_engine.core.event.bus import EventBus
    from progression_engine.modules.srs.service import SrsService


def _count_type(activity_type: ActivityType, *extra: Any) -> Any:
    condition = ActivityRecord.activity_type == activity_type.value
    for clause in extra:
        condition = condition & clause
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


class DashboardService(BaseService):
    """
    Progression aggregator.

    Public Methods
    --------------
    - dashboard() -> Dict with progression, summaries and SRS figures
    - daily_summary() / weekly_summary() / partner_stats()
    - leaderboard() / user_rank()
    """

    def __init__(
        self,
        config: Any,
        event_bus: EventBus,
        logger: Logger,
        clock: Clock,
        srs_service: SrsService,
    ) -> None:
        super().__init__(config, event_bus, logger)
        self.clock = clock
        self.srs = srs_service

        self._progression_repo = UserProgressionRepository(
            model_class=UserProgression,
            logger=get_logger(f"{__name__}.UserProgressionRepository"),
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _load_progression(self, session: AsyncSession, user_id: int) -> Progression:
        row = await self._progression_repo.find_by_user(session, user_id)
        if row is None:
            raise UserNotFoundError(user_id)
        return Progression.from_db(row)

    def _local_today(self, progression: Progression) -> date:
        return self.clock.today(resolve_timezone(progression.timezone))

    @staticmethod
    def _board_column(board: Union[LeaderboardBoard, str]) -> Any:
        try:
            board = LeaderboardBoard(board)
        except ValueError as exc:
            raise ValidationError("board", f"unknown leaderboard {board!r}") from exc
        if board is LeaderboardBoard.WEEKLY:
            return UserProgression.weekly_xp
        return UserProgression.total_xp

    async def _daily_summary(
        self, session: AsyncSession, user_id: int, day: date
    ) -> Dict[str, Any]:
        stmt = select(
            _count_type(ActivityType.MESSAGE_SENT),
            _count_type(
                ActivityType.MESSAGE_SENT, ActivityRecord.is_target_language.is_(True)
            ),
            _count_type(ActivityType.CORRECTION_GIVEN),
            _count_type(ActivityType.CORRECTION_RECEIVED),
            _count_type(ActivityType.CORRECTION_ACCEPTED),
            func.coalesce(func.sum(ActivityRecord.xp_awarded), 0),
            func.coalesce(func.sum(ActivityRecord.word_count), 0),
            func.count(func.distinct(ActivityRecord.partner_id)),
        ).where(
            ActivityRecord.user_id == user_id,
            ActivityRecord.activity_date == day,
        )
        row = (await session.execute(stmt)).one()
        (
            messages,
            target_messages,
            given,
            received,
            accepted,
            xp_earned,
            words,
            partners,
        ) = (int(value or 0) for value in row)

        return {
            "date": day.isoformat(),
            "total_messages": messages,
            "target_language_messages": target_messages,
            "corrections_given": given,
            "corrections_received": received,
            "corrections_accepted": accepted,
            "total_xp_earned": xp_earned,
            "total_words": words,
            "unique_partners": partners,
        }

    async def _weekly_summary(
        self, session: AsyncSession, user_id: int, today: date
    ) -> Dict[str, Any]:
        first_day = today - timedelta(days=6)
        stmt = (
            select(
                ActivityRecord.activity_date,
                _count_type(ActivityType.MESSAGE_SENT),
                _count_type(
                    ActivityType.MESSAGE_SENT,
                    ActivityRecord.is_target_language.is_(True),
                ),
                func.coalesce(func.sum(ActivityRecord.xp_awarded), 0),
            )
            .where(
                ActivityRecord.user_id == user_id,
                ActivityRecord.activity_date >= first_day,
                ActivityRecord.activity_date <= today,
            )
            .group_by(ActivityRecord.activity_date)
        )
        by_day = {
            activity_date: (int(messages or 0), int(target or 0), int(xp or 0))
            for activity_date, messages, target, xp in (await session.execute(stmt)).all()
        }

        daily_data = []
        for offset in range(7):
            day = first_day + timedelta(days=offset)
            messages, target, xp = by_day.get(day, (0, 0, 0))
            daily_data.append(
                {
                    "date": day.isoformat(),
                    "messages": messages,
                    "target_language_messages": target,
                    "xp_earned": xp,
                }
            )

        return {
            "start_date": first_day.isoformat(),
            "end_date": today.isoformat(),
            "daily_data": daily_data,
            "totals": {
                "messages": sum(d["messages"] for d in daily_data),
                "target_language_messages": sum(
                    d["target_language_messages"] for d in daily_data
                ),
                "xp_earned": sum(d["xp_earned"] for d in daily_data),
                # A day counts as active when anything was recorded for it
                "active_days": len(by_day),
            },
        }

    async def _partner_stats(
        self, session: AsyncSession, user_id: int, limit: int
    ) -> List[Dict[str, Any]]:
        message_count = _count_type(ActivityType.MESSAGE_SENT)
        stmt = (
            select(
                ActivityRecord.partner_id,
                message_count.label("message_count"),
                _count_type(ActivityType.CORRECTION_GIVEN),
                _count_type(ActivityType.CORRECTION_RECEIVED),
                func.max(ActivityRecord.occurred_at),
            )
            .where(
                ActivityRecord.user_id == user_id,
                ActivityRecord.partner_id.is_not(None),
            )
            .group_by(ActivityRecord.partner_id)
            .order_by(message_count.desc(), ActivityRecord.partner_id.asc())
            .limit(limit)
        )
        return [
            {
                "partner_id": int(partner_id),
                "message_count": int(messages or 0),
                "corrections_given": int(given or 0),
                "corrections_received": int(received or 0),
                "last_interaction": last.isoformat() if last else None,
            }
            for partner_id, messages, given, received, last in (
                await session.execute(stmt)
            ).all()
        ]

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def dashboard(self, user_id: int) -> Dict[str, Any]:
        """
        Everything a progress screen needs in one call.

        Raises:
            UserNotFoundError: If the user has no progression record
        """
        self.log_operation("dashboard", user_id=user_id)

        async with DatabaseService.get_session() as session:
            progression = await self._load_progression(session, user_id)
            today = self._local_today(progression)
            daily = await self._daily_summary(session, user_id, today)
            weekly = await self._weekly_summary(session, user_id, today)
            partners = await self._partner_stats(session, user_id, 10)

        review_stats = await self.srs.review_stats(user_id)
        review_forecast = await self.srs.review_forecast(user_id)

        snapshot = progression.snapshot()
        return {
            "user_id": user_id,
            "level": snapshot["level"],
            "total_xp": snapshot["total_xp"],
            "weekly_xp": snapshot["weekly_xp"],
            "daily_xp": snapshot["daily_xp"],
            "xp_to_next_level": snapshot["xp_to_next_level"],
            "level_progress_percent": snapshot["level_progress_percent"],
            "current_streak": snapshot["current_streak"],
            "longest_streak": snapshot["longest_streak"],
            "multiplier": snapshot["multiplier"],
            "streak_freezes": snapshot["streak_freezes"],
            "daily_goal": snapshot["daily_goal"],
            "daily_goal_target": snapshot["daily_goal_target"],
            "daily_goal_progress": snapshot["daily_goal_progress"],
            "proficiency_level": snapshot["proficiency_level"],
            "stats": snapshot["stats"],
            "daily_summary": daily,
            "weekly_summary": weekly,
            "partner_stats": partners,
            "review_stats": review_stats,
            "review_forecast": review_forecast,
        }

    async def daily_summary(
        self, user_id: int, day: Optional[date] = None
    ) -> Dict[str, Any]:
        """Activity totals for one user-local day (default: today). Zeros when empty."""
        async with DatabaseService.get_session() as session:
            progression = await self._load_progression(session, user_id)
            return await self._daily_summary(
                session, user_id, day or self._local_today(progression)
            )

    async def weekly_summary(self, user_id: int) -> Dict[str, Any]:
        """The last 7 local days ending today, zero-filled."""
        async with DatabaseService.get_session() as session:
            progression = await self._load_progression(session, user_id)
            return await self._weekly_summary(
                session, user_id, self._local_today(progression)
            )

    async def partner_stats(self, user_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        """Per-partner interaction counts, most messaged first."""
        self.validate_positive_int(limit, "limit")
        async with DatabaseService.get_session() as session:
            await self._load_progression(session, user_id)
            return await self._partner_stats(session, user_id, limit)

    async def leaderboard(
        self,
        board: Union[LeaderboardBoard, str] = LeaderboardBoard.WEEKLY,
        language: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Users ranked by weekly or lifetime XP, optionally within one target
        language. Ties are broken by user id.
        """
        xp_column = self._board_column(board)
        self.validate_range(limit, "limit", 1, 500)
        self.validate_non_negative_int(offset, "offset")

        stmt = select(UserProgression).order_by(
            xp_column.desc(), UserProgression.user_id.asc()
        )
        if language is not None:
            stmt = stmt.where(UserProgression.target_language == language)

        async with DatabaseService.get_session() as session:
            rows = (await session.execute(stmt.limit(limit).offset(offset))).scalars().all()

        entries = []
        for position, row in enumerate(rows, start=offset + 1):
            progression = Progression.from_db(row)
            entries.append(
                {
                    "rank": position,
                    "user_id": row.user_id,
                    "xp": int(getattr(row, xp_column.key)),
                    "level": progression.level,
                    "current_streak": row.current_streak,
                }
            )
        return entries

    async def user_rank(
        self,
        user_id: int,
        board: Union[LeaderboardBoard, str] = LeaderboardBoard.WEEKLY,
        language: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        A user's 1-based position on a board.

        Raises:
            UserNotFoundError: If the user has no progression record
        """
        xp_column = self._board_column(board)

        async with DatabaseService.get_session() as session:
            row = await self._progression_repo.find_by_user(session, user_id)
            if row is None:
                raise UserNotFoundError(user_id)
            xp = int(getattr(row, xp_column.key))

            scope = []
            if language is not None:
                scope.append(UserProgression.target_language == language)

            ahead = await self._progression_repo.count(
                session,
                *scope,
                (xp_column > xp)
                | ((xp_column == xp) & (UserProgression.user_id < user_id)),
            )
            total = await self._progression_repo.count(session, *scope)

        return {"user_id": user_id, "rank": ahead + 1, "xp": xp, "total_users": total}


__all__ = ["DashboardService"]
