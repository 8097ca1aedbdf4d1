"""
SRS Service
===========

Purpose
-------
Spaced-repetition scheduling for vocabulary items: saving words, reviewing
them with the modified SM-2 rules, and answering "what is due" questions.

Domain
------
- Vocabulary management (add, update descriptive fields, archive, search)
- Reviews (one atomic read-modify-write per review, retried on conflicts)
- Due queue, review forecast, review statistics, SRS level distribution

Design Notes
------------
- Review rules live in ``VocabularyCard``; this service loads the row under
  ``SELECT ... FOR UPDATE``, applies the card's updates and publishes its
  events after commit
- Calendar-day questions (forecast, due today) use the user's time zone from
  their progression record, falling back to ``DEFAULT_TIMEZONE``
- Reads use ``get_session()`` and never mutate
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func, or_, select

from progression_engine.core.clock import Clock, local_day_bounds, resolve_timezone
from progression_engine.core.database.service import DatabaseService
from progression_engine.core.logging.logger import get_logger
from progression_engine.database.models.user_progression import UserProgression
from progression_engine.database.models.vocabulary_item import VocabularyItem
from progression_engine.domain.models.base import DomainEvent
from progression_engine.domain.models.vocabulary import ReviewResult, VocabularyCard
from progression_engine.modules.shared.base_repository import BaseRepository
from progression_engine.modules.shared.base_service import BaseService
from progression_engine.modules.shared.constants import (
    DEFAULT_DUE_LIMIT,
    DEFAULT_FORECAST_DAYS,
    MAX_FORECAST_DAYS,
    MAX_SRS_LEVEL,
)
from progression_engine.modules.shared.exceptions import (
    DuplicateVocabularyError,
    ItemNotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from progression_engine.core.event.bus import EventBus


EDITABLE_FIELDS = frozenset(
    {"notes", "tags", "is_favorite", "examples", "part_of_speech", "pronunciation"}
)


def normalize_word(word: str) -> str:
    return " ".join(word.split()).lower()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ============================================================================
# Repository
# ============================================================================


class VocabularyRepository(BaseRepository[VocabularyItem]):
    """Data access for vocabulary items; archived rows are excluded by default."""

    async def find_active_duplicate(
        self, session: AsyncSession, user_id: int, word_key: str, language: str
    ) -> Optional[VocabularyItem]:
        return await self.find_one_where(
            session,
            VocabularyItem.user_id == user_id,
            VocabularyItem.word_key == word_key,
            VocabularyItem.language == language,
            VocabularyItem.is_archived.is_(False),
        )

    async def find_due(
        self, session: AsyncSession, user_id: int, now: datetime, limit: int
    ) -> List[VocabularyItem]:
        return await self.find_many_where(
            session,
            VocabularyItem.user_id == user_id,
            VocabularyItem.is_archived.is_(False),
            VocabularyItem.next_review <= now,
            order_by=[
                VocabularyItem.next_review.asc(),
                VocabularyItem.srs_level.asc(),
                VocabularyItem.id.asc(),
            ],
            limit=limit,
        )

    async def next_review_times(
        self, session: AsyncSession, user_id: int, start: datetime, end: datetime
    ) -> List[datetime]:
        stmt = select(VocabularyItem.next_review).where(
            VocabularyItem.user_id == user_id,
            VocabularyItem.is_archived.is_(False),
            VocabularyItem.next_review >= start,
            VocabularyItem.next_review < end,
        )
        result = await session.execute(stmt)
        times = list(result.scalars().all())

        self.log.debug(
            "Repository.next_review_times: VocabularyItem",
            extra={"model": "VocabularyItem", "found_count": len(times)},
        )
        return times

    async def level_counts(self, session: AsyncSession, user_id: int) -> Dict[int, int]:
        stmt = (
            select(VocabularyItem.srs_level, func.count())
            .where(
                VocabularyItem.user_id == user_id,
                VocabularyItem.is_archived.is_(False),
            )
            .group_by(VocabularyItem.srs_level)
        )
        result = await session.execute(stmt)
        return {int(level): int(count) for level, count in result.all()}


# ============================================================================
# SrsService
# ============================================================================


class SrsService(BaseService):
    """
    Spaced-repetition scheduler over persisted vocabulary items.

    Public Methods
    --------------
    - add_vocabulary() / get_vocabulary() / update_vocabulary() / archive_vocabulary()
    - search_vocabulary()
    - review() -> ReviewResult
    - due_for_review() / review_forecast() / review_stats() / srs_distribution()
    """

    def __init__(
        self,
        config: Any,
        event_bus: EventBus,
        logger: Logger,
        clock: Clock,
    ) -> None:
        super().__init__(config, event_bus, logger)
        self.clock = clock

        self._vocabulary_repo = VocabularyRepository(
            model_class=VocabularyItem,
            logger=get_logger(f"{__name__}.VocabularyRepository"),
        )

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _user_timezone(self, session: AsyncSession, user_id: int) -> tzinfo:
        result = await session.execute(
            select(UserProgression.timezone).where(UserProgression.user_id == user_id)
        )
        name = result.scalar_one_or_none()
        return resolve_timezone(name or self.get_config("DEFAULT_TIMEZONE", "UTC"))

    async def _load_active_for_update(
        self, session: AsyncSession, item_id: int
    ) -> VocabularyItem:
        item = await self._vocabulary_repo.get_for_update(session, item_id)
        if item is None or item.is_archived:
            raise ItemNotFoundError(item_id)
        return item

    # ========================================================================
    # PUBLIC API - Vocabulary Management
    # ========================================================================

    async def add_vocabulary(
        self,
        user_id: int,
        word: str,
        translation: str,
        language: str,
        native_language: Optional[str] = None,
        *,
        part_of_speech: Optional[str] = None,
        pronunciation: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        examples: Optional[List[Dict[str, Any]]] = None,
        source: str = "manual",
    ) -> Dict[str, Any]:
        """
        Save a new word for a user; it is due for review immediately.

        Raises:
            ValidationError: If word, translation or language is empty
            DuplicateVocabularyError: If the user already keeps this word
        """
        self.validate_positive_int(user_id, "user_id")
        for name, value in (("word", word), ("translation", translation), ("language", language)):
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(name, f"{name} cannot be empty")

        word = word.strip()
        language = language.strip().lower()
        word_key = normalize_word(word)

        self.log_operation("add_vocabulary", user_id=user_id, language=language)

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction("VocabularyItem") as session:
                existing = await self._vocabulary_repo.find_active_duplicate(
                    session, user_id, word_key, language
                )
                if existing is not None:
                    raise DuplicateVocabularyError(user_id, word, language)

                now = self.clock.now()
                item = VocabularyItem(
                    user_id=user_id,
                    word=word,
                    word_key=word_key,
                    translation=translation.strip(),
                    language=language,
                    native_language=native_language,
                    part_of_speech=part_of_speech,
                    pronunciation=pronunciation,
                    notes=notes,
                    tags=sorted({t.strip().lower() for t in tags or [] if t.strip()}),
                    examples=list(examples or []),
                    source=source,
                    next_review=now,
                    created_at=now,
                    updated_at=now,
                )
                self._vocabulary_repo.add(session, item)
                await self._vocabulary_repo.flush(session)
                return item.to_dict()

        data = await self.run_with_retry(
            operation,
            operation_name="srs.add_vocabulary",
            context={"user_id": user_id},
        )

        await self.emit_event(
            "vocabulary.added",
            {
                "user_id": user_id,
                "item_id": data["id"],
                "word": data["word"],
                "language": data["language"],
            },
        )
        return data

    async def get_vocabulary(self, item_id: int) -> Dict[str, Any]:
        """
        Raises:
            ItemNotFoundError: If the item does not exist or is archived
        """
        async with DatabaseService.get_session() as session:
            item = await self._vocabulary_repo.get(session, item_id)
            if item is None or item.is_archived:
                raise ItemNotFoundError(item_id)
            return item.to_dict()

    async def update_vocabulary(self, item_id: int, **fields: Any) -> Dict[str, Any]:
        """
        Edit descriptive fields. SRS state can only change through ``review``.

        Raises:
            ValidationError: If a field is not editable
            ItemNotFoundError: If the item does not exist or is archived
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(
                "fields", f"not editable: {', '.join(sorted(unknown))}"
            )
        if "tags" in fields:
            fields["tags"] = sorted(
                {t.strip().lower() for t in fields["tags"] or [] if t.strip()}
            )

        self.log_operation("update_vocabulary", item_id=item_id, fields=sorted(fields))

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction("VocabularyItem") as session:
                item = await self._load_active_for_update(session, item_id)
                for name, value in fields.items():
                    setattr(item, name, value)
                item.updated_at = self.clock.now()
                await self._vocabulary_repo.flush(session)
                return item.to_dict()

        return await self.run_with_retry(
            operation,
            operation_name="srs.update_vocabulary",
            context={"item_id": item_id},
        )

    async def archive_vocabulary(self, item_id: int) -> Dict[str, Any]:
        """
        Soft-delete an item. Archiving an archived item is a no-op.

        Raises:
            ItemNotFoundError: If the item does not exist
        """
        self.log_operation("archive_vocabulary", item_id=item_id)

        async def operation() -> Dict[str, Any]:
            async with DatabaseService.get_transaction("VocabularyItem") as session:
                item = await self._vocabulary_repo.get_for_update(session, item_id)
                if item is None:
                    raise ItemNotFoundError(item_id)
                if not item.is_archived:
                    now = self.clock.now()
                    item.is_archived = True
                    item.archived_at = now
                    item.updated_at = now
                    await self._vocabulary_repo.flush(session)
                return item.to_dict()

        return await self.run_with_retry(
            operation,
            operation_name="srs.archive_vocabulary",
            context={"item_id": item_id},
        )

    async def search_vocabulary(
        self,
        user_id: int,
        query: Optional[str] = None,
        *,
        language: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        srs_level: Optional[int] = None,
        is_mastered: Optional[bool] = None,
        is_favorite: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """
        Search a user's active vocabulary, newest first.

        ``query`` matches word, translation or notes case-insensitively;
        ``tags`` matches items carrying any of the given tags.

        Returns:
            ``{"items": [...], "total": int, "has_more": bool}``
        """
        self.validate_positive_int(limit, "limit")
        self.validate_non_negative_int(offset, "offset")

        conditions = [
            VocabularyItem.user_id == user_id,
            VocabularyItem.is_archived.is_(False),
        ]
        if query:
            pattern = f"%{_escape_like(query.strip())}%"
            conditions.append(
                or_(
                    VocabularyItem.word.ilike(pattern, escape="\\"),
                    VocabularyItem.translation.ilike(pattern, escape="\\"),
                    VocabularyItem.notes.ilike(pattern, escape="\\"),
                )
            )
        if language:
            conditions.append(VocabularyItem.language == language.lower())
        if srs_level is not None:
            conditions.append(VocabularyItem.srs_level == srs_level)
        if is_mastered is not None:
            conditions.append(VocabularyItem.is_mastered.is_(is_mastered))
        if is_favorite is not None:
            conditions.append(VocabularyItem.is_favorite.is_(is_favorite))

        order_by = [VocabularyItem.created_at.desc(), VocabularyItem.id.desc()]
        wanted_tags = {t.strip().lower() for t in tags or [] if t.strip()}

        async with DatabaseService.get_session() as session:
            if wanted_tags:
                # Tag membership lives in a JSON list; filter after loading
                candidates = await self._vocabulary_repo.find_many_where(
                    session, *conditions, order_by=order_by
                )
                matched = [i for i in candidates if wanted_tags.intersection(i.tags or [])]
                total = len(matched)
                page = matched[offset : offset + limit]
            else:
                total = await self._vocabulary_repo.count(session, *conditions)
                page = await self._vocabulary_repo.find_many_where(
                    session, *conditions, order_by=order_by, limit=limit, offset=offset
                )

            return {
                "items": [item.to_dict() for item in page],
                "total": total,
                "has_more": offset + len(page) < total,
            }

    # ========================================================================
    # PUBLIC API - Reviews
    # ========================================================================

    async def review(
        self,
        item_id: int,
        quality: int,
        response_time_ms: Optional[int] = None,
    ) -> ReviewResult:
        """
        Record one review of an item and reschedule it.

        This is a **write operation**: the row is locked, the card applies the
        SM-2 update and the whole change commits atomically.

        Raises:
            InvalidQualityError: If quality is not an int in 0..5 (checked first)
            ItemNotFoundError: If the item does not exist or is archived
            PersistenceConflictError: If retries are exhausted under contention
        """
        VocabularyCard.validate_quality(quality)
        if response_time_ms is not None:
            self.validate_non_negative_int(response_time_ms, "response_time_ms")

        self.log_operation("review", item_id=item_id, quality=quality)

        async def operation() -> Tuple[ReviewResult, List[DomainEvent]]:
            async with DatabaseService.get_transaction("VocabularyItem") as session:
                item = await self._load_active_for_update(session, item_id)

                card = VocabularyCard.from_db(item)
                result = card.review(quality, self.clock.now(), response_time_ms)

                for name, value in card.to_db_updates().items():
                    setattr(item, name, value)
                item.updated_at = self.clock.now()

                return result, card.clear_domain_events()

        result, events = await self.run_with_retry(
            operation,
            operation_name="srs.review",
            context={"item_id": item_id},
        )

        await self.publish_domain_events(events)

        if result.just_mastered:
            self.log.info(
                "Vocabulary item mastered",
                extra={"item_id": item_id, "operation": "review"},
            )
        return result

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def due_for_review(
        self, user_id: int, limit: int = DEFAULT_DUE_LIMIT
    ) -> List[Dict[str, Any]]:
        """
        Active items whose next review is due, oldest due first, then lowest
        SRS level first.
        """
        self.validate_positive_int(limit, "limit")

        async with DatabaseService.get_session() as session:
            items = await self._vocabulary_repo.find_due(
                session, user_id, self.clock.now(), limit
            )
            return [item.to_dict() for item in items]

    async def review_forecast(
        self, user_id: int, days: int = DEFAULT_FORECAST_DAYS
    ) -> List[Dict[str, Any]]:
        """
        Number of items falling due on each of the next ``days`` local days.

        Day 0 is today; days with nothing due report a count of 0.

        Example:
            >>> await srs.review_forecast(7, days=3)
            [{'date': '2025-03-01', 'count': 4}, {'date': '2025-03-02', 'count': 0}, ...]
        """
        self.validate_range(days, "days", 0, MAX_FORECAST_DAYS)
        if days == 0:
            return []

        async with DatabaseService.get_session() as session:
            tz = await self._user_timezone(session, user_id)
            today = self.clock.today(tz)
            start, _ = local_day_bounds(today, tz)
            _, end = local_day_bounds(today + timedelta(days=days - 1), tz)

            due_times = await self._vocabulary_repo.next_review_times(
                session, user_id, start, end
            )

        counts = Counter(t.astimezone(tz).date() for t in due_times)
        return [
            {
                "date": (today + timedelta(days=offset)).isoformat(),
                "count": counts.get(today + timedelta(days=offset), 0),
            }
            for offset in range(days)
        ]

    async def review_stats(self, user_id: int) -> Dict[str, Any]:
        """
        Aggregate review statistics over the user's active items.

        ``learning`` counts items between level 1 and 8; ``due_today`` counts
        items falling due within today's local day; ``accuracy`` is a
        percentage over all recorded reviews.
        """
        async with DatabaseService.get_session() as session:
            tz = await self._user_timezone(session, user_id)
            now = self.clock.now()
            day_start, day_end = local_day_bounds(self.clock.today(tz), tz)

            def count_if(condition: Any) -> Any:
                return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

            stmt = select(
                func.count(VocabularyItem.id),
                count_if(VocabularyItem.is_mastered.is_(True)),
                count_if(
                    (VocabularyItem.srs_level > 0)
                    & (VocabularyItem.srs_level < MAX_SRS_LEVEL)
                ),
                count_if(VocabularyItem.srs_level == 0),
                count_if(VocabularyItem.next_review <= now),
                count_if(
                    (VocabularyItem.next_review >= day_start)
                    & (VocabularyItem.next_review < day_end)
                ),
                func.coalesce(func.sum(VocabularyItem.total_reviews), 0),
                func.coalesce(func.sum(VocabularyItem.correct_reviews), 0),
            ).where(
                VocabularyItem.user_id == user_id,
                VocabularyItem.is_archived.is_(False),
            )
            row = (await session.execute(stmt)).one()

        total, mastered, learning, new, due_now, due_today, reviews, correct = (
            int(value or 0) for value in row
        )
        return {
            "total": total,
            "mastered": mastered,
            "learning": learning,
            "new": new,
            "due_now": due_now,
            "due_today": due_today,
            "total_reviews": reviews,
            "correct_reviews": correct,
            "accuracy": round(correct / reviews * 100, 2) if reviews else 0.0,
        }

    async def srs_distribution(self, user_id: int) -> Dict[int, int]:
        """Active item count per SRS level, zero-filled for levels 0..9."""
        async with DatabaseService.get_session() as session:
            counts = await self._vocabulary_repo.level_counts(session, user_id)
        return {level: counts.get(level, 0) for level in range(MAX_SRS_LEVEL + 1)}
