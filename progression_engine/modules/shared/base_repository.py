"""
Base Repository Pattern

Purpose
-------
Type-safe, generic repository abstraction over SQLAlchemy 2.0 async sessions.
Repositories encapsulate data access and expose a consistent CRUD interface.

Design Notes
------------
- Pessimistic locking through ``for_update`` (ignored by SQLite, which
  serializes writers on its own)
- No business logic and no transaction management
- Every call logs at debug level with structured ``extra``

Usage
-----
    class VocabularyRepository(BaseRepository[VocabularyItem]):
        async def find_due(self, session, user_id, now, limit):
            return await self.find_many_where(
                session,
                VocabularyItem.user_id == user_id,
                VocabularyItem.next_review <= now,
                order_by=[VocabularyItem.next_review],
                limit=limit,
            )
"""

from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    List,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

from sqlalchemy import func, select

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Generic base repository for type-safe database operations.

    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """Get a single record by primary key (no lock)."""
        instance = await session.get(self.model_class, id_value)

        self.log.debug(
            f"Repository.get: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": id_value,
                "found": instance is not None,
            },
        )
        return instance

    async def get_for_update(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """
        Get a single record by primary key with SELECT FOR UPDATE lock.

        Always re-reads the row so the caller works on the latest committed
        version, even if the instance is already in the session.
        """
        stmt = (
            select(self.model_class)
            .where(self.model_class.id == id_value)  # type: ignore[attr-defined]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        instance = result.scalar_one_or_none()

        self.log.debug(
            f"Repository.get_for_update: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": id_value,
                "found": instance is not None,
                "locked": True,
            },
        )
        return instance

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        for_update: bool = False,
    ) -> Optional[T]:
        """
        Find a single record matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            for_update: If True, use SELECT FOR UPDATE
        """
        stmt = select(self.model_class).where(*conditions)

        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)

        result = await session.execute(stmt)
        instance = result.scalars().first()

        self.log.debug(
            f"Repository.find_one_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found": instance is not None,
                "locked": for_update,
            },
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        order_by: Optional[Sequence[Any]] = None,
        for_update: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[T]:
        """
        Find multiple records matching conditions.

        Args:
            session: Database session
            *conditions: SQLAlchemy filter conditions
            order_by: Optional ordering clauses
            for_update: If True, use SELECT FOR UPDATE
            limit: Optional maximum number of results
            offset: Optional number of rows to skip
        """
        stmt = select(self.model_class).where(*conditions)

        if order_by:
            stmt = stmt.order_by(*order_by)
        if for_update:
            stmt = stmt.with_for_update()
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        result = await session.execute(stmt)
        instances = list(result.scalars().all())

        self.log.debug(
            f"Repository.find_many_where: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "found_count": len(instances),
                "locked": for_update,
                "limit": limit,
            },
        )
        return instances

    async def exists(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> bool:
        """True if at least one record matches."""
        return await self.count(session, *conditions) > 0

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        """Count records matching conditions."""
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        result = await session.execute(stmt)
        count = int(result.scalar_one())

        self.log.debug(
            f"Repository.count: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__, "count": count},
        )
        return count

    def add(self, session: AsyncSession, instance: T) -> T:
        """Add a new instance to the session (flushed on commit)."""
        session.add(instance)

        self.log.debug(
            f"Repository.add: {self.model_class.__name__}",
            extra={"model": self.model_class.__name__},
        )
        return instance

    async def flush(self, session: AsyncSession) -> None:
        """Flush pending changes so generated keys become available."""
        await session.flush()
