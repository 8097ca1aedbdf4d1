"""
Integration Tests for DatabaseService
=====================================

Purpose
-------
Test database operations against a real database: SQLite files by default,
PostgreSQL through testcontainers when PROGRESSION_TEST_POSTGRES=1.

Test Coverage
-------------
- Initialization, health check and schema creation
- Transaction commit and rollback
- Mapping of stale versions and duplicate keys to PersistenceConflictError
- The full write path on PostgreSQL (row locks, asyncpg driver)

Testing Strategy
----------------
- Each test gets a fresh database file
- Conflicts are produced with two overlapping sessions
"""

import asyncio

import pytest
from sqlalchemy import inspect, select, text

from progression_engine.core.database.service import (
    DatabaseNotInitializedError,
    DatabaseService,
)
from progression_engine.database.models import UserProgression, VocabularyItem
from progression_engine.modules.shared.exceptions import PersistenceConflictError

pytestmark = [pytest.mark.integration, pytest.mark.database]


# ============================================================================
# CONNECTION & SCHEMA
# ============================================================================


class TestDatabaseConnection:
    """Connection lifecycle and schema."""

    async def test_health_check(self, database):
        assert await DatabaseService.health_check()

    async def test_session_executes_queries(self, database):
        async with DatabaseService.get_session() as session:
            result = await session.execute(text("SELECT 1 AS value"))
            assert result.scalar_one() == 1

    async def test_schema_created(self, database):
        async with DatabaseService.get_session() as session:
            connection = await session.connection()
            tables = await connection.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )

        assert {"user_progression", "vocabulary_items", "activity_log"} <= set(tables)

    async def test_use_before_initialize(self):
        await DatabaseService.shutdown()

        assert not await DatabaseService.health_check()
        with pytest.raises(DatabaseNotInitializedError):
            async with DatabaseService.get_session():
                pass


# ============================================================================
# TRANSACTIONS
# ============================================================================


async def _progression_row(user_id: int) -> UserProgression:
    async with DatabaseService.get_session() as session:
        result = await session.execute(
            select(UserProgression).where(UserProgression.user_id == user_id)
        )
        return result.scalar_one()


class TestTransactions:
    """Commit, rollback and conflict mapping."""

    async def test_rollback_on_exception(self, database, clock):
        # Arrange
        item = VocabularyItem(
            user_id=1,
            word="hola",
            word_key="hola",
            translation="hello",
            language="es",
            next_review=clock.now(),
        )

        # Act
        with pytest.raises(RuntimeError):
            async with DatabaseService.get_transaction("VocabularyItem") as session:
                session.add(item)
                await session.flush()
                raise RuntimeError("abort")

        # Assert
        async with DatabaseService.get_session() as session:
            count = await session.execute(select(VocabularyItem.id))
            assert count.all() == []

    async def test_stale_version_is_a_conflict(self, progression):
        # Arrange
        await progression.award_xp(7, 10, "lesson_completed")
        row_id = (await _progression_row(7)).id

        # Act: the outer session writes after the inner one committed
        with pytest.raises(PersistenceConflictError) as exc_info:
            async with DatabaseService.get_transaction("UserProgression") as outer:
                stale = await outer.get(UserProgression, row_id)

                async with DatabaseService.get_transaction("UserProgression") as inner:
                    fresh = await inner.get(UserProgression, row_id)
                    fresh.total_xp = 500

                stale.total_xp = 20

        # Assert
        assert exc_info.value.details["resource"] == "UserProgression"
        assert (await _progression_row(7)).total_xp == 500

    async def test_duplicate_key_is_a_conflict(self, progression):
        await progression.award_xp(7, 10, "lesson_completed")
        existing = await _progression_row(7)

        with pytest.raises(PersistenceConflictError):
            async with DatabaseService.get_transaction("UserProgression") as session:
                session.add(
                    UserProgression(
                        user_id=7,
                        target_language=existing.target_language,
                        timezone=existing.timezone,
                        daily_goal=existing.daily_goal,
                        proficiency_level=existing.proficiency_level,
                        stats=dict(existing.stats),
                    )
                )


# ============================================================================
# POSTGRESQL
# ============================================================================


@pytest.mark.slow
class TestPostgres:
    """The write path on PostgreSQL with real row locks."""

    @pytest.fixture
    async def postgres(self, postgres_url):
        await DatabaseService.initialize(postgres_url)
        await DatabaseService.drop_schema()
        await DatabaseService.create_schema()
        try:
            yield postgres_url
        finally:
            await DatabaseService.shutdown()

    async def test_concurrent_awards_serialize(self, postgres, test_config, clock):
        from progression_engine.engine import ProgressionEngine

        engine = ProgressionEngine(config=test_config, clock=clock)

        await asyncio.gather(
            *(engine.award_xp(7, 5, "lesson_completed") for _ in range(20))
        )

        snapshot = await engine.get_progression(7)
        assert snapshot["total_xp"] == 100
        assert await DatabaseService.health_check()
