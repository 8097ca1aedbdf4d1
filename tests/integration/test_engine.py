"""
Integration tests for the ProgressionEngine facade: lifecycle and the
delegating API end to end.
"""

import pytest

from progression_engine import ProgressionEngine

pytestmark = [pytest.mark.integration, pytest.mark.database]


@pytest.fixture
async def started_engine(tmp_path, test_config, event_bus, clock):
    engine = ProgressionEngine(config=test_config, event_bus=event_bus, clock=clock)
    await engine.initialize(
        f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}", create_schema=True
    )
    try:
        yield engine
    finally:
        await engine.shutdown()


class TestLifecycle:
    async def test_health_check(self, started_engine):
        health = await started_engine.health_check()

        assert health["initialized"] is True
        assert health["database"] is True

    async def test_initialize_is_idempotent(self, started_engine):
        await started_engine.initialize()

        assert (await started_engine.health_check())["database"]

    async def test_shutdown_releases_database(self, tmp_path, test_config, clock):
        engine = ProgressionEngine(config=test_config, clock=clock)
        await engine.initialize(
            f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}", create_schema=True
        )

        await engine.shutdown()

        health = await engine.health_check()
        assert health["initialized"] is False
        assert health["database"] is False


class TestFacade:
    """A learner's first day through the public API."""

    async def test_first_day(self, started_engine, recorder, clock):
        # Arrange
        engine = started_engine
        item = await engine.add_vocabulary(1, "hola", "hello", "es")

        # Act
        review = await engine.review(item["id"], 4)
        award = await engine.award_xp(1, 30, "lesson_completed")
        streak = await engine.record_activity(1)

        # Assert
        assert review.interval == 1
        assert award.new_level == 2
        assert streak.current_streak == 1
        assert await engine.due_for_review(1) == []

        forecast = await engine.review_forecast(1, days=2)
        assert [day["count"] for day in forecast] == [0, 1]

        dashboard = await engine.dashboard(1)
        assert dashboard["total_xp"] == 30
        assert dashboard["review_stats"]["learning"] == 1

        board = await engine.leaderboard("all_time")
        assert board[0]["user_id"] == 1

        summary = await engine.reset_window(1, "daily")
        assert summary["goal_met"]
        assert (await engine.get_progression(1))["daily_xp"] == 0
        assert "progression.leveled_up" in recorder.names()
