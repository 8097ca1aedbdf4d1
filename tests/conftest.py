"""
Pytest Configuration and Fixtures
=================================

Purpose
-------
Shared fixtures for the progression engine test suite: configuration for a
test run, a throwaway SQLite database per test, a frozen clock, an event
recorder and fully wired services.

Architecture Notes
------------------
- Unit and domain tests need no database
- Integration tests get a fresh SQLite file (aiosqlite) per test
- ``postgres_url`` starts a PostgreSQL testcontainer only when
  ``PROGRESSION_TEST_POSTGRES=1``
- Services share one ``FrozenClock`` so calendar logic is deterministic
"""

from __future__ import annotations

import os

# Environment must be in place before Config loads on import
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, Generator, List, Tuple

import pytest
import pytest_asyncio

from progression_engine.core.clock import FrozenClock
from progression_engine.core.config.config import Config
from progression_engine.core.database.service import DatabaseService
from progression_engine.core.event.bus import EventBus
from progression_engine.core.logging.logger import get_logger
from progression_engine.engine import ProgressionEngine

logger = get_logger(__name__)

START = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)

EVENT_NAMES = (
    "vocabulary.added",
    "vocabulary.reviewed",
    "vocabulary.mastered",
    "progression.xp_awarded",
    "progression.leveled_up",
    "progression.streak_updated",
    "progression.streak_freeze_used",
    "progression.window_reset",
)


# ============================================================================
# CONFIGURATION
# ============================================================================


@pytest.fixture(autouse=True)
def test_config(monkeypatch) -> Any:
    """
    Test-run configuration: fast retries, generous attempt budget.

    Scope: function (monkeypatch restores the class attributes)
    """
    monkeypatch.setattr(Config, "ENVIRONMENT", "testing")
    monkeypatch.setattr(Config, "LOG_TO_FILE", False)
    monkeypatch.setattr(Config, "DATABASE_RETRY_MAX_ATTEMPTS", 10)
    monkeypatch.setattr(Config, "DATABASE_RETRY_INITIAL_BACKOFF_MS", 2)
    monkeypatch.setattr(Config, "DATABASE_RETRY_MAX_BACKOFF_MS", 50)
    monkeypatch.setattr(Config, "DATABASE_RETRY_JITTER_MS", 5)
    monkeypatch.setattr(Config, "DEFAULT_TIMEZONE", "UTC")
    monkeypatch.setattr(Config, "DEFAULT_DAILY_GOAL", "regular")
    monkeypatch.setattr(Config, "DEFAULT_TARGET_LANGUAGE", "es")
    return Config


@pytest.fixture
def mock_config(mocker):
    """
    Config double whose ``get`` returns the supplied default.

    Uses: unit tests of services that never touch the database
    """
    config = mocker.MagicMock()
    config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    return config


# ============================================================================
# CLOCK & EVENTS
# ============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    """Monday 2025-03-10 12:00 UTC."""
    return FrozenClock(START)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


class EventRecorder:
    """Collects ``(event_name, payload)`` pairs published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        for name in EVENT_NAMES:
            bus.subscribe(name, self._recorder(name), identifier=f"recorder:{name}")

    def _recorder(self, name: str):
        async def record(payload: Dict[str, Any]) -> None:
            self.events.append((name, payload))

        return record

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> List[Dict[str, Any]]:
        return [payload for event_name, payload in self.events if event_name == name]


@pytest.fixture
def recorder(event_bus: EventBus) -> EventRecorder:
    return EventRecorder(event_bus)


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Uses: unit tests that assert on publishing without listeners
    """
    bus = mocker.MagicMock()
    bus.publish = mocker.AsyncMock(return_value=[])
    bus.subscribe = mocker.MagicMock()
    return bus


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture(scope="session")
def postgres_url() -> Generator[str, None, None]:
    """
    PostgreSQL testcontainer URL (asyncpg driver).

    Scope: session. Skipped unless PROGRESSION_TEST_POSTGRES=1.
    """
    if os.getenv("PROGRESSION_TEST_POSTGRES") != "1":
        pytest.skip("PostgreSQL tests disabled (set PROGRESSION_TEST_POSTGRES=1)")

    from testcontainers.postgres import PostgresContainer

    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    container.start()
    try:
        yield container.get_connection_url()
    finally:
        logger.info("Stopping PostgreSQL testcontainer...")
        container.stop()


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[str, None]:
    """
    Fresh SQLite database file with the full schema.

    Scope: function (clean slate per test)
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'progression.db'}"
    await DatabaseService.initialize(url)
    await DatabaseService.create_schema()
    try:
        yield url
    finally:
        await DatabaseService.shutdown()


# ============================================================================
# SERVICES
# ============================================================================


@pytest.fixture
def engine(database, test_config, event_bus, clock) -> ProgressionEngine:
    """Engine wired to the test database, bus and clock."""
    return ProgressionEngine(config=test_config, event_bus=event_bus, clock=clock)


@pytest.fixture
def srs(engine):
    return engine.srs


@pytest.fixture
def progression(engine):
    return engine.progression


@pytest.fixture
def dashboards(engine):
    return engine.dashboards


@pytest.fixture
def tracker(engine):
    return engine.tracker


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def assert_domain_event_emitted(aggregate, event_name: str) -> bool:
    """
    True when an aggregate has a pending event with the given name.

    Usage:
        card.review(5, now)
        assert assert_domain_event_emitted(card, "vocabulary.reviewed")
    """
    return any(event.event_name == event_name for event in aggregate.get_pending_events())


def get_domain_event_payload(aggregate, event_name: str) -> Dict[str, Any] | None:
    for event in aggregate.get_pending_events():
        if event.event_name == event_name:
            return event.payload
    return None
