"""
Unit tests for DatabaseRetryPolicy.

Operations are plain coroutines; ``asyncio.sleep`` is patched out so the
backoff schedule can be asserted without waiting.
"""

import pytest
from sqlalchemy.exc import OperationalError

from progression_engine.core.database.retry_policy import (
    DatabaseRetryConfig,
    DatabaseRetryPolicy,
)
from progression_engine.modules.shared.exceptions import (
    ItemNotFoundError,
    PersistenceConflictError,
)


def make_policy(max_attempts: int = 3, jitter_ms: int = 0) -> DatabaseRetryPolicy:
    return DatabaseRetryPolicy(
        DatabaseRetryConfig(
            max_attempts=max_attempts,
            initial_backoff_ms=10,
            max_backoff_ms=25,
            jitter_ms=jitter_ms,
        )
    )


class FlakyOperation:
    """Fails with ``error`` for the first ``failures`` calls."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


@pytest.fixture
def sleep(mocker):
    return mocker.patch(
        "progression_engine.core.database.retry_policy.asyncio.sleep",
        new=mocker.AsyncMock(),
    )


@pytest.mark.unit
class TestRetryPolicy:
    """Retry decisions and backoff."""

    async def test_conflict_is_retried_until_success(self, sleep):
        # Arrange
        operation = FlakyOperation(2, PersistenceConflictError("UserProgression"))

        # Act
        result = await make_policy().execute(operation, operation_name="test.op")

        # Assert
        assert result == "done"
        assert operation.calls == 3
        assert sleep.await_count == 2

    async def test_operational_error_is_retried(self, sleep):
        operation = FlakyOperation(
            1, OperationalError("UPDATE", {}, Exception("database is locked"))
        )

        assert await make_policy().execute(operation, operation_name="test.op") == "done"
        assert operation.calls == 2

    async def test_exhaustion_raises_last_error(self, sleep):
        operation = FlakyOperation(10, PersistenceConflictError("VocabularyItem"))

        with pytest.raises(PersistenceConflictError):
            await make_policy(max_attempts=3).execute(operation, operation_name="test.op")

        assert operation.calls == 3

    async def test_non_retriable_error_raises_immediately(self, sleep):
        operation = FlakyOperation(1, ItemNotFoundError(9))

        with pytest.raises(ItemNotFoundError):
            await make_policy().execute(operation, operation_name="test.op")

        assert operation.calls == 1
        sleep.assert_not_awaited()

    def test_backoff_doubles_and_caps(self):
        policy = make_policy()

        assert policy._compute_backoff_ms(1) == 10
        assert policy._compute_backoff_ms(2) == 20
        assert policy._compute_backoff_ms(3) == 25
        assert policy._compute_backoff_ms(8) == 25

    def test_jitter_is_bounded(self):
        policy = make_policy(jitter_ms=5)

        for _ in range(50):
            assert 10 <= policy._compute_backoff_ms(1) <= 15

    def test_from_config_reads_config(self, test_config):
        policy = DatabaseRetryPolicy.from_config()

        assert policy.config.max_attempts == test_config.DATABASE_RETRY_MAX_ATTEMPTS
        assert policy.config.initial_backoff_ms == 2
