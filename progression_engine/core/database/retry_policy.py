"""
Database Retry Policy

Purpose
-------
Re-run whole database operations that lost a race or hit a transient failure,
with exponential backoff and jitter.

Retry Classification
--------------------
- Retriable: ``PersistenceConflictError`` (stale row version or duplicate-key
  race), ``OperationalError`` (connection drops, deadlocks, ``database is
  locked``) and any ``ProgressionError`` flagged ``is_retryable``
- Non-retriable: everything else (validation, not found, logic errors)

Backoff
-------
``min(initial * 2^(attempt-1), max) + random(0, jitter)`` milliseconds.

Transaction Ownership
---------------------
The operation must open its own transaction so every attempt starts from a
fresh read:

>>> async def operation():
>>>     async with DatabaseService.get_transaction() as session:
>>>         ...
>>>
>>> await retry_policy.execute(operation, operation_name="progression.award_xp")
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError

from progression_engine.core.config.config import Config
from progression_engine.core.logging.logger import get_logger
from progression_engine.modules.shared.exceptions import (
    PersistenceConflictError,
    is_transient_error,
)

logger = get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class DatabaseRetryConfig:
    """
    Configuration for database retry behavior.

    Attributes
    ----------
    max_attempts : int
        Maximum number of attempts (including initial attempt).
    initial_backoff_ms : int
        Initial backoff duration in milliseconds.
    max_backoff_ms : int
        Maximum backoff duration in milliseconds.
    jitter_ms : int
        Maximum random jitter to add to backoff in milliseconds.
    retriable_exceptions : Tuple[Type[BaseException], ...]
        Exception types considered retriable.
    """

    max_attempts: int
    initial_backoff_ms: int
    max_backoff_ms: int
    jitter_ms: int
    retriable_exceptions: Tuple[Type[BaseException], ...] = (
        PersistenceConflictError,
        OperationalError,
    )

    @classmethod
    def from_config(cls) -> DatabaseRetryConfig:
        """
        Build retry configuration from Config with safe defaults.

        Configuration Keys
        ------------------
        - DATABASE_RETRY_MAX_ATTEMPTS (default: 5)
        - DATABASE_RETRY_INITIAL_BACKOFF_MS (default: 20)
        - DATABASE_RETRY_MAX_BACKOFF_MS (default: 500)
        - DATABASE_RETRY_JITTER_MS (default: 20)
        """
        return cls(
            max_attempts=max(1, int(getattr(Config, "DATABASE_RETRY_MAX_ATTEMPTS", 5))),
            initial_backoff_ms=int(
                getattr(Config, "DATABASE_RETRY_INITIAL_BACKOFF_MS", 20)
            ),
            max_backoff_ms=int(getattr(Config, "DATABASE_RETRY_MAX_BACKOFF_MS", 500)),
            jitter_ms=int(getattr(Config, "DATABASE_RETRY_JITTER_MS", 20)),
        )


# ============================================================================
# Retry Policy
# ============================================================================


class DatabaseRetryPolicy:
    """
    Execute async database operations with retry semantics.

    Public API
    ----------
    - from_config() -> Create policy from Config
    - execute(operation, operation_name, context) -> Execute with retries
    """

    def __init__(self, config: DatabaseRetryConfig) -> None:
        self._config = config

    @classmethod
    def from_config(cls) -> DatabaseRetryPolicy:
        return cls(DatabaseRetryConfig.from_config())

    @property
    def config(self) -> DatabaseRetryConfig:
        return self._config

    def _is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, self._config.retriable_exceptions):
            return True
        return isinstance(exc, Exception) and is_transient_error(exc)

    def _compute_backoff_ms(self, attempt: int) -> int:
        """
        Compute backoff duration for given attempt with jitter.

        Parameters
        ----------
        attempt : int
            Current attempt number (1-indexed).
        """
        exponent = max(attempt - 1, 0)
        base = self._config.initial_backoff_ms * (2**exponent)
        capped = min(base, self._config.max_backoff_ms)

        jitter = (
            random.randint(0, self._config.jitter_ms)
            if self._config.jitter_ms > 0
            else 0
        )

        return capped + jitter

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[dict[str, Any]] = None,
    ) -> T:
        """
        Execute async operation with retry logic for transient failures.

        Parameters
        ----------
        operation : Callable[[], Awaitable[T]]
            Zero-argument async callable performing database work.
        operation_name : str
            Stable identifier for logging (e.g., "srs.review").
        context : Optional[dict[str, Any]]
            Additional structured context for logs.

        Returns
        -------
        T
            Result from successful operation execution.

        Raises
        ------
        BaseException
            The last exception when retries are exhausted, or the first
            non-retriable exception.
        """
        ctx_extra = context.copy() if context else {}
        ctx_extra["operation"] = operation_name

        attempt = 0

        while True:
            attempt += 1

            try:
                return await operation()

            except Exception as exc:
                error_type = type(exc).__name__
                retriable = self._is_retriable(exc)
                will_retry = retriable and attempt < self._config.max_attempts

                if not retriable:
                    raise

                if not will_retry:
                    logger.error(
                        "Database operation retries exhausted",
                        extra={
                            **ctx_extra,
                            "attempt": attempt,
                            "error_type": error_type,
                            "max_attempts": self._config.max_attempts,
                        },
                    )
                    raise

                backoff_ms = self._compute_backoff_ms(attempt)

                logger.info(
                    "Retrying database operation",
                    extra={
                        **ctx_extra,
                        "attempt": attempt,
                        "error_type": error_type,
                        "backoff_ms": backoff_ms,
                    },
                )

                await asyncio.sleep(backoff_ms / 1000.0)
