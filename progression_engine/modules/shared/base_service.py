"""
Base Service Foundation

Purpose
-------
Foundational class for all progression services. Services implement business
rules, own transactions (through DatabaseService), wrap write operations in the
retry policy and emit domain events after commit.

Design Notes
------------
This base class provides:
- Structured logging with operation context (LogContext around each operation)
- Safe config access
- Event emission helpers (including draining aggregate events)
- Retry wrapper for read-modify-write operations
- Input validation helpers raising ``ValidationError``

What this class does NOT do:
- Open sessions itself
- Contain progression rules (those live in domain models)

Usage
-----
    class SrsService(BaseService):
        def __init__(self, config, event_bus, logger, clock):
            super().__init__(config, event_bus, logger)
            self.clock = clock
"""

from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    Optional,
    TypeVar,
)

from progression_engine.core.database.retry_policy import (
    DatabaseRetryConfig,
    DatabaseRetryPolicy,
)
from progression_engine.core.logging.logger import LogContext
from progression_engine.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from progression_engine.core.event.bus import EventBus
    from progression_engine.domain.models.base import DomainEvent

T = TypeVar("T")


class BaseService:
    """
    Base class for all domain services.

    Args:
        config: Configuration source exposing ``get(key, default)``
        event_bus: Event bus for cross-module communication
        logger: Structured logger instance
    """

    def __init__(self, config: Any, event_bus: EventBus, logger: Logger) -> None:
        self._config = config
        self._events = event_bus
        self.log = logger
        self._retry_policy = DatabaseRetryPolicy(
            DatabaseRetryConfig(
                max_attempts=max(1, int(self.get_config("DATABASE_RETRY_MAX_ATTEMPTS", 5))),
                initial_backoff_ms=int(
                    self.get_config("DATABASE_RETRY_INITIAL_BACKOFF_MS", 20)
                ),
                max_backoff_ms=int(self.get_config("DATABASE_RETRY_MAX_BACKOFF_MS", 500)),
                jitter_ms=int(self.get_config("DATABASE_RETRY_JITTER_MS", 20)),
            )
        )

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Safely retrieve a configuration value.

        Raises:
            ValidationError: If required=True and the key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ValidationError(key, f"Required configuration key '{key}' is missing")
        return value

    async def run_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Run a transaction-owning operation, retrying lost races.

        Every record logged while it runs (including retry warnings) carries
        the user and operation name from ``context``.
        """
        context = context or {}
        async with LogContext(
            user_id=context.get("user_id"),
            component=type(self).__name__,
            operation=operation_name,
        ):
            return await self._retry_policy.execute(
                operation, operation_name=operation_name, context=context
            )

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Emit a domain event for cross-module communication.

        Args:
            event_type: Type/name of the event
            data: Event payload data
            context: Optional additional context (user_id, item_id, etc.)
        """
        await self._events.publish(event_type, {**data, **(context or {})})

    async def publish_domain_events(self, events: Iterable[DomainEvent]) -> None:
        """Publish events drained from an aggregate after its transaction committed."""
        for event in events:
            await self.emit_event(event.event_name, event.payload)

    def log_operation(self, operation: str, **context: Any) -> None:
        """
        Log a service operation with structured context.
        """
        with LogContext(
            user_id=context.get("user_id"),
            component=type(self).__name__,
            operation=operation,
        ):
            self.log.info(
                f"Service operation: {operation}",
                extra={"operation": operation, **context},
            )

    def validate_positive_int(self, value: Any, name: str) -> None:
        """
        Raises:
            ValidationError: If value is not a positive integer
        """
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(name, f"{name} must be a positive integer, got {value!r}")

    def validate_non_negative_int(self, value: Any, name: str) -> None:
        """
        Raises:
            ValidationError: If value is not a non-negative integer
        """
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                name, f"{name} must be a non-negative integer, got {value!r}"
            )

    def validate_range(self, value: Any, name: str, min_val: int, max_val: int) -> None:
        """
        Validate that a value is an integer within ``[min_val, max_val]``.

        Raises:
            ValidationError: If value is not an integer or is out of range
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(name, f"{name} must be an integer, got {value!r}")
        if not (min_val <= value <= max_val):
            raise ValidationError(
                name,
                f"{name} must be between {min_val} and {max_val}, got {value}",
            )

    def validate_text(self, value: Any, name: str, max_length: int) -> None:
        """
        Raises:
            ValidationError: If value is not a non-blank string of at most
                ``max_length`` characters
        """
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(name, f"{name} must be a non-empty string")
        if len(value) > max_length:
            raise ValidationError(
                name, f"{name} must be at most {max_length} characters, got {len(value)}"
            )
