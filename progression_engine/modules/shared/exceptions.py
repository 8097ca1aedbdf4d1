"""
Domain exceptions for the progression engine.

Purpose
-------
Define the structured exception hierarchy raised by domain models and
services. Calling layers translate these into client errors (invalid input,
stale events, missing records) or transient errors (write conflicts).

Design Notes
------------
- All domain exceptions inherit from ``ProgressionError``.
- Each exception carries:
  - ``message``: human-readable description
  - ``details``: additional structured context (dict-like)
  - ``severity``: ``ErrorSeverity`` value for logging/alerting
  - ``is_retryable``: whether the whole operation can be retried
  - ``error_code``: short, stable identifier for programmatic use
- Helper functions (``is_transient_error``, ``get_error_severity``,
  ``should_alert``) centralize common exception handling patterns.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning
    INFO = "info"  # Normal operation (e.g., validation failures)
    WARNING = "warning"  # Concerning but handled (e.g., retryable errors)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # System-level failures requiring immediate action


class ProgressionError(Exception):
    """
    Base exception for all progression domain errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error (dict-like)
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise ProgressionError("Review failed", {"item_id": 7})
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


# ============================================================================
# Not Found
# ============================================================================


class NotFoundError(ProgressionError):
    """
    Raised when a requested record cannot be found.

    Args:
        resource_type: Type of resource (e.g., "VocabularyItem")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(
        self,
        resource_type: str,
        identifier: Optional[Any] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={
                "resource_type": resource_type,
                "identifier": identifier,
            },
            error_code=error_code or f"{resource_type.upper()}_NOT_FOUND",
        )


class ItemNotFoundError(NotFoundError):
    """Raised when a vocabulary item does not exist or is archived."""

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__("VocabularyItem", item_id, error_code="ITEM_NOT_FOUND")


class UserNotFoundError(NotFoundError):
    """Raised when a user has no progression record yet."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__("UserProgression", user_id, error_code="USER_NOT_FOUND")


# ============================================================================
# Validation
# ============================================================================


class ValidationError(ProgressionError):
    """
    Raised when caller input fails domain validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(
        self, field: str, message: str, error_code: Optional[str] = None
    ) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={
                "field": field,
                "validation_message": message,
            },
            error_code=error_code or f"VALIDATION_{field.upper()}",
        )


class InvalidQualityError(ValidationError):
    """Raised when a review quality rating is outside 0..5."""

    def __init__(self, quality: Any) -> None:
        self.quality = quality
        super().__init__(
            "quality",
            f"quality must be an integer between 0 and 5, got {quality!r}",
            error_code="INVALID_QUALITY",
        )


class DuplicateVocabularyError(ProgressionError):
    """Raised when a user saves a word they already keep in the same language."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, user_id: int, word: str, language: str) -> None:
        self.word = word
        self.language = language
        super().__init__(
            f"'{word}' ({language}) is already in the vocabulary list",
            details={"user_id": user_id, "word": word, "language": language},
            error_code="DUPLICATE_VOCABULARY",
        )


# ============================================================================
# Ordering & Concurrency
# ============================================================================


class StaleActivityError(ProgressionError):
    """
    Raised when an activity date precedes the last recorded activity day.

    Out-of-order events never move a streak backwards.
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO
    DEFAULT_RETRYABLE = False

    def __init__(self, activity_date: date, last_activity_date: date) -> None:
        self.activity_date = activity_date
        self.last_activity_date = last_activity_date
        super().__init__(
            f"Activity on {activity_date.isoformat()} is older than the last "
            f"recorded activity on {last_activity_date.isoformat()}",
            details={
                "activity_date": activity_date.isoformat(),
                "last_activity_date": last_activity_date.isoformat(),
            },
            error_code="STALE_ACTIVITY",
        )


class PersistenceConflictError(ProgressionError):
    """
    Raised when a concurrent write to the same record won the race.

    Nothing from the losing operation was applied; retry the whole operation.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, resource: str, reason: Optional[str] = None) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(
            f"Concurrent update conflict on {resource}",
            details={"resource": resource, "reason": reason},
            error_code="PERSISTENCE_CONFLICT",
        )


# ============================================================================
# Utility functions
# ============================================================================


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception represents an error that can be retried."""
    if isinstance(exc, ProgressionError):
        return exc.is_retryable
    return False


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Get the severity level of an exception for logging."""
    if isinstance(exc, ProgressionError):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    """True if severity is ERROR or CRITICAL."""
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
