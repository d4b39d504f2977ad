"""
Base exception classes for application-wide error handling.

Every domain error carries a machine-readable code and a ``retryable`` flag.
The flag is what asynchronous consumers (Celery tasks, webhook intake) use
to decide between acknowledging a message and asking for redelivery.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed or missing input
    ├── NotFoundError - Referenced record does not exist
    ├── ConflictError - State conflicts (duplicates, invalid transitions)
    └── ServiceUnavailableError - Transient infrastructure failures (retryable)

Usage:
    from core.exceptions import ValidationError, ServiceUnavailableError

    raise ValidationError(
        "Webhook metadata is invalid",
        error_code="INVALID_METADATA",
        details={"creator_id": ["Must be a valid UUID."]},
    )

    try:
        ...
    except BaseApplicationError as e:
        if e.retryable:
            raise
        logger.warning(str(e), extra=e.to_dict())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for log filtering and callers
        details: Additional error context (field errors, identifiers)
        retryable: Whether retrying the same operation later may succeed
    """

    default_error_code: str = "APPLICATION_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to a dictionary.

        Returns:
            Dict with error, error_code and (when present) details keys
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for malformed payloads, missing required identifiers and values
    outside their allowed domain. Never retryable: the same input fails
    the same way every time.
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a referenced record does not exist."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current state.

    Use for:
    - Invalid state transitions
    - Optimistic locking failures
    - Lock contention
    """

    default_error_code: str = "CONFLICT"


class ServiceUnavailableError(BaseApplicationError):
    """
    Raised when required infrastructure is temporarily unreachable.

    Datastore outages and an unreachable lock backend land here. These are
    the only errors that should cause an inbound message to be redelivered.
    """

    default_error_code: str = "SERVICE_UNAVAILABLE"
    retryable: bool = True


__all__ = [
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ServiceUnavailableError",
]
