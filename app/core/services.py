"""
Base service layer patterns for business logic encapsulation.

This module provides:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with a transaction helper

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules)
    - Exceptions: Use for unexpected failures and anything that must abort
      an enclosing transaction

Usage:
    from core.services import BaseService, ServiceResult

    class PayoutReconciliationService(BaseService):
        @classmethod
        def confirm_payout(cls, reference: str) -> ServiceResult[Payout]:
            with cls.atomic():
                payout = Payout.objects.select_for_update().get(
                    provider_reference=reference
                )
                ...
            return ServiceResult.success(payout)

    result = PayoutReconciliationService.confirm_payout("trf_123")
    if not result:
        logger.warning(result.error, extra={"error_code": result.error_code})
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code
        errors: Field-level errors for validation failures
        retryable: Whether the failure is transient

    Usage:
        return ServiceResult.success(payment)
        return ServiceResult.failure("Payout not found", "PAYOUT_NOT_FOUND")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    retryable: bool = False

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        retryable: bool = False,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            errors: Field-level errors (for validation failures)
            retryable: Whether the caller may retry later

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            retryable=retryable,
        )

    @classmethod
    def from_exception(
        cls, exc: Exception, error_code: str | None = None
    ) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own code, field details and retry
        flag. Anything else falls back to the exception class name.

        Args:
            exc: The caught exception
            error_code: Optional override for the error code

        Returns:
            ServiceResult with error details from exception
        """
        if isinstance(exc, BaseApplicationError):
            errors = exc.details if exc.details and all(
                isinstance(v, list) for v in exc.details.values()
            ) else None
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
                errors=errors,
                retryable=exc.retryable,
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around ``transaction.atomic()`` that makes transaction
        boundaries explicit in service code.
        """
        with transaction.atomic():
            yield


__all__ = [
    "ServiceResult",
    "BaseService",
]
