"""
Payment-specific exceptions for the webhook-to-ledger pipeline.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Referenced payment/subscription/payout missing
    ├── FeeCalculationError - Fee engine rejected its input
    └── ReconciliationMismatchError - Provider confirmation disagrees with ledger

    MetadataValidationError - Webhook payload failed schema validation
    └── MissingEventIdError - Event has no usable provider identifier

    InvalidStateTransitionError - Subscription transition not allowed (ConflictError)
    LockBackendUnavailableError - Lock backend unreachable (ServiceUnavailableError)

Acknowledgement policy:
    Every error here except LockBackendUnavailableError is permanent for the
    event that caused it, so the event is acknowledged and logged for manual
    review. Retryable errors propagate so the provider redelivers.

Usage:
    from payments.exceptions import MetadataValidationError

    raise MetadataValidationError(
        "Webhook metadata is invalid",
        details={"creator_id": ["Must be a valid UUID."]},
    )
"""

from __future__ import annotations

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)


# =============================================================================
# Payment Domain Errors
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for payment domain errors."""

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError, NotFoundError):
    """
    Raised when an event references a record the ledger does not have.

    Example: a refund for a charge that was never recorded, or a payout
    confirmation for an unknown transfer reference.
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class FeeCalculationError(PaymentError, ValidationError):
    """Raised when the fee engine receives input it cannot price."""

    default_error_code: str = "FEE_CALCULATION_ERROR"


class ReconciliationMismatchError(PaymentError):
    """
    Raised when a provider confirmation disagrees with the stored record.

    The record is moved to a needs-investigation status before this is
    raised; nothing is auto-corrected.
    """

    default_error_code: str = "RECONCILIATION_MISMATCH"


# =============================================================================
# Validation Errors
# =============================================================================


class MetadataValidationError(ValidationError):
    """Raised when a webhook payload does not match its schema."""

    default_error_code: str = "INVALID_METADATA"


class MissingEventIdError(MetadataValidationError):
    """
    Raised when an event has no usable provider event identifier.

    Financial idempotency cannot be guaranteed without one, so such events
    are rejected outright.
    """

    default_error_code: str = "MISSING_EVENT_ID"


# =============================================================================
# Concurrency / Infrastructure Errors
# =============================================================================


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a subscription transition is not allowed from its state.

    Example:
        raise InvalidStateTransitionError(
            "Cannot pause subscription in canceled state",
            details={"current_status": "canceled", "transition": "pause"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class LockBackendUnavailableError(ServiceUnavailableError):
    """Raised when the lock backend cannot be reached. Retryable."""

    default_error_code: str = "LOCK_BACKEND_UNAVAILABLE"


__all__ = [
    "PaymentError",
    "PaymentNotFoundError",
    "FeeCalculationError",
    "ReconciliationMismatchError",
    "MetadataValidationError",
    "MissingEventIdError",
    "InvalidStateTransitionError",
    "LockBackendUnavailableError",
]
