"""
Webhook event handlers for normalized provider events.

This module provides a handler registry and one handler per normalized
event type. A handler knows three things about its event:

- parse: validate the payload into a typed structure
- lock_key: which logical subscription the event mutates (None when the
  event does not touch a subscription, e.g. payouts)
- apply: the ledger write, run by the pipeline inside the lock and the
  transaction

The pipeline (payments.webhooks.pipeline) owns ordering, locking and
idempotency; handlers never acquire locks themselves.

Usage:
    from payments.webhooks.handlers import get_handler, register_handler

    @register_handler("custom.event")
    class CustomEventHandler(EventHandler):
        ...

    handler = get_handler("charge.succeeded")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from payments.exceptions import (
    InvalidStateTransitionError,
    PaymentError,
    PaymentNotFoundError,
    ReconciliationMismatchError,
)
from payments.ledger import LedgerWriter
from payments.locks import subscription_lock_key
from payments.pricing import charge_period_end, price_charge
from payments.services.reconciliation import PayoutReconciliationService
from payments.state_machines import SubscriptionStatus
from payments.state_machines.transitions import Create, resolve_charge_transition
from payments.webhooks.metadata import (
    parse_charge,
    parse_dispute,
    parse_payout,
    parse_refund,
    parse_subscription_event,
)

if TYPE_CHECKING:
    from payments.ledger import LedgerWriteResult
    from payments.models import Payment
    from payments.webhooks.metadata import (
        ChargeEvent,
        DisputeEvent,
        PayoutEvent,
        RefundEvent,
        SubscriptionEvent,
    )


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


class EventHandler:
    """Base class for event handlers."""

    event_type: str = ""

    def parse(self, payload: dict) -> Any:
        raise NotImplementedError

    def lock_key(self, parsed: Any) -> str | None:
        return None

    def apply(self, event_id: str, parsed: Any) -> LedgerWriteResult | None:
        raise NotImplementedError

    def after_commit(self, parsed: Any, result: LedgerWriteResult | None) -> None:
        """Best-effort work outside the financial transaction."""


# Maps event type strings to handler instances
WEBHOOK_HANDLERS: dict[str, EventHandler] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler class.

    Usage:
        @register_handler("charge.succeeded")
        class ChargeSucceededHandler(EventHandler):
            ...

    Args:
        event_type: Normalized event type (e.g., "charge.succeeded")

    Returns:
        Decorator function that registers the handler
    """

    def decorator(cls: type[EventHandler]) -> type[EventHandler]:
        handler = cls()
        handler.event_type = event_type
        WEBHOOK_HANDLERS[event_type] = handler
        logger.debug(f"Registered webhook handler for {event_type}")
        return cls

    return decorator


def get_handler(event_type: str) -> EventHandler | None:
    """Look up the handler for ``event_type``; None for unknown types."""
    return WEBHOOK_HANDLERS.get(event_type)


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.succeeded")
class ChargeSucceededHandler(EventHandler):
    """
    A payer was charged.

    Creates the subscription on first checkout, reactivates a canceled row,
    or renews a live one. Always writes a Payment row.
    """

    def parse(self, payload: dict) -> ChargeEvent:
        return parse_charge(payload)

    def lock_key(self, charge: ChargeEvent) -> str:
        return subscription_lock_key(
            charge.subscriber_id,
            charge.metadata.creator_id,
            charge.metadata.interval,
        )

    def apply(self, event_id: str, charge: ChargeEvent) -> LedgerWriteResult:
        existing = LedgerWriter.lock_subscription(
            charge.subscriber_id,
            charge.metadata.creator_id,
            charge.metadata.interval,
        )
        entry, terms = price_charge(event_id, charge, existing)
        transition = resolve_charge_transition(
            existing,
            terms,
            net_cents=entry.net_cents,
            period_end=charge_period_end(charge, terms.interval),
        )
        return LedgerWriter.record_charge(entry, transition, existing)

    def after_commit(self, charge: ChargeEvent, result: LedgerWriteResult | None) -> None:
        LedgerWriter.track_conversion(charge.metadata)


@register_handler("checkout.pending")
class CheckoutPendingHandler(ChargeSucceededHandler):
    """
    An asynchronous payment method started a checkout that is not paid yet.

    Creates a PENDING subscription and no Payment row. The later
    charge.succeeded activates it.
    """

    def apply(self, event_id: str, charge: ChargeEvent) -> LedgerWriteResult:
        existing = LedgerWriter.lock_subscription(
            charge.subscriber_id,
            charge.metadata.creator_id,
            charge.metadata.interval,
        )
        entry, terms = price_charge(event_id, charge, existing, pending=True)
        return LedgerWriter.record_charge(
            entry, Create(terms=terms, pending=True), existing
        )

    def after_commit(self, charge: ChargeEvent, result: LedgerWriteResult | None) -> None:
        pass


# =============================================================================
# Subscription Status Handlers
# =============================================================================


class SubscriptionStatusHandler(EventHandler):
    """Shared parsing and locking for events that only change status."""

    def parse(self, payload: dict) -> SubscriptionEvent:
        return parse_subscription_event(payload)

    def lock_key(self, event: SubscriptionEvent) -> str:
        return subscription_lock_key(event.subscriber_id, event.creator_id, event.interval)

    def locked_subscription(self, event: SubscriptionEvent):
        return LedgerWriter.lock_subscription(
            event.subscriber_id, event.creator_id, event.interval
        )


@register_handler("charge.failed")
class ChargeFailedHandler(SubscriptionStatusHandler):
    def apply(self, event_id: str, event: SubscriptionEvent) -> LedgerWriteResult:
        return LedgerWriter.record_failure(event_id, self.locked_subscription(event), event)


@register_handler("checkout.expired")
class CheckoutExpiredHandler(SubscriptionStatusHandler):
    """An unpaid checkout was abandoned: PENDING -> CANCELED."""

    def apply(self, event_id: str, event: SubscriptionEvent) -> LedgerWriteResult:
        subscription = self.locked_subscription(event)
        if subscription is not None and subscription.status != SubscriptionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Checkout expired for subscription in {subscription.status} state",
                details={
                    "subscription_id": str(subscription.id),
                    "current_status": subscription.status,
                    "transition": "cancel",
                },
            )
        return LedgerWriter.record_cancellation(event_id, subscription, event)


@register_handler("subscription.canceled")
class SubscriptionCanceledHandler(SubscriptionStatusHandler):
    def apply(self, event_id: str, event: SubscriptionEvent) -> LedgerWriteResult:
        return LedgerWriter.record_cancellation(
            event_id, self.locked_subscription(event), event
        )


@register_handler("subscription.paused")
class SubscriptionPausedHandler(SubscriptionStatusHandler):
    def apply(self, event_id: str, event: SubscriptionEvent) -> LedgerWriteResult:
        return LedgerWriter.record_pause(event_id, self.locked_subscription(event), event)


@register_handler("subscription.resumed")
class SubscriptionResumedHandler(SubscriptionStatusHandler):
    def apply(self, event_id: str, event: SubscriptionEvent) -> LedgerWriteResult:
        return LedgerWriter.record_resume(event_id, self.locked_subscription(event), event)


# =============================================================================
# Reversal Handlers
# =============================================================================


class ReversalHandler(EventHandler):
    """
    Shared handling for refunds and disputes.

    The original charge is looked up before locking so the lock key can be
    derived from its subscription. Payment rows are immutable, so the
    lookup cannot go stale.
    """

    def original_charge(self, provider_charge_id: str) -> Payment:
        return LedgerWriter.find_charge(provider_charge_id)

    def lock_key(self, parsed: tuple) -> str:
        _, original = parsed
        return original.subscription.lock_key


@register_handler("charge.refunded")
class ChargeRefundedHandler(ReversalHandler):
    def parse(self, payload: dict) -> tuple[RefundEvent, Payment]:
        refund = parse_refund(payload)
        return refund, self.original_charge(refund.provider_charge_id)

    def apply(self, event_id: str, parsed: tuple[RefundEvent, Payment]) -> LedgerWriteResult:
        refund, original = parsed
        return LedgerWriter.record_refund(event_id, original, refund)


@register_handler("dispute.created")
class DisputeCreatedHandler(ReversalHandler):
    def parse(self, payload: dict) -> tuple[DisputeEvent, Payment]:
        dispute = parse_dispute(payload)
        return dispute, self.original_charge(dispute.provider_charge_id)

    def apply(self, event_id: str, parsed: tuple[DisputeEvent, Payment]) -> LedgerWriteResult:
        dispute, original = parsed
        return LedgerWriter.record_dispute_opened(event_id, original, dispute)


@register_handler("dispute.closed")
class DisputeClosedHandler(ReversalHandler):
    def parse(self, payload: dict) -> tuple[DisputeEvent, Payment]:
        dispute = parse_dispute(payload, require_outcome=True)
        return dispute, self.original_charge(dispute.provider_charge_id)

    def apply(self, event_id: str, parsed: tuple[DisputeEvent, Payment]) -> LedgerWriteResult:
        dispute, original = parsed
        return LedgerWriter.record_dispute_closed(event_id, original, dispute)


# =============================================================================
# Payout Handlers
# =============================================================================


@register_handler("payout.paid")
class PayoutPaidHandler(EventHandler):
    """
    The provider confirmed a payout.

    Payouts are not subscription mutations; reconciliation runs in its own
    transaction with a row lock on the payout instead of the subscription
    lock.
    """

    def parse(self, payload: dict) -> PayoutEvent:
        return parse_payout(payload)

    def apply(self, event_id: str, payout: PayoutEvent) -> None:
        result = PayoutReconciliationService.confirm_payout(
            reference=payout.provider_reference,
            amount_cents=payout.amount_cents,
            currency=payout.currency,
            event_id=event_id,
        )
        if result:
            return None

        if result.error_code == PaymentNotFoundError.default_error_code:
            raise PaymentNotFoundError(result.error, details=result.errors)
        if result.error_code == ReconciliationMismatchError.default_error_code:
            raise ReconciliationMismatchError(result.error, details=result.errors)
        raise PaymentError(result.error, error_code=result.error_code)


__all__ = [
    "EventHandler",
    "WEBHOOK_HANDLERS",
    "get_handler",
    "register_handler",
]
