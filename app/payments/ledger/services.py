"""
Ledger writer: the single transactional path that mutates subscriptions
and payments.

Each public method is one atomic unit. It applies a subscription transition,
inserts the immutable Payment row (if the event moved money), records the
optional DisputeEvidence, and writes the primary ActivityEvent that carries
the provider event id. Any failure rolls the whole unit back.

Callers must hold the subscription lock and must have re-checked
idempotency inside it before calling in.

Usage:
    from payments.ledger import LedgerWriter

    with transaction.atomic():
        subscription = LedgerWriter.lock_subscription(subscriber_id, creator_id, "month")
        transition = resolve_charge_transition(subscription, terms, net, period_end)
        result = LedgerWriter.record_charge(entry, transition, subscription)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from django.db import DatabaseError, transaction
from django.db.models import Sum
from django.utils import timezone

from payments.exceptions import PaymentError, PaymentNotFoundError
from payments.fees.calculator import round_half_up
from payments.models import (
    ActivityEvent,
    ActivityType,
    CheckoutView,
    DisputeEvidence,
    Payment,
    Subscription,
)
from payments.side_effects import SideEffects
from payments.state_machines import (
    PaymentStatus,
    PaymentType,
    SubscriptionInterval,
)
from payments.state_machines.transitions import (
    Cancel,
    Fail,
    Pause,
    Resume,
    Transition,
    apply_transition,
)

from .types import ChargeEntry, LedgerWriteResult, ReversalEntry

if TYPE_CHECKING:
    from datetime import datetime

    from payments.webhooks.metadata import (
        CheckoutMetadata,
        DisputeEvent,
        RefundEvent,
        SubscriptionEvent,
    )

logger = logging.getLogger(__name__)

DISPUTE_WON = "won"
DISPUTE_LOST = "lost"


def prorate_reversal(original: Payment, gross_cents: int) -> ReversalEntry:
    """
    Split a reversal of ``gross_cents`` in the original charge's proportions.

    The fee is prorated with the same half-up rule as the fee engine; net
    takes the remainder so the row stays balanced.
    """
    if original.gross_cents <= 0:
        raise PaymentError(
            f"Payment {original.provider_event_id} has nothing to reverse",
            error_code="NOTHING_TO_REVERSE",
            details={"payment_id": str(original.id)},
        )
    ratio = Decimal(gross_cents) / Decimal(original.gross_cents)
    fee = round_half_up(Decimal(original.fee_cents) * ratio)
    creator_fee = subscriber_fee = None
    if original.creator_fee_cents is not None:
        creator_fee = round_half_up(Decimal(original.creator_fee_cents) * ratio)
        creator_fee = min(creator_fee, fee)
        subscriber_fee = fee - creator_fee
    return ReversalEntry(
        gross_cents=gross_cents,
        fee_cents=fee,
        net_cents=gross_cents - fee,
        amount_cents=round_half_up(Decimal(original.amount_cents) * ratio),
        subscriber_fee_cents=subscriber_fee,
        creator_fee_cents=creator_fee,
    )


class LedgerWriter:
    """
    Service class for ledger writes.

    All methods are static - no instance state is maintained. Every method
    that writes opens its own ``transaction.atomic()`` block, which nests as
    a savepoint when the caller already holds a transaction.
    """

    # ==========================================================================
    # Lookups (row locks)
    # ==========================================================================

    @staticmethod
    def lock_subscription(
        subscriber_id: UUID,
        creator_id: UUID,
        interval: str,
    ) -> Subscription | None:
        """Select the subscription for update, or None if it does not exist yet."""
        return (
            Subscription.objects.select_for_update()
            .filter(subscriber_id=subscriber_id, creator_id=creator_id, interval=interval)
            .first()
        )

    @staticmethod
    def find_charge(provider_charge_id: str) -> Payment:
        """
        Find the original succeeded charge a reversal refers to.

        Raises:
            PaymentNotFoundError: If no such charge was recorded
        """
        payment = (
            Payment.objects.select_related("subscription")
            .filter(
                provider_charge_id=provider_charge_id,
                status=PaymentStatus.SUCCEEDED,
                original_payment__isnull=True,
            )
            .order_by("occurred_at")
            .first()
        )
        if payment is None:
            raise PaymentNotFoundError(
                f"No recorded charge for {provider_charge_id}",
                details={"provider_charge_id": provider_charge_id},
            )
        return payment

    # ==========================================================================
    # Charges
    # ==========================================================================

    @classmethod
    def record_charge(
        cls,
        entry: ChargeEntry,
        transition: Transition,
        subscription: Subscription | None,
    ) -> LedgerWriteResult:
        """
        Record a successful (or pending) charge.

        Args:
            entry: Priced charge
            transition: Create, Reactivate or Renew
            subscription: Locked existing row, or None for Create

        Returns:
            LedgerWriteResult with the subscription, payment and activity

        Raises:
            InvalidStateTransitionError: If the transition does not apply
        """
        charge = entry.charge
        breakdown = entry.breakdown
        now = timezone.now()
        occurred_at = charge.occurred_at or now
        previous_status = subscription.status if subscription is not None else None

        with transaction.atomic():
            subscription = apply_transition(subscription, transition, now=occurred_at)
            subscription.save()

            payment = None
            if not entry.pending:
                payment = Payment.objects.create(
                    subscription=subscription,
                    subscriber_id=subscription.subscriber_id,
                    creator_id=subscription.creator_id,
                    gross_cents=entry.gross_cents,
                    amount_cents=breakdown.base_price_cents,
                    fee_cents=entry.fee_cents,
                    net_cents=entry.net_cents,
                    subscriber_fee_cents=entry.subscriber_fee_cents,
                    creator_fee_cents=entry.creator_fee_cents,
                    currency=breakdown.currency,
                    fee_model=breakdown.fee_model,
                    fee_effective_rate=breakdown.effective_rate,
                    fee_was_capped=breakdown.was_capped,
                    status=PaymentStatus.SUCCEEDED,
                    type=(
                        PaymentType.ONE_TIME
                        if subscription.interval == SubscriptionInterval.ONE_TIME
                        else PaymentType.RECURRING
                    ),
                    provider_event_id=entry.event_id,
                    provider_charge_id=charge.provider_charge_id,
                    occurred_at=occurred_at,
                )
                if charge.metadata.has_evidence:
                    cls._record_evidence(payment, charge.metadata, occurred_at)

            activity = ActivityEvent.objects.create(
                creator_id=subscription.creator_id,
                type=transition.activity_type,
                provider_event_id=entry.event_id,
                subscription=subscription,
                payload={
                    "subscription_status": subscription.status,
                    "previous_status": previous_status,
                    "gross_cents": entry.gross_cents,
                    "net_cents": entry.net_cents,
                    "fee_cents": entry.fee_cents,
                    "currency": breakdown.currency,
                    "pending": entry.pending,
                },
            )

            alerts = []
            if entry.mismatched_audits:
                alerts.append(cls._record_fee_mismatch(entry, subscription))

        logger.info(
            f"Recorded {transition.name} charge {entry.event_id}",
            extra={
                "provider_event_id": entry.event_id,
                "subscription_id": str(subscription.id),
                "payment_id": str(payment.id) if payment else None,
                "gross_cents": entry.gross_cents,
                "net_cents": entry.net_cents,
                "fee_model": breakdown.fee_model,
            },
        )

        side_effects = SideEffects(
            kind=SideEffects.SETTLED if payment is not None else SideEffects.STATUS_CHANGED,
            subscription=subscription,
            payment=payment,
            previous_status=previous_status,
            notification="payment_received" if payment is not None else "",
        )
        return LedgerWriteResult(
            subscription=subscription,
            activity=activity,
            payment=payment,
            side_effects=side_effects,
            alerts=alerts,
        )

    @staticmethod
    def _record_evidence(
        payment: Payment,
        metadata: CheckoutMetadata,
        occurred_at: datetime,
    ) -> DisputeEvidence | None:
        """
        Store checkout context for chargeback defense.

        Runs in its own savepoint; a failure is logged and never fails the
        payment write.
        """
        try:
            with transaction.atomic():
                return DisputeEvidence.objects.create(
                    payment=payment,
                    checkout_ip=metadata.checkout_ip,
                    user_agent=metadata.checkout_user_agent,
                    accept_language=metadata.checkout_accept_language,
                    checkout_timestamp=occurred_at,
                )
        except DatabaseError:
            logger.exception(
                f"Failed to record dispute evidence for payment {payment.id}",
                extra={
                    "payment_id": str(payment.id),
                    "provider_event_id": payment.provider_event_id,
                },
            )
            return None

    @staticmethod
    def _record_fee_mismatch(
        entry: ChargeEntry,
        subscription: Subscription,
    ) -> ActivityEvent:
        mismatches = {
            source: {
                "expected_cents": audit.expected_cents,
                "actual_cents": audit.actual_cents,
                "tolerance_cents": audit.tolerance_cents,
                "difference_cents": audit.difference_cents,
            }
            for source, audit in entry.mismatched_audits.items()
        }
        logger.warning(
            f"Fee mismatch on {entry.event_id}",
            extra={
                "provider_event_id": entry.event_id,
                "subscription_id": str(subscription.id),
                "mismatches": mismatches,
            },
        )
        return ActivityEvent.objects.create(
            creator_id=subscription.creator_id,
            type=ActivityType.FEE_MISMATCH_ALERT,
            subscription=subscription,
            payload={
                "provider_event_id": entry.event_id,
                "fee_model": entry.breakdown.fee_model,
                "was_capped": entry.breakdown.was_capped,
                "mismatches": mismatches,
            },
        )

    # ==========================================================================
    # Status Changes
    # ==========================================================================

    @classmethod
    def record_failure(
        cls,
        event_id: str,
        subscription: Subscription | None,
        event: SubscriptionEvent,
    ) -> LedgerWriteResult:
        """Record a failed renewal: ACTIVE -> PAST_DUE."""
        return cls._record_status_change(event_id, subscription, Fail(), event)

    @classmethod
    def record_cancellation(
        cls,
        event_id: str,
        subscription: Subscription | None,
        event: SubscriptionEvent,
    ) -> LedgerWriteResult:
        """Cancel now, or flag cancel-at-period-end."""
        return cls._record_status_change(
            event_id, subscription, Cancel(at_period_end=event.at_period_end), event
        )

    @classmethod
    def record_pause(
        cls,
        event_id: str,
        subscription: Subscription | None,
        event: SubscriptionEvent,
    ) -> LedgerWriteResult:
        return cls._record_status_change(event_id, subscription, Pause(), event)

    @classmethod
    def record_resume(
        cls,
        event_id: str,
        subscription: Subscription | None,
        event: SubscriptionEvent,
    ) -> LedgerWriteResult:
        return cls._record_status_change(event_id, subscription, Resume(), event)

    @staticmethod
    def _record_status_change(
        event_id: str,
        subscription: Subscription | None,
        transition: Transition,
        event: SubscriptionEvent,
    ) -> LedgerWriteResult:
        previous_status = subscription.status if subscription is not None else None

        with transaction.atomic():
            subscription = apply_transition(subscription, transition)
            subscription.save()
            activity = ActivityEvent.objects.create(
                creator_id=subscription.creator_id,
                type=transition.activity_type,
                provider_event_id=event_id,
                subscription=subscription,
                payload={
                    "subscription_status": subscription.status,
                    "previous_status": previous_status,
                    "cancel_at_period_end": subscription.cancel_at_period_end,
                    "reason": event.reason,
                },
            )

        return LedgerWriteResult(
            subscription=subscription,
            activity=activity,
            side_effects=SideEffects(
                kind=SideEffects.STATUS_CHANGED,
                subscription=subscription,
                previous_status=previous_status,
            ),
        )

    # ==========================================================================
    # Reversals
    # ==========================================================================

    @classmethod
    def record_refund(
        cls,
        event_id: str,
        original: Payment,
        refund: RefundEvent,
    ) -> LedgerWriteResult:
        """
        Record a (possibly partial) refund as a negative row.

        The refunded amount is capped at what remains unreversed on the
        original charge, counting earlier refunds and open disputes.
        Lifetime earnings drop by the reversed net, never below zero.

        Raises:
            PaymentError: If the charge is already fully refunded or the
                currency differs
        """
        cls._check_currency(original, refund.currency)
        remaining = cls._unreversed_gross(original)
        if remaining <= 0:
            raise PaymentError(
                f"Payment {original.provider_event_id} is already fully refunded",
                error_code="ALREADY_REFUNDED",
                details={"payment_id": str(original.id)},
            )

        reversal = prorate_reversal(original, min(refund.amount_cents, remaining))
        return cls._record_reversal(
            event_id,
            original,
            reversal,
            status=PaymentStatus.REFUNDED,
            activity_type=ActivityType.PAYMENT_REFUNDED,
            occurred_at=refund.occurred_at,
            notification="payment_refunded",
            payload={"reason": refund.reason},
        )

    @classmethod
    def record_dispute_opened(
        cls,
        event_id: str,
        original: Payment,
        dispute: DisputeEvent,
    ) -> LedgerWriteResult:
        """
        Record a chargeback as a negative disputed row.

        The disputed amount is capped the same way refunds are, so a charge
        is never reversed for more than was collected.

        Raises:
            PaymentError: If the dispute is already recorded, nothing is
                left to dispute, or the currency differs
        """
        cls._check_currency(original, dispute.currency)
        if original.reversals.filter(dispute_id=dispute.dispute_id).exists():
            raise PaymentError(
                f"Dispute {dispute.dispute_id} is already recorded",
                error_code="DISPUTE_ALREADY_RECORDED",
                details={"dispute_id": dispute.dispute_id},
            )
        remaining = cls._unreversed_gross(original)
        if remaining <= 0:
            raise PaymentError(
                f"Payment {original.provider_event_id} has nothing left to dispute",
                error_code="NOTHING_TO_DISPUTE",
                details={"payment_id": str(original.id), "dispute_id": dispute.dispute_id},
            )
        disputed = dispute.amount_cents or remaining
        reversal = prorate_reversal(original, min(disputed, remaining))
        return cls._record_reversal(
            event_id,
            original,
            reversal,
            status=PaymentStatus.DISPUTED,
            activity_type=ActivityType.DISPUTE_CREATED,
            occurred_at=dispute.occurred_at,
            notification="dispute_created",
            dispute_id=dispute.dispute_id,
            payload={"dispute_id": dispute.dispute_id, "reason": dispute.reason},
        )

    @classmethod
    def record_dispute_closed(
        cls,
        event_id: str,
        original: Payment,
        dispute: DisputeEvent,
    ) -> LedgerWriteResult:
        """
        Record the dispute outcome.

        Won: a positive row cancelling the disputed row out, and lifetime
        earnings restored. Lost: a zero-amount row marking the outcome; the
        disputed row already holds the loss.

        Raises:
            PaymentNotFoundError: If the dispute was never opened
            PaymentError: If the dispute is already closed
        """
        reversals = original.reversals.filter(dispute_id=dispute.dispute_id)
        opened = reversals.filter(status=PaymentStatus.DISPUTED).first()
        if opened is None:
            raise PaymentNotFoundError(
                f"Dispute {dispute.dispute_id} was never opened",
                details={"dispute_id": dispute.dispute_id},
            )
        if reversals.filter(
            status__in=[PaymentStatus.DISPUTE_WON, PaymentStatus.DISPUTE_LOST]
        ).exists():
            raise PaymentError(
                f"Dispute {dispute.dispute_id} is already closed",
                error_code="DISPUTE_ALREADY_CLOSED",
                details={"dispute_id": dispute.dispute_id},
            )

        if dispute.outcome == DISPUTE_WON:
            restore = cls._lifetime_taken_by(opened)
            reinstated = ReversalEntry(
                gross_cents=-opened.gross_cents,
                fee_cents=-opened.fee_cents,
                net_cents=-opened.net_cents,
                amount_cents=-opened.amount_cents,
                subscriber_fee_cents=(
                    -opened.subscriber_fee_cents
                    if opened.subscriber_fee_cents is not None
                    else None
                ),
                creator_fee_cents=(
                    -opened.creator_fee_cents
                    if opened.creator_fee_cents is not None
                    else None
                ),
            )
            return cls._record_reversal(
                event_id,
                original,
                reinstated,
                status=PaymentStatus.DISPUTE_WON,
                activity_type=ActivityType.DISPUTE_WON,
                occurred_at=dispute.occurred_at,
                dispute_id=dispute.dispute_id,
                sign=1,
                restore_cents=restore,
                payload={"dispute_id": dispute.dispute_id},
            )

        return cls._record_reversal(
            event_id,
            original,
            ReversalEntry(gross_cents=0, fee_cents=0, net_cents=0, amount_cents=0),
            status=PaymentStatus.DISPUTE_LOST,
            activity_type=ActivityType.DISPUTE_LOST,
            occurred_at=dispute.occurred_at,
            dispute_id=dispute.dispute_id,
            payload={"dispute_id": dispute.dispute_id},
        )

    @staticmethod
    def _lifetime_taken_by(reversal_row: Payment) -> int:
        """Lifetime earnings a reversal row actually removed (clamped at zero)."""
        activity = ActivityEvent.objects.filter(
            type=ActivityType.DISPUTE_CREATED,
            subscription_id=reversal_row.subscription_id,
            provider_event_id=reversal_row.provider_event_id,
        ).first()
        if activity is None or "lifetime_change_cents" not in activity.payload:
            return -reversal_row.net_cents
        return -activity.payload["lifetime_change_cents"]

    @staticmethod
    def _unreversed_gross(original: Payment) -> int:
        """Gross still held on a charge after refunds and open disputes."""
        reversed_gross = original.reversals.filter(
            status__in=[
                PaymentStatus.REFUNDED,
                PaymentStatus.DISPUTED,
                PaymentStatus.DISPUTE_WON,
            ]
        ).aggregate(total=Sum("gross_cents"))["total"]
        return original.gross_cents + (reversed_gross or 0)

    @staticmethod
    def _check_currency(original: Payment, currency: str) -> None:
        if original.currency.upper() != currency.upper():
            raise PaymentError(
                f"Currency {currency} does not match payment currency {original.currency}",
                error_code="CURRENCY_MISMATCH",
                details={"expected": original.currency, "actual": currency},
            )

    @staticmethod
    def _record_reversal(
        event_id: str,
        original: Payment,
        reversal: ReversalEntry,
        *,
        status: str,
        activity_type: str,
        occurred_at: datetime | None = None,
        notification: str = "",
        dispute_id: str = "",
        sign: int = -1,
        restore_cents: int | None = None,
        payload: dict | None = None,
    ) -> LedgerWriteResult:
        """
        Write a reversal row and adjust lifetime earnings.

        ``sign=-1`` takes money back (refund, dispute opened) and lowers
        lifetime earnings by at most their current value; ``sign=1`` gives
        it back (dispute won) and raises them by ``restore_cents``, the
        amount the matching reversal actually took off. The applied change
        is kept in the activity payload as ``lifetime_change_cents``.
        """

        def signed(value: int | None) -> int | None:
            return None if value is None else sign * value

        with transaction.atomic():
            subscription = Subscription.objects.select_for_update().get(
                pk=original.subscription_id
            )
            if sign < 0:
                lifetime_change = -min(
                    reversal.net_cents, max(subscription.lifetime_net_cents, 0)
                )
            elif restore_cents is not None:
                lifetime_change = restore_cents
            else:
                lifetime_change = reversal.net_cents
            subscription.lifetime_net_cents += lifetime_change
            subscription.save()

            payment = Payment.objects.create(
                subscription=subscription,
                subscriber_id=original.subscriber_id,
                creator_id=original.creator_id,
                original_payment=original,
                gross_cents=signed(reversal.gross_cents),
                amount_cents=signed(reversal.amount_cents),
                fee_cents=signed(reversal.fee_cents),
                net_cents=signed(reversal.net_cents),
                subscriber_fee_cents=signed(reversal.subscriber_fee_cents),
                creator_fee_cents=signed(reversal.creator_fee_cents),
                currency=original.currency,
                fee_model=original.fee_model,
                fee_effective_rate=original.fee_effective_rate,
                fee_was_capped=original.fee_was_capped,
                status=status,
                type=original.type,
                provider_event_id=event_id,
                provider_charge_id=original.provider_charge_id,
                dispute_id=dispute_id,
                occurred_at=occurred_at or timezone.now(),
            )
            activity = ActivityEvent.objects.create(
                creator_id=subscription.creator_id,
                type=activity_type,
                provider_event_id=event_id,
                subscription=subscription,
                payload={
                    "original_payment_id": str(original.id),
                    "gross_cents": payment.gross_cents,
                    "net_cents": payment.net_cents,
                    "currency": payment.currency,
                    "lifetime_change_cents": lifetime_change,
                    **(payload or {}),
                },
            )

        logger.info(
            f"Recorded {status} row for payment {original.provider_event_id}",
            extra={
                "provider_event_id": event_id,
                "original_payment_id": str(original.id),
                "gross_cents": payment.gross_cents,
                "net_cents": payment.net_cents,
            },
        )
        return LedgerWriteResult(
            subscription=subscription,
            activity=activity,
            payment=payment,
            side_effects=SideEffects(
                kind=SideEffects.REVERSED,
                subscription=subscription,
                payment=payment,
                previous_status=subscription.status,
                notification=notification,
            ),
        )

    # ==========================================================================
    # Conversion Tracking (best-effort, outside the financial transaction)
    # ==========================================================================

    @staticmethod
    def track_conversion(metadata: CheckoutMetadata) -> bool:
        """
        Mark the checkout view that led to this charge as converted.

        Never raises; a failure here must not affect the recorded payment.

        Returns:
            True if a view row was updated
        """
        if not metadata.view_id:
            return False
        try:
            updated = CheckoutView.objects.filter(
                view_id=metadata.view_id,
                creator_id=metadata.creator_id,
            ).update(started_checkout=True, completed_checkout=True)
        except DatabaseError:
            logger.exception(
                f"Failed to track conversion for view {metadata.view_id}",
                extra={"view_id": metadata.view_id, "request_id": metadata.request_id},
            )
            return False
        return updated > 0


__all__ = ["LedgerWriter", "prorate_reversal"]
