"""
Subscription transitions as an explicit tagged union.

Every mutation of a Subscription is one of Create, Reactivate, Renew, Fail,
Cancel, Pause or Resume. Each transition declares the statuses it may be
applied from and what it changes, so charge handling never relies on an
opaque ORM upsert.

Usage:
    from payments.state_machines.transitions import (
        apply_transition,
        resolve_charge_transition,
    )

    transition = resolve_charge_transition(existing, terms, net_cents, period_end)
    subscription = apply_transition(existing, transition)
    subscription.save()
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar, Union

from django.utils import timezone

from payments.exceptions import InvalidStateTransitionError
from payments.models import ActivityType, Subscription
from payments.models.subscription import NON_TERMINAL_STATUSES
from payments.state_machines.states import (
    CreatorClassification,
    SubscriptionInterval,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Period Arithmetic
# =============================================================================


def add_months(value: datetime, months: int = 1) -> datetime:
    """
    Add calendar months, clamping the day to the target month's length.

    Jan 31 + 1 month is the last day of February, never early March.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_period_end(interval: str, start: datetime | None = None) -> datetime | None:
    """Period end for a charge starting at ``start``; None for one-time purchases."""
    if interval == SubscriptionInterval.ONE_TIME:
        return None
    return add_months(start or timezone.now(), 1)


# =============================================================================
# Transitions
# =============================================================================


@dataclass(frozen=True)
class SubscriptionTerms:
    """Identity and locked terms for a subscription created by a charge."""

    subscriber_id: object
    creator_id: object
    interval: str
    base_price_cents: int
    currency: str
    fee_model: str
    fee_mode: str
    creator_classification: str = CreatorClassification.PERSONAL
    cross_border: bool = False
    provider_subscription_id: str = ""
    provider_customer_id: str = ""


class _Transition:
    name: ClassVar[str]
    allowed_from: ClassVar[frozenset]
    activity_type: ClassVar[str]

    def check(self, subscription: Subscription | None) -> None:
        if subscription is None:
            raise InvalidStateTransitionError(
                f"Cannot {self.name} a subscription that does not exist",
                details={"transition": self.name},
            )
        if subscription.status not in self.allowed_from:
            raise InvalidStateTransitionError(
                f"Cannot {self.name} subscription in {subscription.status} state",
                details={
                    "subscription_id": str(subscription.id),
                    "current_status": subscription.status,
                    "transition": self.name,
                },
            )

    def apply(self, subscription, now: datetime) -> Subscription:
        raise NotImplementedError


@dataclass(frozen=True)
class Create(_Transition):
    """
    First checkout for this identity.

    Post: new row, ACTIVE (or PENDING for a not-yet-paid async checkout),
    lifetime earnings equal to this charge's net.
    """

    name: ClassVar[str] = "create"
    allowed_from: ClassVar[frozenset] = frozenset()
    activity_type: ClassVar[str] = ActivityType.SUBSCRIPTION_CREATED

    terms: SubscriptionTerms
    net_cents: int = 0
    period_end: datetime | None = None
    pending: bool = False

    def check(self, subscription: Subscription | None) -> None:
        if subscription is not None:
            raise InvalidStateTransitionError(
                f"Subscription {subscription.id} already exists",
                details={"subscription_id": str(subscription.id), "transition": self.name},
            )

    def apply(self, subscription, now: datetime) -> Subscription:
        terms = self.terms
        created = Subscription(
            subscriber_id=terms.subscriber_id,
            creator_id=terms.creator_id,
            interval=terms.interval,
            base_price_cents=terms.base_price_cents,
            currency=terms.currency,
            fee_model=terms.fee_model,
            fee_mode=terms.fee_mode,
            creator_classification=terms.creator_classification,
            cross_border=terms.cross_border,
            provider_subscription_id=terms.provider_subscription_id,
            provider_customer_id=terms.provider_customer_id,
        )
        if not self.pending:
            created.activate()
            created.lifetime_net_cents = self.net_cents
            created.current_period_end = self.period_end
            created.last_payment_at = now
        return created


@dataclass(frozen=True)
class Reactivate(_Transition):
    """
    Resubscribe after cancellation.

    Post: same row, ACTIVE, cancellation fields cleared, lifetime earnings
    continue from their previous value. Price and fee terms are unchanged.
    """

    name: ClassVar[str] = "reactivate"
    allowed_from: ClassVar[frozenset] = frozenset([SubscriptionStatus.CANCELED])
    activity_type: ClassVar[str] = ActivityType.SUBSCRIPTION_REACTIVATED

    net_cents: int
    period_end: datetime | None = None

    def apply(self, subscription: Subscription, now: datetime) -> Subscription:
        subscription.resubscribe()
        subscription.lifetime_net_cents += self.net_cents
        subscription.current_period_end = self.period_end
        subscription.last_payment_at = now
        return subscription


@dataclass(frozen=True)
class Renew(_Transition):
    """
    Successful charge on a live subscription.

    Post: PENDING and PAST_DUE become ACTIVE; PAUSED stays paused; lifetime
    earnings grow by this charge's net.
    """

    name: ClassVar[str] = "renew"
    allowed_from: ClassVar[frozenset] = frozenset(
        [
            SubscriptionStatus.PENDING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.PAUSED,
        ]
    )
    activity_type: ClassVar[str] = ActivityType.PAYMENT_RECEIVED

    net_cents: int
    period_end: datetime | None = None

    def apply(self, subscription: Subscription, now: datetime) -> Subscription:
        if subscription.status == SubscriptionStatus.PENDING:
            subscription.activate()
        elif subscription.status == SubscriptionStatus.PAST_DUE:
            subscription.recover()
        subscription.lifetime_net_cents += self.net_cents
        if self.period_end is not None:
            subscription.current_period_end = self.period_end
        subscription.last_payment_at = now
        return subscription


@dataclass(frozen=True)
class Fail(_Transition):
    """Renewal charge failed. Post: PAST_DUE."""

    name: ClassVar[str] = "fail"
    allowed_from: ClassVar[frozenset] = frozenset(
        [SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE]
    )
    activity_type: ClassVar[str] = ActivityType.PAYMENT_FAILED

    def apply(self, subscription: Subscription, now: datetime) -> Subscription:
        if subscription.status == SubscriptionStatus.ACTIVE:
            subscription.mark_past_due()
        return subscription


@dataclass(frozen=True)
class Cancel(_Transition):
    """
    Cancel now, or schedule cancellation for the end of the paid period.

    Post: CANCELED (terminal), or unchanged status with
    cancel_at_period_end set.
    """

    name: ClassVar[str] = "cancel"
    allowed_from: ClassVar[frozenset] = frozenset(NON_TERMINAL_STATUSES)
    activity_type: ClassVar[str] = ActivityType.SUBSCRIPTION_CANCELED

    at_period_end: bool = False

    def apply(self, subscription: Subscription, now: datetime) -> Subscription:
        if self.at_period_end and subscription.status != SubscriptionStatus.PENDING:
            subscription.cancel_at_period_end = True
        else:
            subscription.cancel()
        return subscription


@dataclass(frozen=True)
class Pause(_Transition):
    """Creator paused billing. Post: PAUSED."""

    name: ClassVar[str] = "pause"
    allowed_from: ClassVar[frozenset] = frozenset([SubscriptionStatus.ACTIVE])
    activity_type: ClassVar[str] = ActivityType.SUBSCRIPTION_PAUSED

    def apply(self, subscription: Subscription, now: datetime) -> Subscription:
        subscription.pause()
        return subscription


@dataclass(frozen=True)
class Resume(_Transition):
    """Creator resumed billing. Post: ACTIVE."""

    name: ClassVar[str] = "resume"
    allowed_from: ClassVar[frozenset] = frozenset([SubscriptionStatus.PAUSED])
    activity_type: ClassVar[str] = ActivityType.SUBSCRIPTION_RESUMED

    def apply(self, subscription: Subscription, now: datetime) -> Subscription:
        subscription.resume()
        return subscription


Transition = Union[Create, Reactivate, Renew, Fail, Cancel, Pause, Resume]


# =============================================================================
# Resolution & Application
# =============================================================================


def resolve_charge_transition(
    existing: Subscription | None,
    terms: SubscriptionTerms,
    net_cents: int,
    period_end: datetime | None,
) -> Create | Reactivate | Renew:
    """
    Pick the transition for a successful charge.

    No row yet creates one; a canceled row is reactivated in place; any
    other row is renewed.
    """
    if existing is None:
        return Create(terms=terms, net_cents=net_cents, period_end=period_end)
    if existing.status == SubscriptionStatus.CANCELED:
        return Reactivate(net_cents=net_cents, period_end=period_end)
    return Renew(net_cents=net_cents, period_end=period_end)


def apply_transition(
    subscription: Subscription | None,
    transition: Transition,
    now: datetime | None = None,
) -> Subscription:
    """
    Check and apply ``transition``. The result is not saved.

    Raises:
        InvalidStateTransitionError: If the transition's preconditions fail
    """
    transition.check(subscription)
    previous_status = subscription.status if subscription is not None else None
    result = transition.apply(subscription, now or timezone.now())
    logger.info(
        f"Subscription transition {transition.name}: "
        f"{previous_status} -> {result.status}",
        extra={
            "subscription_id": str(result.id),
            "transition": transition.name,
            "previous_status": previous_status,
            "status": result.status,
        },
    )
    return result


__all__ = [
    "Cancel",
    "Create",
    "Fail",
    "Pause",
    "Reactivate",
    "Renew",
    "Resume",
    "SubscriptionTerms",
    "Transition",
    "add_months",
    "apply_transition",
    "next_period_end",
    "resolve_charge_transition",
]
