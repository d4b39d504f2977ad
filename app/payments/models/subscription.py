"""
Subscription model for creator subscriptions.

A Subscription is identified by (subscriber_id, creator_id, interval). It is
created on the first successful charge and reused, never duplicated, when the
subscriber comes back after canceling. Price and fee terms are fixed at
creation so later fee policy changes never reprice an existing subscriber.

Usage:
    from payments.models import Subscription

    subscription = Subscription.objects.select_for_update().get(
        subscriber_id=subscriber_id,
        creator_id=creator_id,
        interval="month",
    )
    subscription.mark_past_due()  # active -> past_due
    subscription.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from payments.exceptions import PaymentError
from payments.fees.types import FeeMode, FeeModel
from payments.state_machines import (
    CreatorClassification,
    SubscriptionInterval,
    SubscriptionStatus,
)

# Fields fixed at creation; updates must never overwrite them
WRITE_ONCE_FIELDS = (
    "base_price_cents",
    "currency",
    "fee_model",
    "fee_mode",
    "creator_classification",
    "cross_border",
)

NON_TERMINAL_STATUSES = [
    SubscriptionStatus.PENDING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
    SubscriptionStatus.PAUSED,
]


class Subscription(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Tracks a subscriber's relationship with a creator.

    State Flow:
        PENDING -> ACTIVE (payment confirmed)
        PENDING -> CANCELED (checkout abandoned)
        ACTIVE -> PAST_DUE (renewal failed)
        PAST_DUE -> ACTIVE (later charge succeeded)
        ACTIVE -> PAUSED -> ACTIVE (creator-initiated)
        any non-canceled -> CANCELED (terminal)
        CANCELED -> ACTIVE only through resubscribe()

    Fields:
        subscriber_id / creator_id / interval: natural identity
        status: Current FSM state
        base_price_cents: Creator's set price, reused for every renewal
        currency: ISO 4217 code (uppercase)
        fee_model / fee_mode: Fee terms locked at creation
        creator_classification / cross_border: Rate inputs locked at creation
        lifetime_net_cents: Cumulative creator earnings, kept across resubscribes
        current_period_end: End of the paid period
        cancel_at_period_end: Cancellation scheduled for period end
        canceled_at / paused_at: Status timestamps
        version: Optimistic locking version
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    subscriber_id = models.UUIDField(
        db_index=True,
        help_text="Subscriber (payer) identifier",
    )

    creator_id = models.UUIDField(
        db_index=True,
        help_text="Creator identifier",
    )

    interval = models.CharField(
        max_length=10,
        choices=SubscriptionInterval.choices,
        default=SubscriptionInterval.MONTH,
        help_text="Billing interval",
    )

    # ==========================================================================
    # Terms (write-once)
    # ==========================================================================

    base_price_cents = models.PositiveBigIntegerField(
        help_text="Creator's set price in the smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="USD",
        help_text="ISO 4217 currency code (uppercase)",
    )

    fee_model = models.CharField(
        max_length=20,
        choices=FeeModel.choices,
        help_text="Fee model version locked at creation",
    )

    fee_mode = models.CharField(
        max_length=20,
        choices=FeeMode.choices,
        help_text="Fee mode locked at creation",
    )

    creator_classification = models.CharField(
        max_length=20,
        choices=CreatorClassification.choices,
        default=CreatorClassification.PERSONAL,
        help_text="Creator classification the fee rate was resolved with",
    )

    cross_border = models.BooleanField(
        default=False,
        help_text="Whether the cross-border buffer applies to this subscription",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.PENDING,
        choices=SubscriptionStatus.choices,
        db_index=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    lifetime_net_cents = models.BigIntegerField(
        default=0,
        help_text="Cumulative creator earnings across the subscription's life",
    )

    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of current billing period",
    )

    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Whether subscription will cancel at period end",
    )

    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When subscription was canceled",
    )

    paused_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When subscription was paused",
    )

    last_payment_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When last successful payment occurred",
    )

    # ==========================================================================
    # Provider References
    # ==========================================================================

    provider_subscription_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Provider subscription reference",
    )

    provider_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Provider customer reference",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["creator_id", "status"]),
            models.Index(fields=["status", "current_period_end"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["subscriber_id", "creator_id", "interval"],
                name="subscription_unique_identity",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Subscription({self.id}, {self.status}, "
            f"{self.base_price_cents} {self.currency}/{self.interval})"
        )

    # ==========================================================================
    # Persistence
    # ==========================================================================

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_terms = {
            name: getattr(instance, name)
            for name in WRITE_ONCE_FIELDS
            if name in field_names
        }
        return instance

    def save(self, *args, **kwargs):
        """Save, refusing to overwrite the terms fixed at creation."""
        loaded = getattr(self, "_loaded_terms", None)
        if loaded and not self._state.adding:
            changed = [
                name for name, value in loaded.items() if getattr(self, name) != value
            ]
            if changed:
                raise PaymentError(
                    f"Subscription {self.id} terms are fixed at creation",
                    error_code="SUBSCRIPTION_TERMS_LOCKED",
                    details={"fields": changed},
                )
        super().save(*args, **kwargs)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SubscriptionStatus.PENDING,
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self):
        """Payment confirmed for a pending checkout."""

    @transition(
        field=status,
        source=SubscriptionStatus.ACTIVE,
        target=SubscriptionStatus.PAST_DUE,
    )
    def mark_past_due(self):
        """Renewal charge failed."""

    @transition(
        field=status,
        source=SubscriptionStatus.PAST_DUE,
        target=SubscriptionStatus.ACTIVE,
    )
    def recover(self):
        """A charge succeeded after a failed renewal."""

    @transition(
        field=status,
        source=SubscriptionStatus.ACTIVE,
        target=SubscriptionStatus.PAUSED,
    )
    def pause(self):
        self.paused_at = timezone.now()

    @transition(
        field=status,
        source=SubscriptionStatus.PAUSED,
        target=SubscriptionStatus.ACTIVE,
    )
    def resume(self):
        self.paused_at = None

    @transition(
        field=status,
        source=NON_TERMINAL_STATUSES,
        target=SubscriptionStatus.CANCELED,
    )
    def cancel(self):
        """
        Cancel the subscription.

        Transition: any non-canceled state -> CANCELED. Pending
        subscriptions land here when their checkout is abandoned.
        """
        self.canceled_at = timezone.now()
        self.cancel_at_period_end = False

    @transition(
        field=status,
        source=SubscriptionStatus.CANCELED,
        target=SubscriptionStatus.ACTIVE,
    )
    def resubscribe(self):
        """
        Reuse this row for a new checkout by the same subscriber.

        Clears cancellation fields. Lifetime earnings and the original
        price and fee terms are kept.
        """
        self.canceled_at = None
        self.cancel_at_period_end = False
        self.paused_at = None

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    @property
    def lock_key(self) -> str:
        from payments.locks import subscription_lock_key

        return subscription_lock_key(self.subscriber_id, self.creator_id, self.interval)
