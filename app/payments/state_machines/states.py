"""
State enums for payment models.

These are Django TextChoices for database storage; Subscription status is
driven by django-fsm transitions declared on the model.

State Machines Overview:

Subscription States:
    pending → active (payment confirmed)
    pending → canceled (checkout abandoned)
    active ⇄ past_due (renewal failure / recovery)
    active ⇄ paused (creator-initiated)
    any non-canceled state → canceled (terminal)

Payment Statuses:
    succeeded / pending for charges
    refunded, disputed for reversal rows
    dispute_won / dispute_lost once a dispute closes

Payout States:
    pending → succeeded
    pending → failed
    pending → needs_investigation (amount/currency disagree with provider)

WebhookEvent States:
    pending → processing → processed / failed / skipped
"""

from django.db import models


class SubscriptionStatus(models.TextChoices):
    """
    States for the Subscription lifecycle.

    Terminal state: CANCELED. Only a resubscription (a new checkout by the
    same subscriber for the same creator and interval) brings a canceled
    row back to ACTIVE.
    """

    PENDING = "pending", "Pending"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    PAUSED = "paused", "Paused"
    CANCELED = "canceled", "Canceled"


class SubscriptionInterval(models.TextChoices):
    """Billing interval; part of the subscription's natural identity."""

    MONTH = "month", "Monthly"
    ONE_TIME = "one_time", "One Time"


class PaymentStatus(models.TextChoices):
    """Status of an immutable ledger row."""

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"
    DISPUTE_WON = "dispute_won", "Dispute Won"
    DISPUTE_LOST = "dispute_lost", "Dispute Lost"


class PaymentType(models.TextChoices):
    """Whether a payment belongs to a recurring subscription."""

    RECURRING = "recurring", "Recurring"
    ONE_TIME = "one_time", "One Time"


class PayoutStatus(models.TextChoices):
    """
    States for provider payouts (transfers to creators).

    NEEDS_INVESTIGATION is set when a provider confirmation disagrees with
    the stored amount or currency. It is never auto-corrected.
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    NEEDS_INVESTIGATION = "needs_investigation", "Needs Investigation"


class WebhookEventStatus(models.TextChoices):
    """Processing status of a stored inbound webhook."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class CreatorClassification(models.TextChoices):
    """How a creator uses the platform; drives legacy and progressive rates."""

    PERSONAL = "personal", "Personal"
    SERVICE = "service", "Service"
