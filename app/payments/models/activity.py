"""
ActivityEvent model: the audit record written with every ledger mutation.

Each ledger write unit records exactly one primary activity carrying the
provider event id, which is what the idempotency guard checks for events
that do not produce a Payment row (failures, cancellations, pauses).
Secondary activities (alerts, feature unlocks) leave it blank.

Usage:
    from payments.models import ActivityEvent, ActivityType

    ActivityEvent.objects.filter(
        creator_id=creator_id,
        type=ActivityType.FEE_MISMATCH_ALERT,
    )
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class ActivityType(models.TextChoices):
    """Kinds of audit records."""

    SUBSCRIPTION_CREATED = "subscription_created", "Subscription Created"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated", "Subscription Reactivated"
    SUBSCRIPTION_CANCELED = "subscription_canceled", "Subscription Canceled"
    SUBSCRIPTION_PAUSED = "subscription_paused", "Subscription Paused"
    SUBSCRIPTION_RESUMED = "subscription_resumed", "Subscription Resumed"
    PAYMENT_RECEIVED = "payment_received", "Payment Received"
    PAYMENT_FAILED = "payment_failed", "Payment Failed"
    PAYMENT_REFUNDED = "payment_refunded", "Payment Refunded"
    DISPUTE_CREATED = "dispute_created", "Dispute Created"
    DISPUTE_WON = "dispute_won", "Dispute Won"
    DISPUTE_LOST = "dispute_lost", "Dispute Lost"
    FEE_MISMATCH_ALERT = "fee_mismatch_alert", "Fee Mismatch Alert"
    PAYOUT_MISMATCH = "payout_mismatch", "Payout Mismatch"
    SALARY_MODE_UNLOCKED = "salary_mode_unlocked", "Salary Mode Unlocked"


class ActivityEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Audit/activity record.

    Fields:
        creator_id: Creator the activity belongs to
        type: Activity kind
        provider_event_id: Event that produced this record (primary records only)
        subscription: Related subscription, when any
        payload: Structured context (amounts, statuses, alert figures)
    """

    creator_id = models.UUIDField(db_index=True)

    type = models.CharField(
        max_length=40,
        choices=ActivityType.choices,
        db_index=True,
    )

    provider_event_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
    )

    subscription = models.ForeignKey(
        "payments.Subscription",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activities",
    )

    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Activity Event"
        verbose_name_plural = "Activity Events"
        indexes = [
            models.Index(fields=["creator_id", "type"]),
        ]

    def __str__(self) -> str:
        return f"ActivityEvent({self.type}, creator={self.creator_id})"
