"""
Payment model: the immutable per-event ledger row.

One row is written per financial event (charge, refund, dispute opened or
closed). Rows are never updated afterwards; reversals are new rows with
negative magnitudes that point back at the original charge.

Invariant:
    gross_cents - fee_cents == net_cents for every row.

Usage:
    from payments.models import Payment

    Payment.objects.filter(provider_event_id="evt_123").exists()
"""

from __future__ import annotations

from django.db import models
from django.db.models import F

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin
from payments.fees.types import FeeModel
from payments.state_machines import PaymentStatus, PaymentType


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    Immutable ledger row for one provider event.

    Fields:
        subscription: Subscription this row belongs to
        subscriber_id / creator_id: Parties, denormalized for reporting
        gross_cents: Amount paid by the payer
        amount_cents: Creator's base price the fee was computed on
        fee_cents: Total platform fee
        net_cents: Amount the creator receives
        subscriber_fee_cents / creator_fee_cents: Split attribution
        fee_model / fee_effective_rate / fee_was_capped: Fee provenance
        status: Ledger status of the row
        type: Recurring or one-time
        provider_event_id: Idempotency key (unique, never reused)
        provider_charge_id: Provider charge reference, used by reversals
        dispute_id: Provider dispute reference for dispute rows
        original_payment: Charge a reversal row refers to
        occurred_at: When the provider says the event happened
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    subscription = models.ForeignKey(
        "payments.Subscription",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Subscription this payment belongs to",
    )

    subscriber_id = models.UUIDField(db_index=True)
    creator_id = models.UUIDField(db_index=True)

    original_payment = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="reversals",
        help_text="Charge this reversal row refers to",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    gross_cents = models.BigIntegerField(help_text="Amount paid by the payer")
    amount_cents = models.BigIntegerField(help_text="Base price the fee was computed on")
    fee_cents = models.BigIntegerField(help_text="Total platform fee")
    net_cents = models.BigIntegerField(help_text="Amount the creator receives")
    subscriber_fee_cents = models.BigIntegerField(null=True, blank=True)
    creator_fee_cents = models.BigIntegerField(null=True, blank=True)
    currency = models.CharField(max_length=3, default="USD")

    # ==========================================================================
    # Fee Provenance
    # ==========================================================================

    fee_model = models.CharField(max_length=20, choices=FeeModel.choices)
    fee_effective_rate = models.DecimalField(
        max_digits=7,
        decimal_places=4,
        null=True,
        blank=True,
    )
    fee_was_capped = models.BooleanField(default=False)

    # ==========================================================================
    # Status & References
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.SUCCEEDED,
        db_index=True,
    )

    type = models.CharField(
        max_length=20,
        choices=PaymentType.choices,
        default=PaymentType.RECURRING,
    )

    provider_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider event identifier (idempotency key)",
    )

    provider_charge_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
    )

    dispute_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
    )

    occurred_at = models.DateTimeField(help_text="When the event happened")

    class Meta:
        ordering = ["-occurred_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["creator_id", "occurred_at"]),
            models.Index(fields=["subscription", "occurred_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(gross_cents=F("fee_cents") + F("net_cents")),
                name="payment_gross_equals_fee_plus_net",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"Payment({self.provider_event_id}, {self.status}, "
            f"{self.gross_cents} {self.currency})"
        )

    @property
    def is_reversal(self) -> bool:
        return self.original_payment_id is not None
