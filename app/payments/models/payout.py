"""
Payout model for transfers from the platform to creators.

Provider confirmations are reconciled against the stored amount and
currency. Disagreements move the payout to NEEDS_INVESTIGATION for human
review; the stored figures are never auto-corrected.

Usage:
    from payments.models import Payout

    payout = Payout.objects.create(
        provider_reference="trf_123",
        creator_id=creator_id,
        amount_cents=95500,
        currency="USD",
    )
    payout.complete()  # pending -> succeeded
    payout.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin
from payments.state_machines import PayoutStatus


class Payout(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money leaving the platform to a creator.

    State Flow:
        PENDING -> SUCCEEDED (confirmation matches)
        PENDING -> FAILED (provider reports failure)
        PENDING -> NEEDS_INVESTIGATION (confirmation disagrees)

    Fields:
        provider_reference: Provider transfer reference (unique)
        creator_id: Recipient creator
        amount_cents / currency: Amount the ledger expects to pay out
        status: Current FSM state
        paid_at: When the provider confirmed success
        investigation_note: What disagreed, for the reviewer
    """

    provider_reference = models.CharField(max_length=255, unique=True)
    creator_id = models.UUIDField(db_index=True)
    amount_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="USD")

    status = FSMField(
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
    )

    paid_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")
    investigation_note = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"

    def __str__(self) -> str:
        return f"Payout({self.provider_reference}, {self.status}, {self.amount_cents} {self.currency})"

    @transition(field=status, source=PayoutStatus.PENDING, target=PayoutStatus.SUCCEEDED)
    def complete(self):
        self.paid_at = timezone.now()

    @transition(field=status, source=PayoutStatus.PENDING, target=PayoutStatus.FAILED)
    def fail(self, reason: str = ""):
        self.failure_reason = reason

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.FAILED],
        target=PayoutStatus.NEEDS_INVESTIGATION,
    )
    def flag_for_investigation(self, note: str):
        self.investigation_note = note
