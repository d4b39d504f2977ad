"""
DisputeEvidence model: checkout-time context kept for chargeback defense.

Written inside the ledger transaction but in its own savepoint, so a failure
here is logged and never fails the Payment write.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class DisputeEvidence(UUIDPrimaryKeyMixin, BaseModel):
    """
    Optional 1:1 companion to a Payment.

    Fields:
        payment: The charge this evidence supports
        checkout_ip: Payer's network address at checkout
        user_agent: Payer's browser user agent
        accept_language: Payer's locale header
        checkout_timestamp: When checkout completed
        confirmation_email_sent: Whether a receipt was requested
    """

    payment = models.OneToOneField(
        "payments.Payment",
        on_delete=models.CASCADE,
        related_name="dispute_evidence",
    )

    checkout_ip = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default="")
    accept_language = models.CharField(max_length=255, blank=True, default="")
    checkout_timestamp = models.DateTimeField()
    confirmation_email_sent = models.BooleanField(default=False)

    class Meta:
        verbose_name = "Dispute Evidence"
        verbose_name_plural = "Dispute Evidence"

    def __str__(self) -> str:
        return f"DisputeEvidence(payment={self.payment_id})"
