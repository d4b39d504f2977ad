"""
CreatorAccount model: the creator attributes the payment core needs.

Classification and payout country feed the fee engine. The successful
payment counter drives the salary-mode (payday alignment) unlock.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin
from payments.state_machines import CreatorClassification


class CreatorAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Payment-side view of a creator.

    Fields:
        creator_id: Creator identifier (matches Subscription.creator_id)
        classification: Personal or service creator
        country_code: ISO 3166 alpha-2 payout country
        total_successful_payments: Count of positive settled payments
        payday_alignment_unlocked: Whether salary mode has been unlocked
    """

    creator_id = models.UUIDField(unique=True)

    classification = models.CharField(
        max_length=20,
        choices=CreatorClassification.choices,
        default=CreatorClassification.PERSONAL,
    )

    country_code = models.CharField(
        max_length=2,
        blank=True,
        default="",
        help_text="Payout jurisdiction (ISO 3166 alpha-2)",
    )

    total_successful_payments = models.PositiveIntegerField(default=0)

    payday_alignment_unlocked = models.BooleanField(default=False)

    class Meta:
        verbose_name = "Creator Account"
        verbose_name_plural = "Creator Accounts"

    def __str__(self) -> str:
        return f"CreatorAccount({self.creator_id}, {self.classification})"
