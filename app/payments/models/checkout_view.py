"""
CheckoutView model: conversion tracking for a checkout page view.

Updated best-effort outside the ledger transaction; a failed update never
affects the financial write.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class CheckoutView(UUIDPrimaryKeyMixin, BaseModel):
    """
    One tracked view of a creator's checkout page.

    Fields:
        view_id: Client-generated view identifier passed through checkout
        creator_id: Creator whose page was viewed
        request_id: Originating request reference, when the checkout was a request
        started_checkout / completed_checkout: Funnel flags
    """

    view_id = models.CharField(max_length=64, unique=True)
    creator_id = models.UUIDField(db_index=True)
    request_id = models.CharField(max_length=64, blank=True, default="")
    started_checkout = models.BooleanField(default=False)
    completed_checkout = models.BooleanField(default=False)

    class Meta:
        verbose_name = "Checkout View"
        verbose_name_plural = "Checkout Views"

    def __str__(self) -> str:
        return f"CheckoutView({self.view_id})"
