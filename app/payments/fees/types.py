"""
Data types for fee calculation.

Usage:
    from payments.fees.types import FeeInput, FeeModel, FeeMode

    fee_input = FeeInput(
        amount_cents=1000,
        currency="USD",
        classification="personal",
        fee_mode=FeeMode.SPLIT,
        fee_model=FeeModel.SPLIT,
        creator_country="US",
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.db import models


class FeeModel(models.TextChoices):
    """
    Fee model version a subscription was created under.

    Resolved once at creation and persisted; renewals always reuse it.
    """

    LEGACY = "legacy", "Legacy"
    FLAT = "flat", "Flat"
    PROGRESSIVE = "progressive", "Progressive"
    SPLIT = "split_v1", "Split"


class FeeMode(models.TextChoices):
    """Who carries the platform fee."""

    ABSORB = "absorb", "Creator absorbs"
    PASS_TO_SUBSCRIBER = "pass_to_subscriber", "Passed to subscriber"
    SPLIT = "split", "Split"


@dataclass(frozen=True)
class FeeInput:
    """
    Input to the fee engine.

    Attributes:
        amount_cents: Price to compute the fee on. The creator's set price
            for flat, progressive and split; the gross charge for legacy.
        currency: ISO 4217 code (any case)
        classification: Creator classification ('personal' or 'service')
        fee_mode: How the fee is carried (ignored by legacy and split)
        fee_model: Fee model version
        creator_country: ISO 3166 alpha-2 payout country of the creator
        platform_country: Platform's home processing country
        cross_border: Cross-border flag stored with the subscription's terms;
            when set it wins over the country comparison
    """

    amount_cents: int
    currency: str
    classification: str = "personal"
    fee_mode: str = FeeMode.SPLIT
    fee_model: str = FeeModel.SPLIT
    creator_country: str | None = None
    platform_country: str = "US"
    cross_border: bool | None = None


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Result of a fee calculation.

    ``gross_cents - fee_cents == net_cents`` always holds. ``base_price_cents``
    is the creator's nominal price, stored on the subscription and reused
    unchanged for every renewal.
    """

    gross_cents: int
    fee_cents: int
    net_cents: int
    base_price_cents: int
    currency: str
    fee_model: str
    fee_mode: str
    effective_rate: Decimal = Decimal("0")
    was_capped: bool = False
    subscriber_fee_cents: int | None = None
    creator_fee_cents: int | None = None

    @property
    def is_balanced(self) -> bool:
        return self.gross_cents - self.fee_cents == self.net_cents


@dataclass(frozen=True)
class FeeAuditResult:
    """Outcome of comparing an expected fee with a provider-reported one."""

    matches: bool
    expected_cents: int
    actual_cents: int
    tolerance_cents: int

    @property
    def difference_cents(self) -> int:
        return self.actual_cents - self.expected_cents
