"""
Charge pricing: turn a parsed charge into a ChargeEntry.

New subscriptions take their terms from checkout metadata (or the global
default fee mode when the metadata carries none). Existing subscriptions
always reuse the terms stored on the row, so a renewal is priced exactly as
the first charge was, whatever the current defaults are. That includes the
creator classification and cross-border flag: both are read from the
creator account and platform setting once, when the subscription is created.

The fee engine is authoritative for the recorded net; the recorded gross is
what the payer was charged. Figures the checkout metadata or the provider
report are audited against the engine and any disagreement beyond tolerance
becomes a fee_mismatch_alert.

Usage:
    from payments.pricing import price_charge

    entry, terms = price_charge(event_id, charge, existing)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from payments.exceptions import PaymentError
from payments.fees import (
    FeeAuditResult,
    FeeInput,
    FeeMode,
    FeeModel,
    audit_fee,
    audit_tolerance,
    calculate_fee,
    is_cross_border,
    resolve_base_price,
)
from payments.fees.constants import DEFAULT_PLATFORM_COUNTRY
from payments.ledger import ChargeEntry
from payments.models import CreatorAccount
from payments.state_machines import CreatorClassification
from payments.state_machines.transitions import SubscriptionTerms, next_period_end

if TYPE_CHECKING:
    from uuid import UUID

    from payments.fees import FeeBreakdown
    from payments.models import Subscription
    from payments.webhooks.metadata import ChargeEvent

logger = logging.getLogger(__name__)


def default_fee_terms() -> tuple[str, str]:
    """
    Fee model and mode for a new subscription without explicit terms.

    Only ever consulted at creation; renewals never read it.
    """
    fee_mode = getattr(settings, "PAYMENTS_DEFAULT_FEE_MODE", FeeMode.SPLIT)
    if fee_mode == FeeMode.SPLIT:
        return FeeModel.SPLIT, FeeMode.SPLIT
    return FeeModel.FLAT, fee_mode


def creator_profile(creator_id: UUID) -> tuple[str, str | None]:
    """Classification and payout country for a creator, with defaults."""
    account = CreatorAccount.objects.filter(creator_id=creator_id).first()
    if account is None:
        return CreatorClassification.PERSONAL, None
    return account.classification, account.country_code or None


def resolve_terms(charge: ChargeEvent, existing: Subscription | None) -> SubscriptionTerms:
    """
    Terms the charge is priced under.

    Raises:
        FeeCalculationError: If a new subscription's base price cannot be
            recovered from the metadata
        PaymentError: If a renewal arrives in a different currency
    """
    metadata = charge.metadata
    if existing is not None:
        if existing.currency != charge.currency:
            raise PaymentError(
                f"Charge currency {charge.currency} does not match "
                f"subscription currency {existing.currency}",
                error_code="CURRENCY_MISMATCH",
                details={"expected": [existing.currency], "actual": [charge.currency]},
            )
        return SubscriptionTerms(
            subscriber_id=existing.subscriber_id,
            creator_id=existing.creator_id,
            interval=existing.interval,
            base_price_cents=existing.base_price_cents,
            currency=existing.currency,
            fee_model=existing.fee_model,
            fee_mode=existing.fee_mode,
            creator_classification=existing.creator_classification,
            cross_border=existing.cross_border,
            provider_subscription_id=existing.provider_subscription_id,
            provider_customer_id=existing.provider_customer_id,
        )

    if metadata.fee_model:
        fee_model, fee_mode = metadata.fee_model, metadata.fee_mode
    else:
        fee_model, fee_mode = default_fee_terms()

    base_price = resolve_base_price(
        fee_model,
        fee_mode,
        gross_cents=charge.amount_cents,
        net_cents=metadata.net_amount_cents,
        base_amount_cents=metadata.base_amount_cents,
    )
    classification, country = creator_profile(metadata.creator_id)
    platform_country = getattr(
        settings, "PAYMENTS_PLATFORM_COUNTRY", DEFAULT_PLATFORM_COUNTRY
    )
    return SubscriptionTerms(
        subscriber_id=charge.subscriber_id,
        creator_id=metadata.creator_id,
        interval=metadata.interval,
        base_price_cents=base_price,
        currency=charge.currency,
        fee_model=fee_model,
        fee_mode=fee_mode,
        creator_classification=classification,
        cross_border=is_cross_border(country, platform_country),
        provider_subscription_id=charge.provider_subscription_id,
        provider_customer_id=charge.provider_customer_id,
    )


def audit_charge(charge: ChargeEvent, breakdown: FeeBreakdown) -> dict[str, FeeAuditResult]:
    """Compare the engine's breakdown with every figure reported alongside the charge."""
    audits = {}
    if charge.metadata.service_fee_cents is not None:
        audits["metadata"] = audit_fee(breakdown, charge.metadata.service_fee_cents)
    if charge.provider_fee_cents is not None:
        audits["provider"] = audit_fee(breakdown, charge.provider_fee_cents)

    tolerance = audit_tolerance(breakdown)
    audits["charged_amount"] = FeeAuditResult(
        matches=abs(charge.amount_cents - breakdown.gross_cents) <= tolerance,
        expected_cents=breakdown.gross_cents,
        actual_cents=charge.amount_cents,
        tolerance_cents=tolerance,
    )
    return audits


def charge_period_end(charge: ChargeEvent, interval: str) -> datetime | None:
    """Provider-reported period end, else one calendar month from the charge."""
    if charge.period_end is not None:
        return charge.period_end
    return next_period_end(interval, charge.occurred_at or timezone.now())


def price_charge(
    event_id: str,
    charge: ChargeEvent,
    existing: Subscription | None,
    pending: bool = False,
) -> tuple[ChargeEntry, SubscriptionTerms]:
    """
    Price a charge under the subscription's terms.

    Returns:
        (ChargeEntry, SubscriptionTerms) ready for the ledger writer
    """
    terms = resolve_terms(charge, existing)
    breakdown = calculate_fee(
        FeeInput(
            amount_cents=terms.base_price_cents,
            currency=terms.currency,
            classification=terms.creator_classification,
            fee_mode=terms.fee_mode,
            fee_model=terms.fee_model,
            cross_border=terms.cross_border,
        )
    )
    audits = {} if pending else audit_charge(charge, breakdown)
    logger.debug(
        f"Priced charge {event_id} under {terms.fee_model}/{terms.fee_mode}",
        extra={
            "provider_event_id": event_id,
            "base_price_cents": terms.base_price_cents,
            "fee_cents": breakdown.fee_cents,
            "renewal": existing is not None,
        },
    )
    entry = ChargeEntry(
        event_id=event_id,
        charge=charge,
        breakdown=breakdown,
        fee_audits=audits,
        pending=pending,
    )
    return entry, terms


__all__ = [
    "audit_charge",
    "charge_period_end",
    "creator_profile",
    "default_fee_terms",
    "price_charge",
    "resolve_terms",
]
