"""
Fee Calculation Engine.

Resolves gross/fee/net splits for a given amount, currency, creator
classification and fee model version. No I/O.

Usage:
    from payments.fees import FeeInput, FeeModel, FeeMode, calculate_fee

    breakdown = calculate_fee(
        FeeInput(
            amount_cents=subscription.base_price_cents,
            currency=subscription.currency,
            classification=creator.classification,
            fee_mode=subscription.fee_mode,
            fee_model=subscription.fee_model,
            creator_country=creator.country_code,
        )
    )
"""

from payments.fees.audit import audit_fee, audit_tolerance
from payments.fees.calculator import (
    calculate_fee,
    estimate_processor_fee,
    is_cross_border,
    is_zero_decimal,
    minimum_platform_fee,
    resolve_base_price,
    round_half_up,
    split_shares,
)
from payments.fees.types import (
    FeeAuditResult,
    FeeBreakdown,
    FeeInput,
    FeeMode,
    FeeModel,
)

__all__ = [
    "FeeAuditResult",
    "FeeBreakdown",
    "FeeInput",
    "FeeMode",
    "FeeModel",
    "audit_fee",
    "audit_tolerance",
    "calculate_fee",
    "estimate_processor_fee",
    "is_cross_border",
    "is_zero_decimal",
    "minimum_platform_fee",
    "resolve_base_price",
    "round_half_up",
    "split_shares",
]
