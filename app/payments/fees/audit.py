"""
Fee auditing against provider-reported figures.

Capped breakdowns follow processor minimums rather than the nominal rate,
so they are compared with a wider tolerance band instead of being flagged.
"""

from __future__ import annotations

from decimal import Decimal

from payments.fees import constants
from payments.fees.calculator import round_half_up
from payments.fees.types import FeeAuditResult, FeeBreakdown


def audit_tolerance(expected: FeeBreakdown) -> int:
    """Allowed absolute difference, in minor units, for ``expected``."""
    tolerance = constants.FEE_AUDIT_TOLERANCE_CENTS
    if expected.was_capped:
        tolerance += round_half_up(
            Decimal(expected.fee_cents) * constants.CAPPED_FEE_AUDIT_TOLERANCE_RATE
        )
    return tolerance


def audit_fee(expected: FeeBreakdown, actual_fee_cents: int) -> FeeAuditResult:
    """
    Compare an engine-computed fee with the fee a provider reports.

    Args:
        expected: Breakdown computed from the subscription's stored terms
        actual_fee_cents: Fee the provider says it collected

    Returns:
        FeeAuditResult; ``matches`` is False when the difference exceeds
        the tolerance band
    """
    tolerance = audit_tolerance(expected)
    return FeeAuditResult(
        matches=abs(actual_fee_cents - expected.fee_cents) <= tolerance,
        expected_cents=expected.fee_cents,
        actual_cents=actual_fee_cents,
        tolerance_cents=tolerance,
    )


__all__ = ["audit_fee", "audit_tolerance"]
