"""
Payment services that run outside the subscription-locked ledger path.

This module provides:
- PayoutReconciliationService: Confirms payouts against provider figures

Usage:
    from payments.services import PayoutReconciliationService

    result = PayoutReconciliationService.confirm_payout(
        reference="trf_123",
        amount_cents=95500,
        currency="USD",
    )
"""

from payments.services.reconciliation import (
    PayoutConfirmation,
    PayoutReconciliationService,
)

__all__ = [
    "PayoutConfirmation",
    "PayoutReconciliationService",
]
