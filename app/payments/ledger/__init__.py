"""
Ledger - the atomic write path for subscriptions and payments.

Every mutation of the Subscription and Payment tables goes through
LedgerWriter, always inside the subscription lock and after the locked
idempotency re-check.

Public API:
    Service:
        LedgerWriter - record_charge, record_failure, record_cancellation,
            record_pause, record_resume, record_refund,
            record_dispute_opened, record_dispute_closed, track_conversion

    Types:
        ChargeEntry - Priced charge ready to be written
        ReversalEntry - Prorated refund/dispute figures
        LedgerWriteResult - Rows produced by one write unit

Usage:
    from payments.ledger import ChargeEntry, LedgerWriter

    result = LedgerWriter.record_charge(entry, transition, subscription)
    result.payment.net_cents
"""

from .services import LedgerWriter, prorate_reversal
from .types import ChargeEntry, LedgerWriteResult, ReversalEntry

__all__ = [
    # Service
    "LedgerWriter",
    "prorate_reversal",
    # Types
    "ChargeEntry",
    "LedgerWriteResult",
    "ReversalEntry",
]
