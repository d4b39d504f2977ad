"""
Data types for ledger writes.

Types:
    ChargeEntry: Everything the writer needs to record a charge
    ReversalEntry: A refund or dispute row derived from an original charge
    LedgerWriteResult: What a write unit produced

Usage:
    from payments.ledger.types import ChargeEntry, ReversalEntry

    reversal = ReversalEntry(gross_cents=500, fee_cents=43, net_cents=457, amount_cents=478)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from payments.fees.types import FeeAuditResult, FeeBreakdown
    from payments.models import ActivityEvent, Payment, Subscription
    from payments.side_effects import SideEffects
    from payments.webhooks.metadata import ChargeEvent


@dataclass(frozen=True)
class ChargeEntry:
    """
    A priced charge ready to be written.

    Attributes:
        event_id: Provider event id (idempotency key)
        charge: Parsed charge payload
        breakdown: Engine-computed breakdown from the subscription's terms.
            The recorded gross is the charged amount; the recorded net is
            the engine's, and the fee is whatever separates the two.
        fee_audits: Comparisons against fees reported by metadata or provider,
            keyed by source
        pending: Checkout started but not paid yet (no Payment row)
    """

    event_id: str
    charge: ChargeEvent
    breakdown: FeeBreakdown
    fee_audits: dict[str, FeeAuditResult] = field(default_factory=dict)
    pending: bool = False

    @property
    def occurred_at(self) -> datetime | None:
        return self.charge.occurred_at

    @property
    def gross_cents(self) -> int:
        """What the payer was actually charged."""
        return self.charge.amount_cents

    @property
    def net_cents(self) -> int:
        """Engine net under the subscription's terms, never above the charged amount."""
        return max(min(self.breakdown.net_cents, self.gross_cents), 0)

    @property
    def fee_cents(self) -> int:
        return self.gross_cents - self.net_cents

    @property
    def creator_fee_cents(self) -> int | None:
        if self.breakdown.creator_fee_cents is None:
            return None
        return self.breakdown.creator_fee_cents + self.breakdown.net_cents - self.net_cents

    @property
    def subscriber_fee_cents(self) -> int | None:
        if self.creator_fee_cents is None:
            return None
        return self.fee_cents - self.creator_fee_cents

    @property
    def mismatched_audits(self) -> dict[str, FeeAuditResult]:
        return {
            source: audit for source, audit in self.fee_audits.items() if not audit.matches
        }


@dataclass(frozen=True)
class ReversalEntry:
    """
    Figures for a reversal row, prorated from the original charge.

    All amounts are positive here; the writer stores them negated.
    """

    gross_cents: int
    fee_cents: int
    net_cents: int
    amount_cents: int
    subscriber_fee_cents: int | None = None
    creator_fee_cents: int | None = None

    @property
    def is_balanced(self) -> bool:
        return self.gross_cents - self.fee_cents == self.net_cents


@dataclass
class LedgerWriteResult:
    """Rows produced by one ledger write unit."""

    subscription: Subscription
    activity: ActivityEvent
    payment: Payment | None = None
    side_effects: SideEffects | None = None
    alerts: list[ActivityEvent] = field(default_factory=list)
