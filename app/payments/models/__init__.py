"""
Payment domain models.

- Subscription: Subscriber/creator relationship with locked price and fee terms
- Payment: Immutable per-event ledger row
- DisputeEvidence: Checkout-time context for chargeback defense
- ActivityEvent: Audit record written with every ledger mutation
- CreatorAccount: Creator attributes used for fees and feature unlocks
- CheckoutView: Conversion tracking for checkout page views
- Payout: Transfers to creators, reconciled against provider confirmations
- WebhookEvent: Inbound provider event intake
"""

from payments.models.activity import ActivityEvent, ActivityType
from payments.models.checkout_view import CheckoutView
from payments.models.creator_account import CreatorAccount
from payments.models.dispute_evidence import DisputeEvidence
from payments.models.payment import Payment
from payments.models.payout import Payout
from payments.models.subscription import Subscription
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "ActivityEvent",
    "ActivityType",
    "CheckoutView",
    "CreatorAccount",
    "DisputeEvidence",
    "Payment",
    "Payout",
    "Subscription",
    "WebhookEvent",
]
