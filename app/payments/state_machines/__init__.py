"""
State machine enums and transition resolution for payment models.

States live in ``states``; the tagged union of subscription transitions and
the calendar arithmetic used to extend billing periods live in
``transitions``.
"""

from payments.state_machines.states import (
    CreatorClassification,
    PaymentStatus,
    PaymentType,
    PayoutStatus,
    SubscriptionInterval,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "CreatorClassification",
    "PaymentStatus",
    "PaymentType",
    "PayoutStatus",
    "SubscriptionInterval",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
