"""
Django signals for payments app.

Signals are sent by the side-effect dispatcher strictly after the ledger
transaction has committed. Receivers are excluded collaborators (email,
analytics, dashboards); a failing receiver never affects the ledger.

Signals:
    payment_settled: A charge was recorded (kwargs: payment, subscription)
    payment_reversed: A refund or dispute row was recorded
        (kwargs: payment, subscription)
    subscription_status_changed: A subscription changed status
        (kwargs: subscription, previous_status)

Usage:
    from django.dispatch import receiver
    from payments.signals import payment_settled

    @receiver(payment_settled)
    def on_payment_settled(sender, payment, subscription, **kwargs):
        ...
"""

from __future__ import annotations

import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

payment_settled = Signal()
payment_reversed = Signal()
subscription_status_changed = Signal()


@receiver(subscription_status_changed)
def log_subscription_status_change(sender, subscription, previous_status, **kwargs):
    logger.info(
        f"Subscription {subscription.id} status changed "
        f"from {previous_status} to {subscription.status}",
        extra={
            "subscription_id": str(subscription.id),
            "previous_status": previous_status,
            "status": subscription.status,
        },
    )


def register_signals():
    """
    Register all payment signals.

    Called from apps.py when app is ready. Receivers above are connected
    by their decorators on import.
    """
    logger.debug("Payment signals registered")
