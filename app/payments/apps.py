"""
Payments app configuration.

This app provides the webhook-to-ledger pipeline:
- Fee calculation for every fee model version
- Idempotent, per-subscription locked webhook processing
- Subscription state transitions and the atomic ledger write
- Post-commit side effects (notifications, cache invalidation, unlocks)
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"

    def ready(self):
        from payments import signals

        signals.register_signals()
