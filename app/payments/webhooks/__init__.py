"""
Webhook handling for normalized payment-provider events.

Events arrive already verified and normalized by the transport layer, are
stored as WebhookEvent rows and processed asynchronously via Celery tasks.

Usage:
    from payments.webhooks import process_event

    outcome = process_event("evt_123", "charge.succeeded", payload)
"""

from payments.webhooks.handlers import get_handler, register_handler
from payments.webhooks.pipeline import WebhookOutcome, process_event

__all__ = [
    "WebhookOutcome",
    "get_handler",
    "process_event",
    "register_handler",
]
