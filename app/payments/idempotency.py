"""
Idempotency guard for provider events.

An event counts as processed once it has produced a ledger row: a Payment
carrying its provider event id, or the primary ActivityEvent written by
ledger units that do not create a Payment (failures, cancellations, pauses).

The pipeline runs the check twice:
    1. Before taking the subscription lock, as a cheap short-circuit for
       obvious redeliveries.
    2. As the first statement inside the locked critical section. This is
       the authoritative check: two concurrent deliveries can both pass the
       unlocked check before either has written anything.

Usage:
    from payments.idempotency import already_processed, require_event_id

    event_id = require_event_id(webhook_event.provider_event_id)
    if already_processed(event_id):
        return
"""

from __future__ import annotations

import logging

from payments.exceptions import MissingEventIdError
from payments.models import ActivityEvent, Payment

logger = logging.getLogger(__name__)


def require_event_id(event_id: str | None) -> str:
    """
    Return a usable provider event id or reject the event.

    Raises:
        MissingEventIdError: If the id is missing, not a string, or blank
    """
    if not isinstance(event_id, str) or not event_id.strip():
        raise MissingEventIdError(
            "Event has no provider event identifier",
            details={"provider_event_id": [repr(event_id)]},
        )
    return event_id.strip()


def already_processed(event_id: str) -> bool:
    """Whether ``event_id`` has already produced a ledger row."""
    event_id = require_event_id(event_id)
    processed = (
        Payment.objects.filter(provider_event_id=event_id).exists()
        or ActivityEvent.objects.filter(provider_event_id=event_id).exists()
    )
    if processed:
        logger.info(
            f"Event {event_id} already processed",
            extra={"provider_event_id": event_id},
        )
    return processed


__all__ = ["already_processed", "require_event_id"]
