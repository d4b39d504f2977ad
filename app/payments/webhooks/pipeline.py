"""
Webhook-to-ledger pipeline.

Control flow for one inbound event:

    require event id
    -> idempotency pre-check (unlocked, fast path)
    -> parse payload (strict schema)
    -> acquire subscription lock (non-blocking)
    -> idempotency re-check (authoritative, first statement under the lock)
    -> fee engine -> state machine -> ledger writer (one transaction)
    -> release lock
    -> side effects (after commit, best-effort)

Acknowledgement policy:
    processed, duplicate, lock_busy, ignored and rejected are acknowledged
    so the provider stops redelivering. Only transient infrastructure
    failures (retryable errors, database errors) propagate, which makes the
    transport answer non-2xx and invites redelivery.

Usage:
    from payments.webhooks.pipeline import process_event

    outcome = process_event(event.provider_event_id, event.event_type, event.payload)
    if outcome.acknowledge:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.db import IntegrityError, transaction

from core.exceptions import BaseApplicationError

from payments.idempotency import already_processed, require_event_id
from payments.ledger import LedgerWriteResult
from payments.locks import hold_lock
from payments.side_effects import dispatch_after_commit
from payments.webhooks.handlers import get_handler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookOutcome:
    """
    Result of running one event through the pipeline.

    Attributes:
        status: One of the outcome constants below
        event_id: Provider event id, when it had one
        reason: Human-readable detail for non-processed outcomes
        error_code: Error code for rejected events
        result: Ledger write result for processed subscription events
    """

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    LOCK_BUSY = "lock_busy"
    IGNORED = "ignored"
    REJECTED = "rejected"
    RETRY = "retry"

    status: str
    event_id: str = ""
    reason: str = ""
    error_code: str = ""
    result: LedgerWriteResult | None = None

    @property
    def acknowledge(self) -> bool:
        """Whether the transport should answer 2xx and stop redelivery."""
        return self.status != self.RETRY

    @property
    def wrote_ledger(self) -> bool:
        return self.status == self.PROCESSED


def _rejected(event_id: str, event_type: str, exc: BaseApplicationError) -> WebhookOutcome:
    logger.warning(
        f"Rejected {event_type} event {event_id or '<missing id>'}: {exc.message}",
        extra={"provider_event_id": event_id, "event_type": event_type, **exc.to_dict()},
    )
    return WebhookOutcome(
        status=WebhookOutcome.REJECTED,
        event_id=event_id,
        reason=exc.message,
        error_code=exc.error_code,
    )


def _duplicate(event_id: str, locked: bool) -> WebhookOutcome:
    logger.info(
        f"Duplicate delivery of {event_id}",
        extra={"provider_event_id": event_id, "detected_under_lock": locked},
    )
    return WebhookOutcome(
        status=WebhookOutcome.DUPLICATE,
        event_id=event_id,
        reason="already processed",
    )


def process_event(provider_event_id: str | None, event_type: str, payload) -> WebhookOutcome:
    """
    Run one inbound event through the pipeline.

    Args:
        provider_event_id: Provider-supplied unique event id
        event_type: Normalized event type
        payload: Event payload

    Returns:
        WebhookOutcome; the pipeline itself never returns RETRY, callers
        build it from the transient errors raised below

    Raises:
        BaseApplicationError: Retryable errors (lock backend unavailable)
        DatabaseError: Datastore failures
    """
    event_id = ""
    try:
        event_id = require_event_id(provider_event_id)

        handler = get_handler(event_type)
        if handler is None:
            logger.info(
                f"No handler registered for event type: {event_type}",
                extra={"provider_event_id": event_id, "event_type": event_type},
            )
            return WebhookOutcome(
                status=WebhookOutcome.IGNORED,
                event_id=event_id,
                reason=f"unhandled event type {event_type}",
            )

        if already_processed(event_id):
            return _duplicate(event_id, locked=False)

        parsed = handler.parse(payload)
        key = handler.lock_key(parsed)

        if key is None:
            result = handler.apply(event_id, parsed)
        else:
            with hold_lock(key) as token:
                if token is None:
                    logger.info(
                        f"Lock busy for {key}; event {event_id} is being handled elsewhere",
                        extra={"provider_event_id": event_id, "lock_key": key},
                    )
                    return WebhookOutcome(
                        status=WebhookOutcome.LOCK_BUSY,
                        event_id=event_id,
                        reason="another worker holds the subscription lock",
                    )

                if already_processed(event_id):
                    return _duplicate(event_id, locked=True)

                try:
                    with transaction.atomic():
                        result = handler.apply(event_id, parsed)
                except IntegrityError:
                    if already_processed(event_id):
                        return _duplicate(event_id, locked=True)
                    raise

    except BaseApplicationError as exc:
        if exc.retryable:
            logger.warning(
                f"Transient failure on {event_type} event {event_id}: {exc.message}",
                extra={"provider_event_id": event_id, "error_code": exc.error_code},
            )
            raise
        return _rejected(event_id, event_type, exc)

    if result is not None:
        dispatch_after_commit(result.side_effects)
    try:
        handler.after_commit(parsed, result)
    except Exception:
        logger.exception(
            f"Post-commit work failed for {event_id}",
            extra={"provider_event_id": event_id, "event_type": event_type},
        )

    logger.info(
        f"Processed {event_type} event {event_id}",
        extra={"provider_event_id": event_id, "event_type": event_type},
    )
    return WebhookOutcome(status=WebhookOutcome.PROCESSED, event_id=event_id, result=result)


__all__ = ["WebhookOutcome", "process_event"]
