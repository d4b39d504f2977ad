"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing stored webhook events through the pipeline
- Re-queuing events that failed transiently or lost the lock race
- Requesting payer/creator notifications

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import OperationalError
from django.db.models import Q

from core.exceptions import ServiceUnavailableError

from payments.idempotency import already_processed
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.webhooks.pipeline import WebhookOutcome, process_event

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_WEBHOOK_RETRIES = getattr(settings, "PAYMENTS_WEBHOOK_MAX_RETRIES", 5)
RETRY_BATCH_SIZE = 100

# Only these propagate to Celery for automatic retry
TRANSIENT_ERRORS = (ServiceUnavailableError, OperationalError)


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


def _record_outcome(webhook_event: WebhookEvent, outcome: WebhookOutcome) -> None:
    if outcome.status == WebhookOutcome.PROCESSED:
        webhook_event.mark_processed(outcome.status)
    elif outcome.status == WebhookOutcome.REJECTED:
        webhook_event.mark_failed(
            f"[{outcome.error_code}] {outcome.reason}", outcome=outcome.status
        )
    else:
        webhook_event.mark_skipped(outcome.status, outcome.reason)
    webhook_event.save()


@shared_task(
    bind=True,
    autoretry_for=TRANSIENT_ERRORS,
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored webhook event asynchronously.

    This task:
    1. Loads the WebhookEvent by ID
    2. Marks it as processing
    3. Runs the pipeline
    4. Records the outcome on the row

    Rejected events are marked failed for manual review and are not
    retried. Transient errors mark the row failed with outcome 'retry' and
    re-raise so Celery retries with backoff.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with the outcome status
    """
    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        return {
            "status": WebhookOutcome.DUPLICATE,
            "webhook_event_id": str(webhook_event_id),
        }

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Processing webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "provider_event_id": webhook_event.provider_event_id,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        outcome = process_event(
            webhook_event.provider_event_id,
            webhook_event.event_type,
            webhook_event.payload,
        )
    except TRANSIENT_ERRORS as e:
        webhook_event.mark_failed(
            f"{type(e).__name__}: {e}", outcome=WebhookOutcome.RETRY
        )
        webhook_event.save()
        logger.warning(
            "Webhook processing failed transiently, will retry",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
                "error": str(e),
            },
        )
        raise
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "provider_event_id": webhook_event.provider_event_id,
            },
        )
        raise

    _record_outcome(webhook_event, outcome)
    return {
        "status": outcome.status,
        "webhook_event_id": str(webhook_event_id),
        "provider_event_id": outcome.event_id,
        "acknowledge": outcome.acknowledge,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to re-queue webhook events that never reached the ledger.

    Picks up events that failed transiently and events skipped because
    another worker held their subscription lock, up to the retry cap.
    Rejected events stay failed for manual review.

    This task should be scheduled via celery-beat, e.g., every 5 minutes.

    Returns:
        Dict with count of webhooks queued for retry
    """
    candidates = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED, outcome=WebhookOutcome.RETRY)
        | Q(status=WebhookEventStatus.SKIPPED, outcome=WebhookOutcome.LOCK_BUSY),
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in candidates:
        if webhook.provider_event_id and already_processed(webhook.provider_event_id):
            webhook.mark_processed(WebhookOutcome.DUPLICATE)
            webhook.save()
            continue
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "provider_event_id": webhook.provider_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    logger.info(
        f"Queued {queued_count} webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


# =============================================================================
# Notification Tasks
# =============================================================================


@shared_task(
    autoretry_for=(ServiceUnavailableError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def send_payment_notification(
    notification_type: str,
    subscription_id: str,
    payment_id: str | None = None,
) -> dict:
    """
    Request payer and creator notifications for a ledger event.

    Rendering and delivery belong to the notification service; this task
    is the outbound request. Runs after commit, so a failure here never
    touches the ledger.

    Args:
        notification_type: 'payment_received', 'payment_refunded' or
            'dispute_created'
        subscription_id: Subscription the event belongs to
        payment_id: Payment row the notification is about

    Returns:
        Dict describing the request
    """
    from payments.models import Payment, Subscription

    subscription = Subscription.objects.filter(id=subscription_id).first()
    if subscription is None:
        logger.warning(
            "Notification requested for missing subscription",
            extra={"subscription_id": subscription_id, "type": notification_type},
        )
        return {"status": "not_found", "subscription_id": subscription_id}

    payment = Payment.objects.filter(id=payment_id).first() if payment_id else None
    recipients = [str(subscription.subscriber_id), str(subscription.creator_id)]

    logger.info(
        f"Notification requested: {notification_type}",
        extra={
            "type": notification_type,
            "subscription_id": subscription_id,
            "payment_id": payment_id,
            "recipients": recipients,
            "gross_cents": payment.gross_cents if payment else None,
        },
    )
    return {
        "status": "requested",
        "type": notification_type,
        "recipients": recipients,
        "payment_id": payment_id,
    }
