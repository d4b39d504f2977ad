"""
WebhookEvent model for inbound provider notifications.

Stores each validated event record {provider_event_id, event_type, payload}
handed over by the transport layer, together with its processing status.
The row is intake bookkeeping only: the financial idempotency guarantee
comes from the ledger rows themselves (see payments.idempotency).

Usage:
    from payments.models import WebhookEvent
    from payments.tasks import process_webhook_event

    event, created = WebhookEvent.objects.get_or_create(
        provider="stripe",
        provider_event_id="evt_123",
        defaults={"event_type": "charge.succeeded", "payload": payload},
    )
    process_webhook_event.delay(str(event.id))
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin
from payments.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks one inbound provider event.

    Processing Flow:
        1. Transport layer verifies the signature and stores the row
        2. Task marks it PROCESSING and runs the pipeline
        3. Acknowledged outcomes mark it PROCESSED or SKIPPED
        4. Rejected outcomes mark it FAILED for manual review
        5. Transient failures mark it FAILED and re-raise for retry

    Fields:
        provider: Payment provider that sent the event
        provider_event_id: Provider's event identifier (the idempotency key)
        event_type: Normalized event type (e.g. 'charge.succeeded')
        payload: Event payload (JSON)
        status: Processing status
        outcome: Last pipeline outcome (processed, duplicate, lock_busy, ...)
        processed_at: When processing finished
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    provider = models.CharField(
        max_length=30,
        default="stripe",
        help_text="Payment provider that sent the event",
    )

    provider_event_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Provider event identifier; required for processing",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Normalized event type (e.g., 'charge.succeeded')",
    )

    payload = models.JSONField(
        default=dict,
        help_text="Event payload (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    outcome = models.CharField(
        max_length=20,
        blank=True,
        default="",
        help_text="Last pipeline outcome",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When processing finished",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["status", "retry_count"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "provider_event_id"],
                condition=~models.Q(provider_event_id=""),
                name="webhook_event_unique_provider_event",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider}:{self.provider_event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Failed events can be re-queued until the retry cap is reached."""
        max_retries = getattr(settings, "PAYMENTS_WEBHOOK_MAX_RETRIES", 5)
        return self.is_failed and self.retry_count < max_retries

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self, outcome: str) -> None:
        """Mark event as handled. Does not save."""
        self.status = WebhookEventStatus.PROCESSED
        self.outcome = outcome
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_skipped(self, outcome: str, reason: str | None = None) -> None:
        """Mark event as acknowledged without ledger work. Does not save."""
        self.status = WebhookEventStatus.SKIPPED
        self.outcome = outcome
        self.processed_at = timezone.now()
        self.error_message = reason

    def mark_failed(self, error_message: str, outcome: str = "") -> None:
        """Mark event as failed with error message. Does not save."""
        self.status = WebhookEventStatus.FAILED
        self.outcome = outcome
        self.error_message = error_message
