"""
Tests for payment Celery tasks.

Tasks are called directly (``.run`` / plain call) rather than through a
broker; queueing is patched where it matters.
"""

import uuid
from unittest.mock import patch

import pytest
from django.db import OperationalError

from payments.exceptions import LockBackendUnavailableError
from payments.state_machines import WebhookEventStatus
from payments.tasks import (
    process_webhook_event,
    retry_failed_webhooks,
    send_payment_notification,
)
from payments.tests.factories import (
    PaymentFactory,
    SubscriptionFactory,
    WebhookEventFactory,
)
from payments.webhooks.pipeline import WebhookOutcome


@pytest.fixture
def stored_charge(db, charge_payload):
    return WebhookEventFactory(
        provider_event_id="evt_stored",
        event_type="charge.succeeded",
        payload=charge_payload(),
    )


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_processes_stored_event(
        self, stored_charge, lock_backend, payments_settings, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = process_webhook_event(str(stored_charge.id))

        assert result["status"] == WebhookOutcome.PROCESSED
        assert result["acknowledge"] is True
        stored_charge.refresh_from_db()
        assert stored_charge.status == WebhookEventStatus.PROCESSED
        assert stored_charge.outcome == WebhookOutcome.PROCESSED
        assert stored_charge.retry_count == 1

    def test_missing_row(self, db):
        result = process_webhook_event(str(uuid.uuid4()))

        assert result["status"] == "not_found"

    def test_already_processed_row_is_skipped(self, stored_charge):
        stored_charge.mark_processed(WebhookOutcome.PROCESSED)
        stored_charge.save()

        result = process_webhook_event(str(stored_charge.id))

        assert result["status"] == WebhookOutcome.DUPLICATE

    def test_rejected_event_is_marked_failed(self, lock_backend, payments_settings):
        event = WebhookEventFactory(event_type="charge.succeeded", payload={"bad": True})

        result = process_webhook_event(str(event.id))

        assert result["status"] == WebhookOutcome.REJECTED
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.outcome == WebhookOutcome.REJECTED
        assert "INVALID_METADATA" in event.error_message

    def test_lock_busy_is_skipped(self, stored_charge, lock_backend, payments_settings):
        with patch(
            "payments.tasks.process_event",
            return_value=WebhookOutcome(
                status=WebhookOutcome.LOCK_BUSY, event_id="evt_stored"
            ),
        ):
            process_webhook_event(str(stored_charge.id))

        stored_charge.refresh_from_db()
        assert stored_charge.status == WebhookEventStatus.SKIPPED
        assert stored_charge.outcome == WebhookOutcome.LOCK_BUSY

    @pytest.mark.parametrize(
        "error",
        [LockBackendUnavailableError("redis down"), OperationalError("db gone")],
    )
    def test_transient_error_marks_retry_and_raises(self, stored_charge, error):
        with patch("payments.tasks.process_event", side_effect=error):
            with pytest.raises(type(error)):
                process_webhook_event.run(str(stored_charge.id))

        stored_charge.refresh_from_db()
        assert stored_charge.status == WebhookEventStatus.FAILED
        assert stored_charge.outcome == WebhookOutcome.RETRY

    def test_unexpected_error_marks_failed_and_raises(self, stored_charge):
        with patch("payments.tasks.process_event", side_effect=ValueError("bug")):
            with pytest.raises(ValueError):
                process_webhook_event.run(str(stored_charge.id))

        stored_charge.refresh_from_db()
        assert stored_charge.status == WebhookEventStatus.FAILED
        assert stored_charge.outcome == ""
        assert "ValueError" in stored_charge.error_message


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    def test_requeues_transient_failures_and_lock_busy(self):
        transient = WebhookEventFactory(
            status=WebhookEventStatus.FAILED, outcome=WebhookOutcome.RETRY, retry_count=1
        )
        busy = WebhookEventFactory(
            status=WebhookEventStatus.SKIPPED, outcome=WebhookOutcome.LOCK_BUSY, retry_count=1
        )
        WebhookEventFactory(
            status=WebhookEventStatus.FAILED, outcome=WebhookOutcome.REJECTED, retry_count=1
        )
        WebhookEventFactory(
            status=WebhookEventStatus.SKIPPED, outcome=WebhookOutcome.IGNORED, retry_count=1
        )

        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 2
        queued = {call.args[0] for call in mock_delay.call_args_list}
        assert queued == {str(transient.id), str(busy.id)}

    def test_respects_retry_cap(self):
        WebhookEventFactory(
            status=WebhookEventStatus.FAILED, outcome=WebhookOutcome.RETRY, retry_count=99
        )

        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 0
        mock_delay.assert_not_called()

    def test_already_recorded_event_is_closed_out(self):
        """A lock_busy event another delivery already recorded needs no retry."""
        PaymentFactory(provider_event_id="evt_done")
        event = WebhookEventFactory(
            provider_event_id="evt_done",
            status=WebhookEventStatus.SKIPPED,
            outcome=WebhookOutcome.LOCK_BUSY,
        )

        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            retry_failed_webhooks()

        mock_delay.assert_not_called()
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.outcome == WebhookOutcome.DUPLICATE


@pytest.mark.django_db
class TestSendPaymentNotification:
    def test_requests_notification_for_both_parties(self):
        payment = PaymentFactory(subscription=SubscriptionFactory())

        result = send_payment_notification(
            "payment_received", str(payment.subscription_id), str(payment.id)
        )

        assert result["status"] == "requested"
        assert result["recipients"] == [
            str(payment.subscription.subscriber_id),
            str(payment.subscription.creator_id),
        ]

    def test_missing_subscription(self):
        result = send_payment_notification("payment_received", str(uuid.uuid4()))

        assert result["status"] == "not_found"
