"""
Tests for payment models.

Tests cover:
- Subscription FSM transitions and write-once terms
- Subscription natural-identity uniqueness and optimistic versioning
- Payment balance constraint
- Payout FSM transitions
- WebhookEvent bookkeeping helpers
"""

import pytest
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from payments.exceptions import PaymentError
from payments.models import Payment, Subscription
from payments.state_machines import (
    PayoutStatus,
    SubscriptionStatus,
    WebhookEventStatus,
)
from payments.tests.factories import (
    PaymentFactory,
    PayoutFactory,
    SubscriptionFactory,
    WebhookEventFactory,
)


# =============================================================================
# Subscription Tests
# =============================================================================


@pytest.mark.django_db
class TestSubscriptionTransitions:
    """Tests for Subscription state transitions (django-fsm)."""

    def test_pending_to_active(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.PENDING)

        subscription.activate()

        assert subscription.status == SubscriptionStatus.ACTIVE

    def test_active_to_past_due_and_back(self):
        subscription = SubscriptionFactory()

        subscription.mark_past_due()
        assert subscription.status == SubscriptionStatus.PAST_DUE

        subscription.recover()
        assert subscription.status == SubscriptionStatus.ACTIVE

    def test_pause_and_resume_track_timestamp(self):
        subscription = SubscriptionFactory()

        subscription.pause()
        assert subscription.status == SubscriptionStatus.PAUSED
        assert subscription.paused_at is not None

        subscription.resume()
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.paused_at is None

    def test_cancel_sets_canceled_at(self):
        subscription = SubscriptionFactory(cancel_at_period_end=True)

        subscription.cancel()

        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.is_canceled
        assert not subscription.is_active
        assert subscription.canceled_at is not None
        assert subscription.cancel_at_period_end is False

    def test_resubscribe_clears_cancellation(self):
        """Resubscribing keeps the row and its lifetime earnings."""
        subscription = SubscriptionFactory(lifetime_net_cents=955)
        subscription.cancel()

        subscription.resubscribe()

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.canceled_at is None
        assert subscription.lifetime_net_cents == 955

    def test_canceled_cannot_activate(self):
        """CANCELED is terminal apart from resubscribe()."""
        subscription = SubscriptionFactory(status=SubscriptionStatus.CANCELED)

        with pytest.raises(TransitionNotAllowed):
            subscription.activate()
        with pytest.raises(TransitionNotAllowed):
            subscription.recover()
        with pytest.raises(TransitionNotAllowed):
            subscription.cancel()

    def test_paused_cannot_go_past_due(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.PAUSED)

        with pytest.raises(TransitionNotAllowed):
            subscription.mark_past_due()


@pytest.mark.django_db
class TestSubscriptionPersistence:
    def test_terms_are_write_once(self):
        """Price and fee terms cannot be changed after creation."""
        subscription = Subscription.objects.get(pk=SubscriptionFactory().pk)
        subscription.base_price_cents = 2000

        with pytest.raises(PaymentError) as exc_info:
            subscription.save()

        assert exc_info.value.error_code == "SUBSCRIPTION_TERMS_LOCKED"
        assert exc_info.value.details["fields"] == ["base_price_cents"]

    def test_rate_inputs_are_write_once(self):
        subscription = Subscription.objects.get(pk=SubscriptionFactory().pk)
        subscription.cross_border = True
        subscription.creator_classification = "service"

        with pytest.raises(PaymentError) as exc_info:
            subscription.save()

        assert exc_info.value.details["fields"] == ["creator_classification", "cross_border"]

    def test_non_term_fields_can_change(self):
        subscription = Subscription.objects.get(pk=SubscriptionFactory().pk)
        subscription.lifetime_net_cents = 955

        subscription.save()

        subscription.refresh_from_db()
        assert subscription.lifetime_net_cents == 955

    def test_version_increments_on_save(self):
        subscription = Subscription.objects.get(pk=SubscriptionFactory().pk)
        assert subscription.version == 1

        subscription.save()
        subscription.save()

        assert subscription.version == 3

    def test_identity_is_unique(self):
        """One row per (subscriber, creator, interval)."""
        existing = SubscriptionFactory()

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                SubscriptionFactory(
                    subscriber_id=existing.subscriber_id,
                    creator_id=existing.creator_id,
                    interval=existing.interval,
                )

    def test_lock_key_matches_identity(self):
        subscription = SubscriptionFactory()

        assert subscription.lock_key == (
            f"{subscription.subscriber_id}:{subscription.creator_id}:month"
        )


# =============================================================================
# Payment Tests
# =============================================================================


@pytest.mark.django_db
class TestPayment:
    def test_balanced_row_is_stored(self):
        payment = PaymentFactory()

        assert payment.gross_cents - payment.fee_cents == payment.net_cents
        assert payment.is_reversal is False

    def test_unbalanced_row_is_rejected(self):
        """gross - fee == net is enforced by the database."""
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PaymentFactory(gross_cents=1045, fee_cents=90, net_cents=900)

    def test_event_id_is_unique(self):
        PaymentFactory(provider_event_id="evt_once")

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PaymentFactory(provider_event_id="evt_once")

    def test_reversal_points_at_original(self, settled_payment):
        reversal = PaymentFactory(
            subscription=settled_payment.subscription,
            original_payment=settled_payment,
            gross_cents=-1045,
            amount_cents=-1000,
            fee_cents=-90,
            net_cents=-955,
        )

        assert reversal.is_reversal is True
        assert list(Payment.objects.get(pk=settled_payment.pk).reversals.all()) == [reversal]


# =============================================================================
# Payout Tests
# =============================================================================


@pytest.mark.django_db
class TestPayoutTransitions:
    def test_pending_to_succeeded(self):
        payout = PayoutFactory()

        payout.complete()

        assert payout.status == PayoutStatus.SUCCEEDED
        assert payout.paid_at is not None

    def test_pending_to_failed(self):
        payout = PayoutFactory()

        payout.fail("bank rejected")

        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "bank rejected"

    def test_flag_for_investigation(self):
        payout = PayoutFactory()

        payout.flag_for_investigation("amount differs")

        assert payout.status == PayoutStatus.NEEDS_INVESTIGATION
        assert payout.investigation_note == "amount differs"

    def test_succeeded_cannot_fail(self):
        payout = PayoutFactory(status=PayoutStatus.SUCCEEDED)

        with pytest.raises(TransitionNotAllowed):
            payout.fail()


# =============================================================================
# WebhookEvent Tests
# =============================================================================


@pytest.mark.django_db
class TestWebhookEvent:
    def test_mark_processing_counts_attempts(self):
        event = WebhookEventFactory()

        event.mark_processing()
        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 2

    def test_mark_processed_clears_error(self):
        event = WebhookEventFactory(error_message="earlier failure")

        event.mark_processed("processed")

        assert event.is_processed is True
        assert event.outcome == "processed"
        assert event.error_message is None
        assert event.processed_at is not None

    def test_mark_skipped_records_reason(self):
        event = WebhookEventFactory()

        event.mark_skipped("lock_busy", "held elsewhere")

        assert event.status == WebhookEventStatus.SKIPPED
        assert event.outcome == "lock_busy"
        assert event.error_message == "held elsewhere"

    def test_can_retry_respects_cap(self, settings):
        settings.PAYMENTS_WEBHOOK_MAX_RETRIES = 2
        event = WebhookEventFactory(retry_count=1)
        event.mark_failed("boom")
        assert event.can_retry is True

        event.retry_count = 2
        assert event.can_retry is False
