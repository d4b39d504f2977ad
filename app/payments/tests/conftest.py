"""
Pytest fixtures for payment tests.

This module provides fixtures for the webhook pipeline: an isolated lock
table, a patched notification task, and builders for normalized provider
payloads.

Usage:
    def test_first_charge(charge_payload, deliver):
        outcome = deliver("evt_1", "charge.succeeded", charge_payload())
        assert outcome.status == WebhookOutcome.PROCESSED
"""

import uuid
from unittest.mock import patch

import pytest

from payments.locks import InMemoryLockBackend, set_lock_backend
from payments.tests.factories import (
    CreatorAccountFactory,
    PaymentFactory,
    SubscriptionFactory,
)
from payments.webhooks.pipeline import process_event


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def lock_backend():
    """Install a fresh in-memory lock table for the test."""
    backend = InMemoryLockBackend()
    set_lock_backend(backend)
    yield backend
    backend.reset()
    set_lock_backend(None)


@pytest.fixture(autouse=True)
def mock_notifications():
    """Keep notification requests off the broker."""
    with patch("payments.tasks.send_payment_notification.delay") as mock_delay:
        yield mock_delay


@pytest.fixture
def payments_settings(settings):
    settings.PAYMENTS_PLATFORM_COUNTRY = "US"
    settings.PAYMENTS_DEFAULT_FEE_MODE = "split"
    settings.PAYMENTS_SALARY_MODE_UNLOCK_THRESHOLD = 2
    settings.PAYMENTS_LOCK_BACKEND = "memory"
    return settings


@pytest.fixture
def deliver(db, lock_backend, payments_settings, django_capture_on_commit_callbacks):
    """Run one event through the pipeline and execute its post-commit work."""

    def _deliver(event_id, event_type, payload):
        with django_capture_on_commit_callbacks(execute=True):
            return process_event(event_id, event_type, payload)

    return _deliver


# =============================================================================
# Party Fixtures
# =============================================================================


@pytest.fixture
def subscriber_id():
    return uuid.uuid4()


@pytest.fixture
def creator(db):
    """A domestic personal creator."""
    return CreatorAccountFactory(country_code="US")


@pytest.fixture
def foreign_creator(db):
    """A creator paid out in another jurisdiction (cross-border buffer)."""
    return CreatorAccountFactory(country_code="NG")


@pytest.fixture
def subscription(db):
    """An active split_v1 subscription at $10.00."""
    return SubscriptionFactory()


@pytest.fixture
def settled_payment(db, subscription):
    """A recorded $10.00 split_v1 charge with matching lifetime earnings."""
    payment = PaymentFactory(subscription=subscription, provider_charge_id="ch_settled")
    subscription.lifetime_net_cents = payment.net_cents
    subscription.save()
    return payment


# =============================================================================
# Payload Builders
# =============================================================================


@pytest.fixture
def charge_payload(subscriber_id, creator):
    """
    Build a charge payload for the default subscriber and creator.

    Defaults describe a $10.00 split_v1 checkout: gross 1045, fee 90,
    net 955. Keyword arguments override top-level fields; ``metadata``
    overrides are merged into the default metadata.
    """

    def _build(metadata=None, **overrides):
        payload = {
            "subscriber_id": str(subscriber_id),
            "amount_cents": 1045,
            "currency": "usd",
            "provider_charge_id": f"ch_{uuid.uuid4().hex[:12]}",
            "provider_subscription_id": "sub_test",
            "provider_customer_id": "cus_test",
            "metadata": {
                "creator_id": str(creator.creator_id),
                "interval": "month",
                "fee_model": "split_v1",
                "base_amount_cents": 1000,
                "service_fee_cents": 90,
                "net_amount_cents": 955,
                "subscriber_fee_cents": 45,
                "creator_fee_cents": 45,
            },
        }
        payload["metadata"].update(metadata or {})
        payload.update(overrides)
        return payload

    return _build


@pytest.fixture
def status_payload(subscriber_id, creator):
    """Build a subscription status payload (failure, cancel, pause, resume)."""

    def _build(**overrides):
        payload = {
            "subscriber_id": str(subscriber_id),
            "metadata": {
                "creator_id": str(creator.creator_id),
                "interval": "month",
            },
        }
        payload.update(overrides)
        return payload

    return _build
