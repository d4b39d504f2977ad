"""
Tests for the idempotency guard.

An event id is processed once it has produced either a Payment row or an
ActivityEvent carrying it.
"""

import pytest

from payments.exceptions import MissingEventIdError
from payments.idempotency import already_processed, require_event_id
from payments.models import ActivityEvent, ActivityType
from payments.tests.factories import PaymentFactory


class TestRequireEventId:
    @pytest.mark.parametrize("value", [None, "", "   ", 42])
    def test_rejects_missing_or_blank_ids(self, value):
        """Events without a usable id are never processed."""
        with pytest.raises(MissingEventIdError) as exc_info:
            require_event_id(value)

        assert exc_info.value.error_code == "MISSING_EVENT_ID"
        assert exc_info.value.retryable is False

    def test_strips_whitespace(self):
        assert require_event_id("  evt_1 ") == "evt_1"


@pytest.mark.django_db
class TestAlreadyProcessed:
    def test_unknown_event_is_not_processed(self):
        assert already_processed("evt_unknown") is False

    def test_payment_row_marks_event_processed(self):
        PaymentFactory(provider_event_id="evt_paid")

        assert already_processed("evt_paid") is True

    def test_activity_row_marks_event_processed(self, subscription):
        """Status-only events leave an activity, not a payment."""
        ActivityEvent.objects.create(
            creator_id=subscription.creator_id,
            type=ActivityType.SUBSCRIPTION_PAUSED,
            provider_event_id="evt_paused",
            subscription=subscription,
        )

        assert already_processed("evt_paused") is True

    def test_activity_without_event_id_does_not_match_blank(self, subscription):
        """Secondary activities carry no event id and never satisfy the guard."""
        ActivityEvent.objects.create(
            creator_id=subscription.creator_id,
            type=ActivityType.FEE_MISMATCH_ALERT,
            subscription=subscription,
        )

        with pytest.raises(MissingEventIdError):
            already_processed("")
