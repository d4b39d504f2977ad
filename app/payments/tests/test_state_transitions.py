"""
Tests for subscription transitions.

Tests cover:
- Calendar month arithmetic for period ends
- Transition resolution for successful charges
- Allowed and rejected source states for every transition
"""

import uuid
from datetime import datetime, timezone as dt_timezone

import pytest
from freezegun import freeze_time

from payments.exceptions import InvalidStateTransitionError
from payments.fees import FeeMode, FeeModel
from payments.models import ActivityType
from payments.state_machines import SubscriptionStatus
from payments.state_machines.transitions import (
    Cancel,
    Create,
    Fail,
    Pause,
    Reactivate,
    Renew,
    Resume,
    SubscriptionTerms,
    add_months,
    apply_transition,
    next_period_end,
    resolve_charge_transition,
)
from payments.tests.factories import SubscriptionFactory


def make_terms(**overrides):
    values = {
        "subscriber_id": uuid.uuid4(),
        "creator_id": uuid.uuid4(),
        "interval": "month",
        "base_price_cents": 1000,
        "currency": "USD",
        "fee_model": FeeModel.SPLIT,
        "fee_mode": FeeMode.SPLIT,
    }
    values.update(overrides)
    return SubscriptionTerms(**values)


# =============================================================================
# Period Arithmetic
# =============================================================================


class TestAddMonths:
    def test_plain_month(self):
        start = datetime(2024, 3, 15, 12, 0, tzinfo=dt_timezone.utc)

        assert add_months(start) == datetime(2024, 4, 15, 12, 0, tzinfo=dt_timezone.utc)

    def test_end_of_january_clamps_to_leap_february(self):
        """Jan 31 + 1 month lands on Feb 29 in a leap year, never March."""
        start = datetime(2024, 1, 31, tzinfo=dt_timezone.utc)

        assert add_months(start) == datetime(2024, 2, 29, tzinfo=dt_timezone.utc)

    def test_end_of_january_clamps_to_february(self):
        start = datetime(2023, 1, 31, tzinfo=dt_timezone.utc)

        assert add_months(start) == datetime(2023, 2, 28, tzinfo=dt_timezone.utc)

    def test_december_rolls_year(self):
        start = datetime(2024, 12, 10, tzinfo=dt_timezone.utc)

        assert add_months(start) == datetime(2025, 1, 10, tzinfo=dt_timezone.utc)

    def test_one_time_has_no_period_end(self):
        assert next_period_end("one_time", datetime(2024, 1, 1, tzinfo=dt_timezone.utc)) is None

    def test_monthly_period_end(self):
        start = datetime(2024, 5, 31, tzinfo=dt_timezone.utc)

        assert next_period_end("month", start) == datetime(2024, 6, 30, tzinfo=dt_timezone.utc)

    def test_period_end_defaults_to_now(self):
        with freeze_time("2024-01-31 12:00:00"):
            period_end = next_period_end("month")

        assert period_end == datetime(2024, 2, 29, 12, 0, tzinfo=dt_timezone.utc)


# =============================================================================
# Charge Transition Resolution
# =============================================================================


@pytest.mark.django_db
class TestResolveChargeTransition:
    def test_no_row_creates(self):
        transition = resolve_charge_transition(None, make_terms(), 955, None)

        assert isinstance(transition, Create)
        assert transition.net_cents == 955

    def test_canceled_row_reactivates(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.CANCELED)

        transition = resolve_charge_transition(subscription, make_terms(), 955, None)

        assert isinstance(transition, Reactivate)

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.PENDING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.PAUSED,
        ],
    )
    def test_live_rows_renew(self, status):
        subscription = SubscriptionFactory(status=status)

        transition = resolve_charge_transition(subscription, make_terms(), 955, None)

        assert isinstance(transition, Renew)


# =============================================================================
# Applying Transitions
# =============================================================================


@pytest.mark.django_db
class TestApplyTransition:
    def test_create_builds_active_row(self):
        terms = make_terms(base_price_cents=1500)
        period_end = datetime(2024, 2, 29, tzinfo=dt_timezone.utc)

        subscription = apply_transition(
            None, Create(terms=terms, net_cents=1430, period_end=period_end)
        )

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.base_price_cents == 1500
        assert subscription.lifetime_net_cents == 1430
        assert subscription.current_period_end == period_end
        assert subscription.pk is not None
        assert subscription._state.adding is True

    def test_pending_create_moves_no_money(self):
        subscription = apply_transition(None, Create(terms=make_terms(), pending=True))

        assert subscription.status == SubscriptionStatus.PENDING
        assert subscription.lifetime_net_cents == 0
        assert subscription.last_payment_at is None

    def test_create_rejects_existing_row(self):
        with pytest.raises(InvalidStateTransitionError):
            apply_transition(SubscriptionFactory(), Create(terms=make_terms()))

    def test_reactivate_keeps_lifetime_earnings(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.CANCELED, lifetime_net_cents=1910
        )

        apply_transition(subscription, Reactivate(net_cents=955))

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.lifetime_net_cents == 2865

    def test_reactivate_requires_canceled(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            apply_transition(SubscriptionFactory(), Reactivate(net_cents=955))

        assert exc_info.value.details["current_status"] == SubscriptionStatus.ACTIVE
        assert exc_info.value.details["transition"] == "reactivate"

    def test_renew_recovers_past_due(self):
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.PAST_DUE, lifetime_net_cents=955
        )

        apply_transition(subscription, Renew(net_cents=955))

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.lifetime_net_cents == 1910

    def test_renew_activates_pending(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.PENDING)

        apply_transition(subscription, Renew(net_cents=955))

        assert subscription.status == SubscriptionStatus.ACTIVE

    def test_renew_keeps_paused(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.PAUSED)

        apply_transition(subscription, Renew(net_cents=955))

        assert subscription.status == SubscriptionStatus.PAUSED
        assert subscription.lifetime_net_cents == 955

    def test_renew_rejects_canceled(self):
        subscription = SubscriptionFactory(status=SubscriptionStatus.CANCELED)

        with pytest.raises(InvalidStateTransitionError):
            apply_transition(subscription, Renew(net_cents=955))

    def test_renew_without_period_end_keeps_current(self):
        subscription = SubscriptionFactory()
        period_end = subscription.current_period_end

        apply_transition(subscription, Renew(net_cents=955, period_end=None))

        assert subscription.current_period_end == period_end

    @pytest.mark.parametrize(
        "status", [SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE]
    )
    def test_fail_lands_past_due(self, status):
        subscription = SubscriptionFactory(status=status)

        apply_transition(subscription, Fail())

        assert subscription.status == SubscriptionStatus.PAST_DUE

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.PENDING,
            SubscriptionStatus.PAUSED,
            SubscriptionStatus.CANCELED,
        ],
    )
    def test_fail_rejected_elsewhere(self, status):
        with pytest.raises(InvalidStateTransitionError):
            apply_transition(SubscriptionFactory(status=status), Fail())

    def test_cancel_now(self):
        subscription = SubscriptionFactory()

        apply_transition(subscription, Cancel())

        assert subscription.status == SubscriptionStatus.CANCELED

    def test_cancel_at_period_end_only_sets_flag(self):
        subscription = SubscriptionFactory()

        apply_transition(subscription, Cancel(at_period_end=True))

        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.cancel_at_period_end is True

    def test_cancel_at_period_end_on_pending_cancels_now(self):
        """An unpaid checkout has no period to run out."""
        subscription = SubscriptionFactory(status=SubscriptionStatus.PENDING)

        apply_transition(subscription, Cancel(at_period_end=True))

        assert subscription.status == SubscriptionStatus.CANCELED

    def test_cancel_rejects_canceled(self):
        with pytest.raises(InvalidStateTransitionError):
            apply_transition(
                SubscriptionFactory(status=SubscriptionStatus.CANCELED), Cancel()
            )

    def test_pause_and_resume(self):
        subscription = SubscriptionFactory()

        apply_transition(subscription, Pause())
        assert subscription.status == SubscriptionStatus.PAUSED

        apply_transition(subscription, Resume())
        assert subscription.status == SubscriptionStatus.ACTIVE

    def test_resume_requires_paused(self):
        with pytest.raises(InvalidStateTransitionError):
            apply_transition(SubscriptionFactory(), Resume())

    def test_status_transitions_require_a_row(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            apply_transition(None, Pause())

        assert "does not exist" in exc_info.value.message

    def test_activity_types(self):
        assert Create.activity_type == ActivityType.SUBSCRIPTION_CREATED
        assert Reactivate.activity_type == ActivityType.SUBSCRIPTION_REACTIVATED
        assert Renew.activity_type == ActivityType.PAYMENT_RECEIVED
        assert Fail.activity_type == ActivityType.PAYMENT_FAILED
        assert Cancel.activity_type == ActivityType.SUBSCRIPTION_CANCELED
