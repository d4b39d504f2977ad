"""
Tests for strict webhook payload parsing.

Payloads are validated, never coerced: anything that does not match the
schema raises MetadataValidationError with field-level details.
"""

import uuid
from decimal import Decimal

import pytest

from payments.exceptions import MetadataValidationError
from payments.fees import FeeMode, FeeModel
from payments.webhooks.metadata import (
    parse_charge,
    parse_dispute,
    parse_payout,
    parse_refund,
    parse_subscription_event,
)


def charge(**metadata):
    base = {
        "creator_id": str(uuid.uuid4()),
        "interval": "month",
        "fee_model": "split_v1",
        "base_amount_cents": 1000,
        "service_fee_cents": 90,
        "net_amount_cents": 955,
    }
    base.update(metadata)
    return {
        "subscriber_id": str(uuid.uuid4()),
        "amount_cents": 1045,
        "currency": "usd",
        "provider_charge_id": "ch_1",
        "metadata": base,
    }


class TestParseCharge:
    def test_parses_split_checkout(self):
        parsed = parse_charge(charge(fee_effective_rate="0.0900"))

        assert parsed.amount_cents == 1045
        assert parsed.currency == "USD"
        assert parsed.metadata.fee_model == FeeModel.SPLIT
        assert parsed.metadata.fee_mode == FeeMode.SPLIT
        assert parsed.metadata.base_amount_cents == 1000
        assert parsed.metadata.fee_effective_rate == Decimal("0.0900")
        assert isinstance(parsed.subscriber_id, uuid.UUID)

    def test_metadata_without_fee_model_is_allowed(self):
        """Older checkouts carry no terms; defaults are applied at creation."""
        payload = charge()
        for name in ("fee_model", "base_amount_cents", "service_fee_cents", "net_amount_cents"):
            payload["metadata"].pop(name)

        parsed = parse_charge(payload)

        assert parsed.metadata.fee_model is None
        assert parsed.metadata.fee_mode is None

    def test_split_requires_breakdown(self):
        payload = charge()
        payload["metadata"].pop("base_amount_cents")

        with pytest.raises(MetadataValidationError) as exc_info:
            parse_charge(payload)

        assert "metadata.base_amount_cents" in exc_info.value.details

    def test_flat_requires_carried_fee_mode(self):
        payload = charge(fee_model="flat", fee_mode="split")

        with pytest.raises(MetadataValidationError) as exc_info:
            parse_charge(payload)

        assert "metadata.fee_mode" in exc_info.value.details

    def test_flat_absorb_is_accepted(self):
        parsed = parse_charge(charge(fee_model="flat", fee_mode="absorb"))

        assert parsed.metadata.fee_mode == FeeMode.ABSORB

    def test_legacy_forces_absorb(self):
        parsed = parse_charge(charge(fee_model="legacy", fee_mode="pass_to_subscriber"))

        assert parsed.metadata.fee_mode == FeeMode.ABSORB

    def test_fee_mode_without_model_is_rejected(self):
        payload = charge(fee_mode="absorb")
        payload["metadata"].pop("fee_model")

        with pytest.raises(MetadataValidationError) as exc_info:
            parse_charge(payload)

        assert "metadata.fee_model" in exc_info.value.details

    @pytest.mark.parametrize(
        "field,value",
        [
            ("creator_id", "not-a-uuid"),
            ("interval", "week"),
            ("fee_model", "split_v2"),
            ("base_amount_cents", -1),
            ("base_amount_cents", "1000.50"),
        ],
    )
    def test_bad_metadata_values(self, field, value):
        with pytest.raises(MetadataValidationError) as exc_info:
            parse_charge(charge(**{field: value}))

        assert f"metadata.{field}" in exc_info.value.details

    def test_missing_creator_id(self):
        payload = charge()
        payload["metadata"].pop("creator_id")

        with pytest.raises(MetadataValidationError) as exc_info:
            parse_charge(payload)

        assert exc_info.value.error_code == "INVALID_METADATA"
        assert "metadata.creator_id" in exc_info.value.details

    @pytest.mark.parametrize("currency", ["us", "usdx", "12$"])
    def test_bad_currency(self, currency):
        payload = charge()
        payload["currency"] = currency

        with pytest.raises(MetadataValidationError):
            parse_charge(payload)

    @pytest.mark.parametrize("payload", [None, [], "charge"])
    def test_non_object_payload(self, payload):
        with pytest.raises(MetadataValidationError) as exc_info:
            parse_charge(payload)

        assert "payload" in exc_info.value.details

    def test_evidence_fields(self):
        parsed = parse_charge(
            charge(checkout_ip="203.0.113.7", checkout_user_agent="Mozilla/5.0")
        )

        assert parsed.metadata.has_evidence is True

    def test_no_evidence_by_default(self):
        assert parse_charge(charge()).metadata.has_evidence is False


class TestParseOtherEvents:
    def test_subscription_event(self):
        creator_id = uuid.uuid4()
        parsed = parse_subscription_event(
            {
                "subscriber_id": str(uuid.uuid4()),
                "at_period_end": True,
                "metadata": {"creator_id": str(creator_id)},
            }
        )

        assert parsed.creator_id == creator_id
        assert parsed.interval == "month"
        assert parsed.at_period_end is True

    def test_refund_requires_positive_amount(self):
        with pytest.raises(MetadataValidationError) as exc_info:
            parse_refund({"provider_charge_id": "ch_1", "amount_cents": 0, "currency": "USD"})

        assert "amount_cents" in exc_info.value.details

    def test_refund(self):
        parsed = parse_refund({"provider_charge_id": "ch_1", "amount_cents": 500, "currency": "eur"})

        assert parsed.amount_cents == 500
        assert parsed.currency == "EUR"

    def test_dispute_outcome_optional_when_opened(self):
        parsed = parse_dispute(
            {"provider_charge_id": "ch_1", "dispute_id": "dp_1", "amount_cents": 1045, "currency": "USD"}
        )

        assert parsed.outcome == ""

    def test_closed_dispute_requires_outcome(self):
        with pytest.raises(MetadataValidationError) as exc_info:
            parse_dispute(
                {"provider_charge_id": "ch_1", "dispute_id": "dp_1", "amount_cents": 1045, "currency": "USD"},
                require_outcome=True,
            )

        assert "outcome" in exc_info.value.details

    def test_dispute_outcome_choices(self):
        with pytest.raises(MetadataValidationError):
            parse_dispute(
                {
                    "provider_charge_id": "ch_1",
                    "dispute_id": "dp_1",
                    "amount_cents": 1045,
                    "currency": "USD",
                    "outcome": "pending",
                }
            )

    def test_payout(self):
        parsed = parse_payout({"provider_reference": "tr_1", "amount_cents": 9550, "currency": "usd"})

        assert parsed.provider_reference == "tr_1"
        assert parsed.currency == "USD"
