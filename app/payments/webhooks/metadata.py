"""
Strict schema for inbound webhook payloads.

Provider payloads are validated with DRF serializers and parsed into frozen
dataclasses before any business logic sees them. Nothing is coerced: a
payload that does not match its schema raises MetadataValidationError with
the serializer's field errors as details.

Payload shape (normalized, provider-agnostic):
    {
        "subscriber_id": "<uuid>",
        "amount_cents": 1045,
        "currency": "usd",
        "provider_charge_id": "ch_123",
        "metadata": {
            "creator_id": "<uuid>",
            "interval": "month",
            "fee_model": "split_v1",
            "base_amount_cents": 1000,
            "service_fee_cents": 90,
            "net_amount_cents": 955,
            ...
        }
    }

Usage:
    from payments.webhooks.metadata import parse_charge

    charge = parse_charge(webhook_event.payload)
    charge.metadata.creator_id
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from rest_framework import serializers

from payments.exceptions import MetadataValidationError
from payments.fees.types import FeeMode, FeeModel
from payments.state_machines import SubscriptionInterval

logger = logging.getLogger(__name__)

# Breakdown fields each fee model must carry on its checkout metadata
REQUIRED_BREAKDOWN_FIELDS = {
    FeeModel.SPLIT: ("base_amount_cents", "service_fee_cents", "net_amount_cents"),
    FeeModel.FLAT: ("service_fee_cents", "net_amount_cents"),
    FeeModel.PROGRESSIVE: ("service_fee_cents", "net_amount_cents"),
    FeeModel.LEGACY: (),
}


# =============================================================================
# Parsed Types
# =============================================================================


@dataclass(frozen=True)
class CheckoutMetadata:
    """Checkout-time metadata attached to a charge."""

    creator_id: UUID
    interval: str
    fee_model: str | None = None
    fee_mode: str | None = None
    base_amount_cents: int | None = None
    net_amount_cents: int | None = None
    service_fee_cents: int | None = None
    subscriber_fee_cents: int | None = None
    creator_fee_cents: int | None = None
    fee_effective_rate: Decimal | None = None
    fee_was_capped: bool = False
    request_id: str = ""
    view_id: str = ""
    tier_id: str = ""
    checkout_ip: str | None = None
    checkout_user_agent: str = ""
    checkout_accept_language: str = ""

    @property
    def has_evidence(self) -> bool:
        return bool(self.checkout_ip or self.checkout_user_agent)


@dataclass(frozen=True)
class ChargeEvent:
    """A successful (or pending) charge."""

    subscriber_id: UUID
    amount_cents: int
    currency: str
    metadata: CheckoutMetadata
    provider_charge_id: str = ""
    provider_subscription_id: str = ""
    provider_customer_id: str = ""
    provider_fee_cents: int | None = None
    occurred_at: datetime | None = None
    period_end: datetime | None = None


@dataclass(frozen=True)
class SubscriptionEvent:
    """An event that changes a subscription's status without moving money."""

    subscriber_id: UUID
    creator_id: UUID
    interval: str
    at_period_end: bool = False
    reason: str = ""
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class RefundEvent:
    provider_charge_id: str
    amount_cents: int
    currency: str
    reason: str = ""
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class DisputeEvent:
    provider_charge_id: str
    dispute_id: str
    amount_cents: int
    currency: str
    outcome: str = ""
    reason: str = ""
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class PayoutEvent:
    provider_reference: str
    amount_cents: int
    currency: str
    occurred_at: datetime | None = None


# =============================================================================
# Serializers
# =============================================================================


class CurrencyField(serializers.CharField):
    """ISO 4217 code, normalized to uppercase."""

    def __init__(self, **kwargs):
        kwargs.setdefault("min_length", 3)
        kwargs.setdefault("max_length", 3)
        super().__init__(**kwargs)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if not value.isalpha():
            raise serializers.ValidationError("Must be a three-letter currency code.")
        return value.upper()


class CheckoutMetadataSerializer(serializers.Serializer):
    """
    Checkout metadata written when the checkout session was created.

    Which breakdown fields are required depends on the fee model; legacy
    rows carry none of them.
    """

    creator_id = serializers.UUIDField()
    interval = serializers.ChoiceField(
        choices=SubscriptionInterval.choices,
        default=SubscriptionInterval.MONTH,
    )
    fee_model = serializers.ChoiceField(choices=FeeModel.choices, required=False)
    fee_mode = serializers.ChoiceField(choices=FeeMode.choices, required=False)

    base_amount_cents = serializers.IntegerField(min_value=0, required=False)
    net_amount_cents = serializers.IntegerField(min_value=0, required=False)
    service_fee_cents = serializers.IntegerField(min_value=0, required=False)
    subscriber_fee_cents = serializers.IntegerField(min_value=0, required=False)
    creator_fee_cents = serializers.IntegerField(min_value=0, required=False)
    fee_effective_rate = serializers.DecimalField(
        max_digits=7, decimal_places=4, required=False
    )
    fee_was_capped = serializers.BooleanField(default=False)

    request_id = serializers.CharField(required=False, allow_blank=True, default="")
    view_id = serializers.CharField(required=False, allow_blank=True, default="")
    tier_id = serializers.CharField(required=False, allow_blank=True, default="")
    checkout_ip = serializers.IPAddressField(required=False, allow_null=True)
    checkout_user_agent = serializers.CharField(
        required=False, allow_blank=True, default=""
    )
    checkout_accept_language = serializers.CharField(
        required=False, allow_blank=True, default=""
    )

    def validate(self, attrs):
        fee_model = attrs.get("fee_model")
        fee_mode = attrs.get("fee_mode")
        if fee_model is None:
            if fee_mode is not None:
                raise serializers.ValidationError(
                    {"fee_model": ["Required when fee_mode is given."]}
                )
            return attrs

        missing = [
            name
            for name in REQUIRED_BREAKDOWN_FIELDS[FeeModel(fee_model)]
            if attrs.get(name) is None
        ]
        if missing:
            raise serializers.ValidationError(
                {name: [f"Required for the {fee_model} fee model."] for name in missing}
            )

        if fee_model in (FeeModel.FLAT, FeeModel.PROGRESSIVE):
            if fee_mode not in (FeeMode.ABSORB, FeeMode.PASS_TO_SUBSCRIBER):
                raise serializers.ValidationError(
                    {"fee_mode": [f"Must be absorb or pass_to_subscriber for {fee_model}."]}
                )
        elif fee_model == FeeModel.SPLIT:
            attrs["fee_mode"] = FeeMode.SPLIT
        else:
            attrs["fee_mode"] = FeeMode.ABSORB
        return attrs


class ReferenceMetadataSerializer(serializers.Serializer):
    creator_id = serializers.UUIDField()
    interval = serializers.ChoiceField(
        choices=SubscriptionInterval.choices,
        default=SubscriptionInterval.MONTH,
    )


class ChargePayloadSerializer(serializers.Serializer):
    subscriber_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField(min_value=0)
    currency = CurrencyField()
    provider_charge_id = serializers.CharField(
        required=False, allow_blank=True, default=""
    )
    provider_subscription_id = serializers.CharField(
        required=False, allow_blank=True, default=""
    )
    provider_customer_id = serializers.CharField(
        required=False, allow_blank=True, default=""
    )
    provider_fee_cents = serializers.IntegerField(
        min_value=0, required=False, allow_null=True, default=None
    )
    occurred_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    period_end = serializers.DateTimeField(required=False, allow_null=True, default=None)
    metadata = CheckoutMetadataSerializer()


class SubscriptionPayloadSerializer(serializers.Serializer):
    subscriber_id = serializers.UUIDField()
    at_period_end = serializers.BooleanField(default=False)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    occurred_at = serializers.DateTimeField(required=False, allow_null=True, default=None)
    metadata = ReferenceMetadataSerializer()


class RefundPayloadSerializer(serializers.Serializer):
    provider_charge_id = serializers.CharField()
    amount_cents = serializers.IntegerField(min_value=1)
    currency = CurrencyField()
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    occurred_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class DisputePayloadSerializer(serializers.Serializer):
    provider_charge_id = serializers.CharField()
    dispute_id = serializers.CharField()
    amount_cents = serializers.IntegerField(min_value=0)
    currency = CurrencyField()
    outcome = serializers.ChoiceField(
        choices=[("won", "Won"), ("lost", "Lost")], required=False
    )
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    occurred_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class PayoutPayloadSerializer(serializers.Serializer):
    provider_reference = serializers.CharField()
    amount_cents = serializers.IntegerField(min_value=0)
    currency = CurrencyField()
    occurred_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


# =============================================================================
# Parsing
# =============================================================================


def _validated(serializer_class: type[serializers.Serializer], payload) -> dict:
    if not isinstance(payload, dict):
        raise MetadataValidationError(
            "Webhook payload must be an object",
            details={"payload": [f"Expected an object, got {type(payload).__name__}."]},
        )
    serializer = serializer_class(data=payload)
    if not serializer.is_valid():
        errors = serializer.errors
        logger.warning(
            f"Rejected payload for {serializer_class.__name__}",
            extra={"errors": errors},
        )
        raise MetadataValidationError(
            "Webhook payload failed validation",
            details=_flatten_errors(errors),
        )
    return serializer.validated_data


def _flatten_errors(errors, prefix: str = "") -> dict[str, list[str]]:
    """Turn nested serializer errors into {"metadata.creator_id": [...]}."""
    flat: dict[str, list[str]] = {}
    for field, messages in errors.items():
        key = f"{prefix}{field}"
        if isinstance(messages, dict):
            flat.update(_flatten_errors(messages, prefix=f"{key}."))
        else:
            flat[key] = [str(message) for message in messages]
    return flat


def parse_charge(payload) -> ChargeEvent:
    """
    Parse a charge payload.

    Raises:
        MetadataValidationError: If the payload does not match the schema
    """
    data = dict(_validated(ChargePayloadSerializer, payload))
    metadata = CheckoutMetadata(**data.pop("metadata"))
    return ChargeEvent(metadata=metadata, **data)


def parse_subscription_event(payload) -> SubscriptionEvent:
    data = dict(_validated(SubscriptionPayloadSerializer, payload))
    reference = data.pop("metadata")
    return SubscriptionEvent(
        creator_id=reference["creator_id"],
        interval=reference["interval"],
        **data,
    )


def parse_refund(payload) -> RefundEvent:
    return RefundEvent(**_validated(RefundPayloadSerializer, payload))


def parse_dispute(payload, require_outcome: bool = False) -> DisputeEvent:
    data = _validated(DisputePayloadSerializer, payload)
    if require_outcome and not data.get("outcome"):
        raise MetadataValidationError(
            "Closed dispute has no outcome",
            details={"outcome": ["Required for a closed dispute."]},
        )
    return DisputeEvent(**data)


def parse_payout(payload) -> PayoutEvent:
    return PayoutEvent(**_validated(PayoutPayloadSerializer, payload))


__all__ = [
    "ChargeEvent",
    "CheckoutMetadata",
    "DisputeEvent",
    "PayoutEvent",
    "RefundEvent",
    "SubscriptionEvent",
    "parse_charge",
    "parse_dispute",
    "parse_payout",
    "parse_refund",
    "parse_subscription_event",
]
