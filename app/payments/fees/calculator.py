"""
Fee calculation engine.

Pure functions, no I/O. Every fee model version a live subscription may have
been created under stays supported; old subscriptions are never priced with
a newer model.

Rounding rule (all models):
    total fee = amount x rate, rounded half-up to the minor unit.
    Split model shares: creator = floor(total / 2), payer = total - creator,
    so the payer carries the odd unit.

Usage:
    from payments.fees import FeeInput, FeeModel, calculate_fee

    breakdown = calculate_fee(
        FeeInput(amount_cents=1000, currency="USD", creator_country="US")
    )
    breakdown.fee_cents             # 90
    breakdown.subscriber_fee_cents  # 45
    breakdown.net_cents             # 955
    breakdown.gross_cents           # 1045
"""

from __future__ import annotations

import logging
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

from payments.exceptions import FeeCalculationError
from payments.fees import constants
from payments.fees.types import FeeBreakdown, FeeInput, FeeMode, FeeModel

logger = logging.getLogger(__name__)

CLASSIFICATIONS = ("personal", "service")
CARRIED_FEE_MODES = (FeeMode.ABSORB, FeeMode.PASS_TO_SUBSCRIBER)


# =============================================================================
# Helpers
# =============================================================================


def round_half_up(value: Decimal) -> int:
    """Round a Decimal amount to the nearest minor unit, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_zero_decimal(currency: str) -> bool:
    """Whether the currency has no minor unit (e.g. JPY)."""
    return currency.upper() in constants.ZERO_DECIMAL_CURRENCIES


def is_cross_border(
    creator_country: str | None,
    platform_country: str = constants.DEFAULT_PLATFORM_COUNTRY,
) -> bool:
    """
    Whether a creator's payout jurisdiction differs from the platform's.

    A creator with no recorded country is treated as domestic.
    """
    if not creator_country:
        return False
    return creator_country.upper() != platform_country.upper()


def estimate_processor_fee(gross_cents: int, currency: str) -> int:
    """Estimate what the card processor takes from a charge of ``gross_cents``."""
    percent, fixed = constants.PROCESSOR_FEES.get(
        currency.upper(), constants.DEFAULT_PROCESSOR_FEE
    )
    return round_half_up(Decimal(gross_cents) * percent) + fixed


def minimum_platform_fee(gross_cents: int, currency: str) -> int:
    """Processor estimate plus the minimum margin the platform must keep."""
    margin = constants.MIN_MARGIN_CENTS.get(
        currency.upper(), constants.DEFAULT_MIN_MARGIN_CENTS
    )
    return estimate_processor_fee(gross_cents, currency) + margin


def split_shares(total_fee_cents: int) -> tuple[int, int]:
    """Divide a total fee into (payer share, creator share)."""
    creator_share = total_fee_cents // 2
    return total_fee_cents - creator_share, creator_share


def _effective_rate(fee_cents: int, amount_cents: int) -> Decimal:
    if amount_cents == 0:
        return Decimal("0")
    return (Decimal(fee_cents) / Decimal(amount_cents)).quantize(Decimal("0.0001"))


def _is_cross_border(fee_input: FeeInput) -> bool:
    if fee_input.cross_border is not None:
        return fee_input.cross_border
    return is_cross_border(fee_input.creator_country, fee_input.platform_country)


def _validate(fee_input: FeeInput) -> None:
    amount = fee_input.amount_cents
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise FeeCalculationError(
            "Amount must be an integer number of minor units",
            details={"amount_cents": repr(amount)},
        )
    if amount < 0:
        raise FeeCalculationError(
            "Amount cannot be negative",
            details={"amount_cents": amount},
        )
    if not fee_input.currency or len(fee_input.currency) != 3:
        raise FeeCalculationError(
            f"Invalid currency code '{fee_input.currency}'",
            details={"currency": fee_input.currency},
        )
    if fee_input.classification not in CLASSIFICATIONS:
        raise FeeCalculationError(
            f"Unknown creator classification '{fee_input.classification}'",
            details={"classification": fee_input.classification},
        )
    if fee_input.fee_model not in FeeModel.values:
        raise FeeCalculationError(
            f"Unknown fee model '{fee_input.fee_model}'",
            details={"fee_model": fee_input.fee_model},
        )
    if (
        fee_input.fee_model in (FeeModel.FLAT, FeeModel.PROGRESSIVE)
        and fee_input.fee_mode not in CARRIED_FEE_MODES
    ):
        raise FeeCalculationError(
            f"Fee mode '{fee_input.fee_mode}' is not valid for "
            f"the {fee_input.fee_model} model",
            details={
                "fee_model": fee_input.fee_model,
                "fee_mode": fee_input.fee_mode,
            },
        )


def _carried(
    fee_input: FeeInput,
    currency: str,
    fee_cents: int,
    was_capped: bool = False,
) -> FeeBreakdown:
    """Breakdown where one party carries the whole fee."""
    price = fee_input.amount_cents
    if fee_input.fee_mode == FeeMode.ABSORB:
        gross, net = price, price - fee_cents
        subscriber_fee, creator_fee = 0, fee_cents
    else:
        gross, net = price + fee_cents, price
        subscriber_fee, creator_fee = fee_cents, 0
    return FeeBreakdown(
        gross_cents=gross,
        fee_cents=fee_cents,
        net_cents=net,
        base_price_cents=price,
        currency=currency,
        fee_model=fee_input.fee_model,
        fee_mode=fee_input.fee_mode,
        effective_rate=_effective_rate(fee_cents, price),
        was_capped=was_capped,
        subscriber_fee_cents=subscriber_fee,
        creator_fee_cents=creator_fee,
    )


# =============================================================================
# Fee Models
# =============================================================================


def _calculate_legacy(fee_input: FeeInput, currency: str) -> FeeBreakdown:
    gross = fee_input.amount_cents
    rate = constants.LEGACY_RATES[fee_input.classification]
    fee = round_half_up(Decimal(gross) * rate)
    return FeeBreakdown(
        gross_cents=gross,
        fee_cents=fee,
        net_cents=gross - fee,
        base_price_cents=gross,
        currency=currency,
        fee_model=FeeModel.LEGACY,
        fee_mode=FeeMode.ABSORB,
        effective_rate=_effective_rate(fee, gross),
        subscriber_fee_cents=0,
        creator_fee_cents=fee,
    )


def _calculate_flat(fee_input: FeeInput, currency: str) -> FeeBreakdown:
    rate = constants.FLAT_RATE
    if _is_cross_border(fee_input):
        rate += constants.CROSS_BORDER_BUFFER_RATE
    fee = round_half_up(Decimal(fee_input.amount_cents) * rate)
    return _carried(fee_input, currency, fee)


def _calculate_progressive(fee_input: FeeInput, currency: str) -> FeeBreakdown:
    price = fee_input.amount_cents
    tier = constants.PROGRESSIVE_TIERS[fee_input.classification]
    fee = round_half_up(Decimal(price) * tier["base_rate"])
    floor_fee = round_half_up(Decimal(price) * tier["min_rate"])
    cap = tier["absolute_caps"].get(currency)

    was_capped = False
    if cap is not None and fee > cap:
        fee = max(cap, floor_fee)
        was_capped = True
    # The absorbing creator can never owe more than the price
    fee = min(fee, price) if fee_input.fee_mode == FeeMode.ABSORB else fee
    return _carried(fee_input, currency, fee, was_capped=was_capped)


def _calculate_split(fee_input: FeeInput, currency: str) -> FeeBreakdown:
    price = fee_input.amount_cents
    rate = constants.SPLIT_TOTAL_RATE
    if _is_cross_border(fee_input):
        rate += constants.CROSS_BORDER_BUFFER_RATE

    total = round_half_up(Decimal(price) * rate)
    subscriber_fee, creator_fee = split_shares(total)

    was_capped = False
    minimum = minimum_platform_fee(price + subscriber_fee, currency)
    if total < minimum:
        was_capped = True
        deficit = minimum - total
        payer_extra = int(
            (Decimal(deficit) * constants.CAPPED_DEFICIT_PAYER_SHARE).to_integral_value(
                rounding=ROUND_CEILING
            )
        )
        subscriber_fee += payer_extra
        creator_fee += deficit - payer_extra

    # Net can never go negative; any excess moves to the payer
    if creator_fee > price:
        subscriber_fee += creator_fee - price
        creator_fee = price

    fee = subscriber_fee + creator_fee
    return FeeBreakdown(
        gross_cents=price + subscriber_fee,
        fee_cents=fee,
        net_cents=price - creator_fee,
        base_price_cents=price,
        currency=currency,
        fee_model=FeeModel.SPLIT,
        fee_mode=FeeMode.SPLIT,
        effective_rate=_effective_rate(fee, price),
        was_capped=was_capped,
        subscriber_fee_cents=subscriber_fee,
        creator_fee_cents=creator_fee,
    )


_CALCULATORS = {
    FeeModel.LEGACY: _calculate_legacy,
    FeeModel.FLAT: _calculate_flat,
    FeeModel.PROGRESSIVE: _calculate_progressive,
    FeeModel.SPLIT: _calculate_split,
}

# Models whose fee mode is fixed by the model itself
_IMPLIED_FEE_MODES = {
    FeeModel.LEGACY: FeeMode.ABSORB,
    FeeModel.SPLIT: FeeMode.SPLIT,
}


# =============================================================================
# Public API
# =============================================================================


def calculate_fee(fee_input: FeeInput) -> FeeBreakdown:
    """
    Resolve the gross/fee/net split for a charge.

    Args:
        fee_input: Amount, currency, creator attributes and fee model version

    Returns:
        FeeBreakdown satisfying gross - fee == net

    Raises:
        FeeCalculationError: If the input cannot be priced
    """
    _validate(fee_input)
    currency = fee_input.currency.upper()

    if fee_input.amount_cents == 0:
        fee_mode = _IMPLIED_FEE_MODES.get(
            FeeModel(fee_input.fee_model), fee_input.fee_mode
        )
        return FeeBreakdown(
            gross_cents=0,
            fee_cents=0,
            net_cents=0,
            base_price_cents=0,
            currency=currency,
            fee_model=fee_input.fee_model,
            fee_mode=fee_mode,
            subscriber_fee_cents=0,
            creator_fee_cents=0,
        )

    breakdown = _CALCULATORS[FeeModel(fee_input.fee_model)](fee_input, currency)

    logger.debug(
        f"Calculated {breakdown.fee_model} fee of {breakdown.fee_cents} "
        f"on {fee_input.amount_cents} {currency}",
        extra={
            "fee_model": breakdown.fee_model,
            "fee_mode": breakdown.fee_mode,
            "gross_cents": breakdown.gross_cents,
            "fee_cents": breakdown.fee_cents,
            "net_cents": breakdown.net_cents,
            "was_capped": breakdown.was_capped,
        },
    )
    return breakdown


def resolve_base_price(
    fee_model: str,
    fee_mode: str,
    gross_cents: int,
    net_cents: int | None = None,
    base_amount_cents: int | None = None,
) -> int:
    """
    Recover the creator's nominal set price from a checkout breakdown.

    Rules:
        split_v1: the recorded base amount (net as a fallback)
        flat / progressive: gross when absorbed, net when passed on
        legacy: gross

    Raises:
        FeeCalculationError: If the figures the model needs are missing
    """
    if fee_model == FeeModel.SPLIT:
        price = base_amount_cents if base_amount_cents is not None else net_cents
    elif fee_model in (FeeModel.FLAT, FeeModel.PROGRESSIVE):
        price = gross_cents if fee_mode == FeeMode.ABSORB else net_cents
    else:
        price = gross_cents

    if price is None:
        raise FeeCalculationError(
            f"Cannot resolve base price for {fee_model}/{fee_mode}",
            details={"fee_model": fee_model, "fee_mode": fee_mode},
        )
    return price


__all__ = [
    "calculate_fee",
    "resolve_base_price",
    "estimate_processor_fee",
    "minimum_platform_fee",
    "is_cross_border",
    "is_zero_decimal",
    "round_half_up",
    "split_shares",
]
