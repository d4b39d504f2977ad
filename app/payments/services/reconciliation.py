"""
Payout reconciliation against provider confirmations.

A payout confirmation whose amount or currency disagrees with the stored
record is never auto-corrected. The payout moves to NEEDS_INVESTIGATION and
a payout_mismatch activity surfaces it for human review.

Usage:
    from payments.services.reconciliation import PayoutReconciliationService

    result = PayoutReconciliationService.confirm_payout(
        reference="trf_123",
        amount_cents=95500,
        currency="USD",
        event_id="evt_456",
    )
    if not result:
        logger.warning(result.error, extra={"error_code": result.error_code})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from core.services import BaseService, ServiceResult

from payments.exceptions import PaymentNotFoundError, ReconciliationMismatchError
from payments.models import ActivityEvent, ActivityType, Payout
from payments.state_machines import PayoutStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutConfirmation:
    """Outcome of a successful confirmation."""

    payout: Payout
    already_confirmed: bool = False


class PayoutReconciliationService(BaseService):
    """
    Service for confirming payouts reported by the provider.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def confirm_payout(
        cls,
        reference: str,
        amount_cents: int,
        currency: str,
        event_id: str = "",
    ) -> ServiceResult[PayoutConfirmation]:
        """
        Mark a payout as paid if the provider's figures match ours.

        Args:
            reference: Provider transfer reference
            amount_cents: Amount the provider says it paid
            currency: Currency the provider says it paid in
            event_id: Provider event id, recorded on the mismatch activity

        Returns:
            ServiceResult with PayoutConfirmation on success. Failures carry
            PAYMENT_NOT_FOUND, RECONCILIATION_MISMATCH or
            PAYOUT_NEEDS_INVESTIGATION.
        """
        currency = currency.upper()

        with cls.atomic():
            payout = (
                Payout.objects.select_for_update()
                .filter(provider_reference=reference)
                .first()
            )
            if payout is None:
                return ServiceResult.from_exception(
                    PaymentNotFoundError(
                        f"No payout with reference {reference}",
                        details={"provider_reference": [reference]},
                    )
                )

            if payout.status == PayoutStatus.SUCCEEDED:
                logger.info(
                    f"Payout {reference} already confirmed",
                    extra={"payout_id": str(payout.id), "provider_event_id": event_id},
                )
                return ServiceResult.success(
                    PayoutConfirmation(payout=payout, already_confirmed=True)
                )

            if payout.status == PayoutStatus.NEEDS_INVESTIGATION:
                return ServiceResult.failure(
                    f"Payout {reference} is under investigation",
                    error_code="PAYOUT_NEEDS_INVESTIGATION",
                )

            problems = cls._compare(payout, amount_cents, currency)
            if problems:
                cls._flag(payout, problems, amount_cents, currency, event_id)
                return ServiceResult.from_exception(
                    ReconciliationMismatchError(
                        f"Payout {reference} does not match provider confirmation",
                        details={"mismatch": problems},
                    )
                )

            payout.complete()
            payout.save()

        logger.info(
            f"Payout {reference} confirmed",
            extra={
                "payout_id": str(payout.id),
                "amount_cents": payout.amount_cents,
                "provider_event_id": event_id,
            },
        )
        return ServiceResult.success(PayoutConfirmation(payout=payout))

    @staticmethod
    def _compare(payout: Payout, amount_cents: int, currency: str) -> list[str]:
        problems = []
        if payout.status != PayoutStatus.PENDING:
            problems.append(f"status is {payout.status}")
        if payout.amount_cents != amount_cents:
            problems.append(
                f"amount {amount_cents} does not match stored {payout.amount_cents}"
            )
        if payout.currency.upper() != currency:
            problems.append(
                f"currency {currency} does not match stored {payout.currency.upper()}"
            )
        return problems

    @staticmethod
    def _flag(
        payout: Payout,
        problems: list[str],
        amount_cents: int,
        currency: str,
        event_id: str,
    ) -> None:
        payout.flag_for_investigation("; ".join(problems))
        payout.save()
        ActivityEvent.objects.create(
            creator_id=payout.creator_id,
            type=ActivityType.PAYOUT_MISMATCH,
            provider_event_id=event_id,
            payload={
                "payout_id": str(payout.id),
                "provider_reference": payout.provider_reference,
                "expected_amount_cents": payout.amount_cents,
                "expected_currency": payout.currency,
                "reported_amount_cents": amount_cents,
                "reported_currency": currency,
                "problems": problems,
            },
        )
        logger.warning(
            f"Payout {payout.provider_reference} flagged for investigation",
            extra={
                "payout_id": str(payout.id),
                "problems": problems,
                "provider_event_id": event_id,
            },
        )


__all__ = ["PayoutConfirmation", "PayoutReconciliationService"]
