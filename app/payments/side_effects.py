"""
Side-effect dispatcher for committed ledger writes.

Everything here runs strictly after the ledger transaction commits and is
best-effort: each step is caught and logged on its own, and none of them is
ever retried by re-running the financial write.

Steps, in order:
    1. Send the matching Django signal (payments.signals)
    2. Request payer/creator notifications (Celery task)
    3. Invalidate cached revenue figures for the creator
    4. Count the successful payment toward the salary-mode unlock

Usage:
    from payments.side_effects import SideEffects, dispatch_after_commit

    dispatch_after_commit(result.side_effects)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable
from uuid import UUID

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.db.models import F

from payments import signals
from payments.models import ActivityEvent, ActivityType, CreatorAccount

if TYPE_CHECKING:
    from payments.models import Payment, Subscription

logger = logging.getLogger(__name__)

DEFAULT_SALARY_MODE_UNLOCK_THRESHOLD = 2
DEFAULT_REVENUE_CACHE_KEYS = (
    "creator:{creator_id}:revenue",
    "creator:{creator_id}:stats",
)


@dataclass(frozen=True)
class SideEffects:
    """
    Post-commit work produced by one ledger write.

    Attributes:
        kind: 'settled', 'reversed' or 'status_changed'
        subscription: Subscription after the write
        payment: Payment row written, if any
        previous_status: Subscription status before the write
        notification: Notification type to request, or '' for none
    """

    SETTLED = "settled"
    REVERSED = "reversed"
    STATUS_CHANGED = "status_changed"

    kind: str
    subscription: Subscription
    payment: Payment | None = None
    previous_status: str | None = None
    notification: str = ""

    @property
    def creator_id(self) -> UUID:
        return self.subscription.creator_id

    @property
    def counts_toward_unlock(self) -> bool:
        """Only settled charges that actually moved money count."""
        return (
            self.kind == self.SETTLED
            and self.payment is not None
            and self.payment.gross_cents > 0
        )


# =============================================================================
# Steps
# =============================================================================


def _send_signal(effects: SideEffects) -> None:
    if effects.kind == SideEffects.SETTLED:
        signals.payment_settled.send(
            sender=SideEffects,
            payment=effects.payment,
            subscription=effects.subscription,
        )
    elif effects.kind == SideEffects.REVERSED:
        signals.payment_reversed.send(
            sender=SideEffects,
            payment=effects.payment,
            subscription=effects.subscription,
        )
    if (
        effects.previous_status is not None
        and effects.previous_status != effects.subscription.status
    ):
        signals.subscription_status_changed.send(
            sender=SideEffects,
            subscription=effects.subscription,
            previous_status=effects.previous_status,
        )


def _request_notification(effects: SideEffects) -> None:
    if not effects.notification:
        return
    from payments.tasks import send_payment_notification

    send_payment_notification.delay(
        effects.notification,
        str(effects.subscription.id),
        str(effects.payment.id) if effects.payment is not None else None,
    )


def _invalidate_caches(effects: SideEffects) -> None:
    patterns = getattr(settings, "PAYMENTS_REVENUE_CACHE_KEYS", DEFAULT_REVENUE_CACHE_KEYS)
    keys = [pattern.format(creator_id=effects.creator_id) for pattern in patterns]
    if keys:
        cache.delete_many(keys)


def advance_salary_mode_unlock(creator_id: UUID) -> bool:
    """
    Count one successful payment and unlock salary mode at the threshold.

    The counter is incremented with F() and the unlock is a conditional
    update on ``payday_alignment_unlocked=False``, so concurrent payments
    unlock at most once. The activity is written only by the caller whose
    update actually flipped the flag.

    Returns:
        True if this call unlocked the feature
    """
    threshold = getattr(
        settings,
        "PAYMENTS_SALARY_MODE_UNLOCK_THRESHOLD",
        DEFAULT_SALARY_MODE_UNLOCK_THRESHOLD,
    )
    CreatorAccount.objects.get_or_create(creator_id=creator_id)
    CreatorAccount.objects.filter(creator_id=creator_id).update(
        total_successful_payments=F("total_successful_payments") + 1
    )
    unlocked = CreatorAccount.objects.filter(
        creator_id=creator_id,
        payday_alignment_unlocked=False,
        total_successful_payments__gte=threshold,
    ).update(payday_alignment_unlocked=True)

    if unlocked != 1:
        return False

    ActivityEvent.objects.create(
        creator_id=creator_id,
        type=ActivityType.SALARY_MODE_UNLOCKED,
        payload={"threshold": threshold},
    )
    logger.info(
        f"Salary mode unlocked for creator {creator_id}",
        extra={"creator_id": str(creator_id), "threshold": threshold},
    )
    return True


def _advance_unlock(effects: SideEffects) -> None:
    if effects.counts_toward_unlock:
        advance_salary_mode_unlock(effects.creator_id)


STEPS: tuple[Callable[[SideEffects], None], ...] = (
    _send_signal,
    _request_notification,
    _invalidate_caches,
    _advance_unlock,
)


# =============================================================================
# Dispatch
# =============================================================================


def run_side_effects(effects: SideEffects) -> list[str]:
    """
    Run every step, isolating failures.

    Returns:
        Names of the steps that failed
    """
    failed = []
    for step in STEPS:
        try:
            step(effects)
        except Exception:
            failed.append(step.__name__)
            logger.exception(
                f"Side effect {step.__name__} failed",
                extra={
                    "step": step.__name__,
                    "kind": effects.kind,
                    "subscription_id": str(effects.subscription.id),
                    "payment_id": str(effects.payment.id) if effects.payment else None,
                },
            )
    return failed


def dispatch_after_commit(effects: SideEffects | None) -> None:
    """
    Schedule ``effects`` to run once the current transaction commits.

    Outside a transaction the effects run immediately.
    """
    if effects is None:
        return
    transaction.on_commit(lambda: run_side_effects(effects))


__all__ = [
    "SideEffects",
    "advance_salary_mode_unlock",
    "dispatch_after_commit",
    "run_side_effects",
]
