"""Subscription ledger.

Owns subscription records and the policy that maps an authoritative
Mercado Pago payment status onto a subscription status.
"""

from __future__ import annotations

import enum
import logging
import uuid
from calendar import monthrange
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from monjapro import metrics
from monjapro.models.billing import (
    ProviderPaymentStatus,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from monjapro.schemas.billing import PaymentDetails
from monjapro.services.common import get_by_id

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3


_TARGET_STATUS = {
    ProviderPaymentStatus.approved: SubscriptionStatus.active,
    ProviderPaymentStatus.rejected: SubscriptionStatus.cancelled,
    ProviderPaymentStatus.cancelled: SubscriptionStatus.cancelled,
    ProviderPaymentStatus.in_process: SubscriptionStatus.pending,
    ProviderPaymentStatus.pending: SubscriptionStatus.pending,
}


class TransitionOutcome(enum.Enum):
    applied = "applied"
    noop = "noop"
    stale = "stale"
    unhandled = "unhandled"


@dataclass(frozen=True)
class TransitionResult:
    outcome: TransitionOutcome
    previous_status: SubscriptionStatus
    new_status: SubscriptionStatus | None = None
    reason: str | None = None

    @property
    def entered_active(self) -> bool:
        return (
            self.outcome == TransitionOutcome.applied
            and self.new_status == SubscriptionStatus.active
        )


def _add_months(value: datetime, months: int) -> datetime:
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_period_end(plan: SubscriptionPlan, start_at: datetime) -> datetime:
    if plan == SubscriptionPlan.monthly:
        return _add_months(start_at, 1)
    return _add_months(start_at, 12)


def target_status(payment_status: str | None) -> SubscriptionStatus | None:
    """Subscription status for a provider payment status, None if unhandled."""
    try:
        provider_status = ProviderPaymentStatus(payment_status)
    except ValueError:
        return None
    return _TARGET_STATUS.get(provider_status)


class Subscriptions:
    @staticmethod
    def create_pending(
        db: Session, user_id: uuid.UUID, plan: SubscriptionPlan, price: Decimal
    ) -> Subscription:
        subscription = Subscription(
            user_id=user_id,
            plan=plan,
            status=SubscriptionStatus.pending,
            price=price,
        )
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def get(db: Session, subscription_id: str) -> Subscription:
        subscription = get_by_id(db, Subscription, subscription_id)
        if not subscription:
            raise HTTPException(status_code=404, detail="Subscription not found")
        return subscription

    @staticmethod
    def find_by_reference(db: Session, external_reference: str | None) -> Subscription | None:
        """Resolve the subscription a payment was created for.

        The external reference is the subscription id we sent when creating
        the checkout preference. Malformed references resolve to None.
        """
        return get_by_id(db, Subscription, external_reference)

    @staticmethod
    def set_preference(db: Session, subscription_id: uuid.UUID, preference_id: str) -> None:
        db.execute(
            update(Subscription)
            .where(Subscription.id == subscription_id)
            .values(
                mercadopago_preference_id=preference_id,
                updated_at=datetime.now(timezone.utc),
            )
        )
        db.commit()

    @staticmethod
    def _settled(
        subscription_id: uuid.UUID,
        seen: SubscriptionStatus,
        activated_by: str | None,
        target: SubscriptionStatus,
        payment: PaymentDetails,
    ) -> TransitionResult | None:
        """Result for an observation that needs no write, None otherwise."""
        if seen == target:
            logger.info(
                "Subscription %s already %s; payment %s (%s) is a no-op",
                subscription_id,
                seen.value,
                payment.id,
                payment.status,
            )
            metrics.observe_transition(TransitionOutcome.noop.value, seen.value)
            return TransitionResult(TransitionOutcome.noop, seen, target)

        if seen == SubscriptionStatus.active and activated_by and activated_by != payment.id:
            logger.info(
                "Ignoring %s for payment %s: subscription %s was activated by payment %s",
                payment.status,
                payment.id,
                subscription_id,
                activated_by,
            )
            metrics.observe_transition(TransitionOutcome.stale.value, seen.value)
            return TransitionResult(
                TransitionOutcome.stale,
                seen,
                reason=f"Superseded by payment {activated_by}",
            )
        return None

    @staticmethod
    def apply_payment_status(
        db: Session,
        subscription: Subscription,
        payment: PaymentDetails,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Apply one authoritative payment observation to a subscription.

        The decision is made against the status read from ``subscription``
        and written with an UPDATE conditioned on that same status. If another
        delivery changed the row in between, no row matches; the row is read
        again and the decision repeated against what the winner committed.
        Observations whose target status is already current are no-ops, so
        replaying ``approved`` never recomputes the billing period.
        """
        subscription_id = subscription.id
        seen = subscription.status
        plan = subscription.plan
        activated_by = subscription.mercadopago_subscription_id
        target = target_status(payment.status)

        if target is None:
            logger.warning(
                "Unhandled Mercado Pago status %r for payment %s; "
                "subscription %s left %s",
                payment.status,
                payment.id,
                subscription_id,
                seen.value,
            )
            metrics.observe_transition(TransitionOutcome.unhandled.value, seen.value)
            return TransitionResult(
                TransitionOutcome.unhandled,
                seen,
                reason=f"Unhandled payment status {payment.status!r}; subscription left unchanged",
            )

        now = now or datetime.now(timezone.utc)
        for _ in range(MAX_CAS_ATTEMPTS):
            settled = Subscriptions._settled(subscription_id, seen, activated_by, target, payment)
            if settled is not None:
                return settled

            values: dict = {"status": target, "updated_at": now}
            if target == SubscriptionStatus.active:
                ends_at = compute_period_end(plan, now)
                values.update(
                    started_at=now,
                    ends_at=ends_at,
                    next_billing_at=ends_at,
                    mercadopago_subscription_id=payment.id,
                )

            result = db.execute(
                update(Subscription)
                .where(Subscription.id == subscription_id)
                .where(Subscription.status == seen)
                .values(**values)
            )
            if result.rowcount:
                db.commit()
                logger.info(
                    "Subscription %s: %s -> %s (payment %s)",
                    subscription_id,
                    seen.value,
                    target.value,
                    payment.id,
                )
                metrics.observe_transition(TransitionOutcome.applied.value, target.value)
                return TransitionResult(TransitionOutcome.applied, seen, target)

            db.rollback()
            current = db.execute(
                select(
                    Subscription.status,
                    Subscription.plan,
                    Subscription.mercadopago_subscription_id,
                ).where(Subscription.id == subscription_id)
            ).one_or_none()
            if current is None:
                logger.warning(
                    "Subscription %s disappeared while applying payment %s",
                    subscription_id,
                    payment.id,
                )
                metrics.observe_transition(TransitionOutcome.stale.value, target.value)
                return TransitionResult(
                    TransitionOutcome.stale, seen, reason="Subscription no longer exists"
                )
            logger.info(
                "Subscription %s changed concurrently (%s -> %s); re-evaluating payment %s",
                subscription_id,
                seen.value,
                current.status.value,
                payment.id,
            )
            seen, plan, activated_by = current

        logger.warning(
            "Gave up applying payment %s to subscription %s after %d concurrent updates",
            payment.id,
            subscription_id,
            MAX_CAS_ATTEMPTS,
        )
        metrics.observe_transition(TransitionOutcome.stale.value, target.value)
        return TransitionResult(
            TransitionOutcome.stale,
            seen,
            reason=f"Concurrent updates won {MAX_CAS_ATTEMPTS} times in a row",
        )


subscriptions = Subscriptions()
