"""Webhook reconciliation engine.

A notification is only a hint that a payment changed. The engine records
it, fetches the payment from Mercado Pago, records the observation, moves
the referenced subscription through the transition policy and grants the
premium entitlement when the subscription becomes active.

Nothing in here raises to the caller: every outcome ends up on the
WebhookEvent row, or in the log when the row itself cannot be written.
"""

from __future__ import annotations

import enum
import logging

from sqlalchemy.orm import Session

from monjapro import metrics
from monjapro.models.webhook import WebhookEvent
from monjapro.schemas.webhook import WebhookNotification
from monjapro.services.mercadopago import (
    MercadoPagoClient,
    PaymentNotFoundError,
    ProviderTransientError,
)
from monjapro.services.payment_records import payment_records
from monjapro.services.profiles import profiles
from monjapro.services.subscriptions import TransitionOutcome, subscriptions
from monjapro.services.webhook_events import webhook_events

logger = logging.getLogger(__name__)

INVALID_SIGNATURE = "invalid signature"


class OrphanPaymentError(Exception):
    """A payment whose external_reference matches no subscription."""

    pass


class ReconciliationOutcome(enum.Enum):
    processed = "processed"
    ignored = "ignored"
    unhandled_status = "unhandled_status"
    stale_observation = "stale_observation"
    payment_not_found = "payment_not_found"
    transient_error = "transient_error"
    orphan_payment = "orphan_payment"
    invalid_signature = "invalid_signature"
    failed = "failed"


def record_notification(
    db: Session, notification: WebhookNotification, payload: dict
) -> WebhookEvent | None:
    try:
        return webhook_events.append(db, notification, payload)
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to log webhook notification type=%s id=%s",
            notification.type,
            notification.referenced_id,
        )
        return None


def _mark_processed(db: Session, event_id, note: str | None = None) -> None:
    if event_id is None:
        return
    try:
        if not webhook_events.mark_processed(db, event_id, note=note):
            logger.warning("Webhook event %s vanished before it could be marked processed", event_id)
    except Exception:
        db.rollback()
        logger.exception("Failed to mark webhook event %s processed", event_id)


def _mark_errored(db: Session, event_id, detail: str) -> None:
    if event_id is None:
        logger.error("Reconciliation error for unlogged notification: %s", detail)
        return
    try:
        if not webhook_events.mark_errored(db, event_id, detail):
            logger.warning("Webhook event %s vanished before it could be marked errored", event_id)
    except Exception:
        db.rollback()
        logger.exception("Failed to record error on webhook event %s: %s", event_id, detail)


def _grant_entitlement(db: Session, subscription) -> str | None:
    """Returns an entitlement-gap note when the profile could not be updated."""
    subscription_id = subscription.id
    user_id = subscription.user_id
    plan = subscription.plan
    try:
        granted = profiles.grant_premium(db, user_id, plan)
    except Exception as exc:
        db.rollback()
        logger.exception(
            "Entitlement gap: subscription %s is active but profile %s was not updated",
            subscription_id,
            user_id,
        )
        return f"Entitlement gap: profile {user_id} update failed: {exc}"
    if not granted:
        logger.error(
            "Entitlement gap: subscription %s is active but profile %s does not exist",
            subscription_id,
            user_id,
        )
        return f"Entitlement gap: profile {user_id} not found"
    return None


def _reconcile_payment(
    db: Session, payment_id: str, client: MercadoPagoClient
) -> tuple[ReconciliationOutcome, str | None]:
    payment = client.get_payment(payment_id)
    logger.info(
        "Payment %s status=%s external_reference=%s",
        payment.id,
        payment.status,
        payment.external_reference,
    )
    subscription = subscriptions.find_by_reference(db, payment.external_reference)
    payment_records.append(db, payment, subscription.id if subscription else None)
    if subscription is None:
        raise OrphanPaymentError(
            f"Orphan payment {payment.id}: no subscription for "
            f"external_reference {payment.external_reference!r}"
        )

    result = subscriptions.apply_payment_status(db, subscription, payment)
    if result.outcome == TransitionOutcome.unhandled:
        return ReconciliationOutcome.unhandled_status, result.reason
    if result.outcome == TransitionOutcome.stale:
        return ReconciliationOutcome.stale_observation, result.reason
    if result.entered_active:
        return ReconciliationOutcome.processed, _grant_entitlement(db, subscription)
    return ReconciliationOutcome.processed, None


def process_notification(
    db: Session,
    event_id,
    notification: WebhookNotification,
    client: MercadoPagoClient,
) -> ReconciliationOutcome:
    """Reconcile one notification and record the outcome on ``event_id``."""
    payment_id = notification.payment_id
    if not payment_id:
        logger.info(
            "Notification type=%s action=%s carries no payment id; nothing to reconcile",
            notification.type,
            notification.action,
        )
        _mark_processed(db, event_id)
        outcome = ReconciliationOutcome.ignored
    else:
        try:
            outcome, note = _reconcile_payment(db, payment_id, client)
        except PaymentNotFoundError:
            logger.warning("Payment %s not found at Mercado Pago; ignoring", payment_id)
            _mark_processed(db, event_id)
            outcome = ReconciliationOutcome.payment_not_found
        except ProviderTransientError as exc:
            logger.warning("Could not fetch payment %s: %s", payment_id, exc)
            _mark_errored(db, event_id, str(exc))
            outcome = ReconciliationOutcome.transient_error
        except OrphanPaymentError as exc:
            logger.error("%s", exc)
            _mark_errored(db, event_id, str(exc))
            outcome = ReconciliationOutcome.orphan_payment
        except Exception as exc:
            db.rollback()
            logger.exception("Failed to reconcile payment %s", payment_id)
            _mark_errored(db, event_id, f"{type(exc).__name__}: {exc}")
            outcome = ReconciliationOutcome.failed
        else:
            _mark_processed(db, event_id, note=note)
    metrics.observe_webhook(outcome.value)
    return outcome


def process_event(db: Session, event_id, client: MercadoPagoClient) -> ReconciliationOutcome:
    """Reconcile a notification that is already in the audit log.

    Raises HTTPException 404 when the event does not exist.
    """
    event = webhook_events.get(db, event_id)
    notification = WebhookNotification.model_validate(
        {
            "type": event.event_type,
            "action": event.action,
            "data": {"id": event.payment_id} if event.payment_id else None,
        }
    )
    return process_notification(db, event.id, notification, client)


def reconcile(
    db: Session,
    notification: WebhookNotification,
    client: MercadoPagoClient,
    payload: dict | None = None,
    signature_valid: bool = True,
) -> WebhookEvent | None:
    """Log a notification and reconcile it inline. Always returns normally."""
    event = record_notification(
        db, notification, payload if payload is not None else notification.model_dump()
    )
    event_id = event.id if event is not None else None
    if not signature_valid:
        logger.warning(
            "Rejected notification with invalid signature (payment %s)",
            notification.referenced_id,
        )
        _mark_errored(db, event_id, INVALID_SIGNATURE)
        metrics.observe_webhook(ReconciliationOutcome.invalid_signature.value)
        return event
    process_notification(db, event_id, notification, client)
    return event
