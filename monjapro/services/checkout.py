"""Checkout flow: pending subscription plus a Mercado Pago preference."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from sqlalchemy.orm import Session

from monjapro.config import PLANS, Settings, settings
from monjapro.models.billing import Subscription
from monjapro.schemas.billing import PreferenceCreate, PreferenceCreated
from monjapro.services.mercadopago import MercadoPagoClient, MercadoPagoError
from monjapro.services.subscriptions import subscriptions

logger = logging.getLogger(__name__)


def build_preference_body(
    subscription: Subscription, payload: PreferenceCreate, config: Settings = settings
) -> dict:
    offer = PLANS[payload.plano.value]
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=config.preference_expiration_minutes)
    reference = str(subscription.id)
    return {
        "items": [
            {
                "id": reference,
                "title": offer.title,
                "description": offer.description,
                "quantity": 1,
                "unit_price": float(offer.price),
                "currency_id": "BRL",
            }
        ],
        "payer": {
            "name": payload.nome,
            "email": payload.email,
            "identification": {"type": "CPF", "number": payload.cpf},
        },
        "payment_methods": {
            "excluded_payment_types": [],
            "excluded_payment_methods": [],
            "installments": 12,
            "default_installments": 1,
        },
        "back_urls": {
            "success": f"{config.mercadopago_success_url}?assinatura_id={reference}",
            "failure": f"{config.mercadopago_failure_url}?assinatura_id={reference}",
            "pending": f"{config.mercadopago_pending_url}?assinatura_id={reference}",
        },
        "notification_url": config.mercadopago_notification_url,
        "auto_return": "approved",
        "external_reference": reference,
        "statement_descriptor": config.mercadopago_statement_descriptor,
        "expires": True,
        "expiration_date_from": now.isoformat(),
        "expiration_date_to": expires_at.isoformat(),
    }


def create_preference(
    db: Session, payload: PreferenceCreate, client: MercadoPagoClient
) -> PreferenceCreated:
    """Open a pending subscription and the checkout preference that pays it.

    The subscription id is sent as ``external_reference`` so payment
    notifications can be traced back to it.
    """
    offer = PLANS[payload.plano.value]
    subscription = subscriptions.create_pending(
        db, payload.usuario_id, payload.plano, offer.price
    )
    body = build_preference_body(subscription, payload)
    try:
        preference = client.create_preference(
            body, idempotency_key=f"preference-{subscription.id}"
        )
    except MercadoPagoError as exc:
        logger.error(
            "Failed to create preference for subscription %s: %s", subscription.id, exc
        )
        raise HTTPException(
            status_code=502, detail="Erro ao criar preferência de pagamento"
        ) from exc

    subscriptions.set_preference(db, subscription.id, preference["id"])
    logger.info(
        "Preference %s created for subscription %s (%s)",
        preference["id"],
        subscription.id,
        payload.plano.value,
    )
    return PreferenceCreated(
        assinatura_id=subscription.id,
        preference_id=preference["id"],
        init_point=preference["init_point"],
        sandbox_init_point=preference.get("sandbox_init_point"),
    )
