"""Mercado Pago webhook endpoint orchestration."""

from __future__ import annotations

import json
import logging
from typing import Mapping

from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from monjapro.config import Settings, settings
from monjapro.schemas.webhook import WebhookNotification
from monjapro.services import reconciliation
from monjapro.services.mercadopago import MercadoPagoClient, verify_webhook_signature
from monjapro.tasks.mercadopago import process_webhook_event

logger = logging.getLogger(__name__)


def _decode_body(body: bytes):
    if not body:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Malformed Mercado Pago webhook body (%d bytes)", len(body))
        return {"_raw_body": body.decode("utf-8", errors="replace")}


def _enqueue_or_process(
    db: Session,
    notification: WebhookNotification,
    payload: dict,
    client: MercadoPagoClient,
) -> None:
    event = reconciliation.record_notification(db, notification, payload)
    if event is not None:
        try:
            process_webhook_event.delay(str(event.id))
            logger.info("Webhook event %s queued for reconciliation", event.id)
            return
        except Exception:
            logger.exception("Failed to enqueue webhook event %s; processing inline", event.id)
    reconciliation.process_notification(
        db, event.id if event is not None else None, notification, client
    )


def handle_notification(
    *,
    db: Session,
    body: bytes,
    query_params: Mapping[str, str],
    headers: Mapping[str, str],
    client: MercadoPagoClient,
    config: Settings | None = None,
) -> JSONResponse:
    """Log and reconcile one delivery. The response is always 200."""
    config = config or settings
    decoded = _decode_body(body)
    try:
        notification, payload = WebhookNotification.from_request(decoded, dict(query_params))
    except ValidationError as exc:
        logger.error("Unreadable Mercado Pago notification: %s", exc)
        notification, payload = WebhookNotification(), {"_body": decoded}

    logger.info(
        "Mercado Pago webhook: type=%s action=%s id=%s",
        notification.type,
        notification.action,
        notification.referenced_id,
    )

    signature_valid = True
    if config.mercadopago_webhook_secret:
        signature_valid = verify_webhook_signature(
            headers.get("x-signature"),
            headers.get("x-request-id"),
            notification.referenced_id,
            config.mercadopago_webhook_secret,
        )

    try:
        if signature_valid and config.webhook_async_processing:
            _enqueue_or_process(db, notification, payload, client)
        else:
            reconciliation.reconcile(
                db, notification, client, payload=payload, signature_valid=signature_valid
            )
    except Exception:
        logger.exception("Mercado Pago webhook processing error")

    return JSONResponse({"success": True}, status_code=200)
