import logging
import time

from monjapro.celery_app import celery_app
from monjapro.db import SessionLocal
from monjapro.metrics import observe_job
from monjapro.models.webhook import WebhookEvent
from monjapro.services import reconciliation
from monjapro.services.common import get_by_id
from monjapro.services.mercadopago import MercadoPagoClient

logger = logging.getLogger(__name__)


@celery_app.task(name="monjapro.tasks.mercadopago.process_webhook_event")
def process_webhook_event(event_id: str):
    """Reconcile a webhook event logged by the API process."""
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        if get_by_id(session, WebhookEvent, event_id) is None:
            logger.error("WebhookEvent not found: %s", event_id)
            status = "skipped"
            return None
        outcome = reconciliation.process_event(
            session, event_id, MercadoPagoClient.from_settings()
        )
        logger.info("Webhook event %s reconciled: %s", event_id, outcome.value)
        return outcome.value
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("Webhook event %s processing failed.", event_id)
        raise
    finally:
        session.close()
        observe_job("process_webhook_event", status, time.monotonic() - start)
