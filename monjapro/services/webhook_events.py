"""Audit log of inbound Mercado Pago notifications.

Every write commits immediately so the row outlives any rollback of the
reconciliation work that follows it.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.orm import Session

from monjapro.models.webhook import WebhookEvent
from monjapro.schemas.webhook import WebhookNotification
from monjapro.services.common import apply_ordering, apply_pagination, get_by_id, parse_uuid
from monjapro.services.response import ListResponseMixin

MAX_ERROR_LENGTH = 2000


def _truncate(detail: str | None) -> str | None:
    if detail is None:
        return None
    return detail if len(detail) <= MAX_ERROR_LENGTH else detail[: MAX_ERROR_LENGTH - 3] + "..."


class WebhookEvents(ListResponseMixin):
    @staticmethod
    def append(db: Session, notification: WebhookNotification, payload: dict) -> WebhookEvent:
        event = WebhookEvent(
            event_type=notification.type,
            action=notification.action,
            payment_id=notification.referenced_id,
            payload=payload,
            processed=False,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def mark_processed(db: Session, event_id, note: str | None = None) -> bool:
        """Flag the event as processed. ``note`` keeps a warning next to success."""
        result = db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == parse_uuid(event_id))
            .values(
                processed=True,
                processed_at=datetime.now(timezone.utc),
                error=_truncate(note),
            )
        )
        db.commit()
        return result.rowcount > 0

    @staticmethod
    def mark_errored(db: Session, event_id, detail: str) -> bool:
        result = db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == parse_uuid(event_id))
            .values(processed=False, error=_truncate(detail))
        )
        db.commit()
        return result.rowcount > 0

    @staticmethod
    def get(db: Session, event_id: str) -> WebhookEvent:
        event = get_by_id(db, WebhookEvent, event_id)
        if not event:
            raise HTTPException(status_code=404, detail="Webhook event not found")
        return event

    @staticmethod
    def list(
        db: Session,
        processed: bool | None,
        errored: bool | None,
        payment_id: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(WebhookEvent)
        if processed is not None:
            query = query.filter(WebhookEvent.processed.is_(processed))
        if errored is True:
            query = query.filter(WebhookEvent.error.is_not(None))
        elif errored is False:
            query = query.filter(WebhookEvent.error.is_(None))
        if payment_id:
            query = query.filter(WebhookEvent.payment_id == payment_id)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": WebhookEvent.created_at,
                "processed_at": WebhookEvent.processed_at,
            },
        )
        return apply_pagination(query, limit, offset).all()


webhook_events = WebhookEvents()
