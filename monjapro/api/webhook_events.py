from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from monjapro.api.deps import get_db, get_mercadopago_client
from monjapro.schemas.common import ListResponse
from monjapro.schemas.webhook import WebhookEventRead
from monjapro.services import reconciliation
from monjapro.services.mercadopago import MercadoPagoClient
from monjapro.services.webhook_events import webhook_events

router = APIRouter(prefix="/api/webhook-events")


@router.get("", response_model=ListResponse[WebhookEventRead], tags=["webhook-events"])
def list_webhook_events(
    processed: bool | None = None,
    errored: bool | None = None,
    payment_id: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return webhook_events.list_response(
        db,
        processed=processed,
        errored=errored,
        payment_id=payment_id,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.get("/{event_id}", response_model=WebhookEventRead, tags=["webhook-events"])
def get_webhook_event(event_id: str, db: Session = Depends(get_db)):
    return webhook_events.get(db, event_id)


@router.post("/{event_id}/replay", response_model=WebhookEventRead, tags=["webhook-events"])
def replay_webhook_event(
    event_id: str,
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
):
    reconciliation.process_event(db, event_id, client)
    return webhook_events.get(db, event_id)
