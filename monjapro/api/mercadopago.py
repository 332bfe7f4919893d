from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from monjapro.api.deps import get_db, get_mercadopago_client
from monjapro.schemas.billing import PreferenceCreate, PreferenceCreated
from monjapro.schemas.webhook import WebhookAck
from monjapro.services import api_mercadopago_webhooks as webhooks_service
from monjapro.services import checkout as checkout_service
from monjapro.services.mercadopago import MercadoPagoClient

router = APIRouter()


@router.post("/webhook", response_model=WebhookAck, tags=["mercadopago"])
@router.post("/api/mercadopago/webhook", response_model=WebhookAck, tags=["mercadopago"])
async def mercadopago_webhook(
    request: Request,
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
):
    body = await request.body()
    return await run_in_threadpool(
        webhooks_service.handle_notification,
        db=db,
        body=body,
        query_params=request.query_params,
        headers=request.headers,
        client=client,
    )


@router.post(
    "/api/mercadopago/create-preference",
    response_model=PreferenceCreated,
    tags=["mercadopago"],
)
def create_preference(
    payload: PreferenceCreate,
    db: Session = Depends(get_db),
    client: MercadoPagoClient = Depends(get_mercadopago_client),
):
    return checkout_service.create_preference(db, payload, client)
