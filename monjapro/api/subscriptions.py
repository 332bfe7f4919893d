from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from monjapro.api.deps import get_db
from monjapro.schemas.billing import PaymentRecordRead, SubscriptionRead
from monjapro.schemas.common import ListResponse
from monjapro.services.payment_records import payment_records
from monjapro.services.subscriptions import subscriptions

router = APIRouter(prefix="/api/subscriptions")


@router.get("/{subscription_id}", response_model=SubscriptionRead, tags=["subscriptions"])
def get_subscription(subscription_id: str, db: Session = Depends(get_db)):
    return subscriptions.get(db, subscription_id)


@router.get(
    "/{subscription_id}/payments",
    response_model=ListResponse[PaymentRecordRead],
    tags=["subscriptions"],
)
def list_subscription_payments(
    subscription_id: str,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    subscription = subscriptions.get(db, subscription_id)
    return payment_records.list_response(
        db,
        subscription_id=str(subscription.id),
        mercadopago_payment_id=None,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )
