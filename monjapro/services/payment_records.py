from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from monjapro.models.billing import PaymentRecord
from monjapro.schemas.billing import PaymentDetails
from monjapro.services.common import apply_ordering, apply_pagination, coerce_uuid
from monjapro.services.response import ListResponseMixin


class PaymentRecords(ListResponseMixin):
    @staticmethod
    def append(
        db: Session, payment: PaymentDetails, subscription_id: uuid.UUID | None
    ) -> PaymentRecord:
        """Record one fetched observation. Duplicates are expected and kept."""
        payer = payment.payer
        identification = payer.identification if payer else None
        record = PaymentRecord(
            subscription_id=subscription_id,
            external_reference=payment.external_reference,
            mercadopago_payment_id=payment.id,
            status=payment.status,
            status_detail=payment.status_detail,
            amount=payment.transaction_amount,
            payment_method=payment.payment_method_id,
            payment_type=payment.payment_type_id,
            installments=payment.installments,
            payer_email=payer.email if payer else None,
            payer_name=payer.first_name if payer else None,
            payer_identification=identification.number if identification else None,
            approved_at=payment.date_approved,
            raw_payload=payment.raw or payment.model_dump(mode="json"),
        )
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def list(
        db: Session,
        subscription_id: str | None,
        mercadopago_payment_id: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(PaymentRecord)
        if subscription_id:
            query = query.filter(PaymentRecord.subscription_id == coerce_uuid(subscription_id))
        if mercadopago_payment_id:
            query = query.filter(
                PaymentRecord.mercadopago_payment_id == mercadopago_payment_id
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": PaymentRecord.created_at, "approved_at": PaymentRecord.approved_at},
        )
        return apply_pagination(query, limit, offset).all()


payment_records = PaymentRecords()
