from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from monjapro.models.billing import SubscriptionPlan, SubscriptionStatus
from monjapro.schemas.webhook import coerce_identifier


class PayerIdentification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    number: str | None = None


class Payer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    identification: PayerIdentification | None = None


class PaymentDetails(BaseModel):
    """Authoritative payment state as returned by ``GET /v1/payments/{id}``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    status_detail: str | None = None
    external_reference: str | None = None
    transaction_amount: Decimal | None = None
    payment_method_id: str | None = None
    payment_type_id: str | None = None
    installments: int | None = None
    date_approved: datetime | None = None
    payer: Payer | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        normalized = coerce_identifier(value)
        if normalized is None:
            raise ValueError("payment id is required")
        return normalized

    @field_validator("external_reference", mode="before")
    @classmethod
    def _normalize_reference(cls, value):
        return coerce_identifier(value)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PaymentDetails":
        details = cls.model_validate(data)
        details.raw = data
        return details


class PreferenceCreate(BaseModel):
    plano: SubscriptionPlan
    usuario_id: UUID
    nome: str = Field(min_length=1, max_length=160)
    email: EmailStr
    cpf: str = Field(min_length=11, max_length=18)

    @field_validator("cpf")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        digits = "".join(ch for ch in value if ch.isdigit())
        if len(digits) != 11:
            raise ValueError("cpf must contain 11 digits")
        return digits


class PreferenceCreated(BaseModel):
    success: bool = True
    assinatura_id: UUID
    preference_id: str
    init_point: str
    sandbox_init_point: str | None = None


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    plan: SubscriptionPlan
    status: SubscriptionStatus
    price: Decimal
    started_at: datetime | None = None
    ends_at: datetime | None = None
    next_billing_at: datetime | None = None
    mercadopago_preference_id: str | None = None
    mercadopago_subscription_id: str | None = None
    created_at: datetime
    updated_at: datetime


class PaymentRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID | None = None
    external_reference: str | None = None
    mercadopago_payment_id: str
    status: str
    status_detail: str | None = None
    amount: Decimal | None = None
    payment_method: str | None = None
    payment_type: str | None = None
    installments: int | None = None
    approved_at: datetime | None = None
    created_at: datetime
