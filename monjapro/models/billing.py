import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from monjapro.db import Base


class SubscriptionPlan(enum.Enum):
    monthly = "monthly"
    yearly = "yearly"


class SubscriptionStatus(enum.Enum):
    pending = "pending"
    active = "active"
    cancelled = "cancelled"


class ProviderPaymentStatus(enum.Enum):
    """Payment statuses documented by Mercado Pago."""

    pending = "pending"
    approved = "approved"
    authorized = "authorized"
    in_process = "in_process"
    in_mediation = "in_mediation"
    rejected = "rejected"
    cancelled = "cancelled"
    refunded = "refunded"
    charged_back = "charged_back"


class Subscription(Base):
    __tablename__ = "assinaturas"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        "usuario_id", UUID(as_uuid=True), nullable=False, index=True
    )
    plan: Mapped[SubscriptionPlan] = mapped_column(
        "plano", Enum(SubscriptionPlan, native_enum=False, length=20), nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, native_enum=False, length=20),
        default=SubscriptionStatus.pending,
        nullable=False,
    )
    price: Mapped[Decimal] = mapped_column("preco", Numeric(10, 2), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        "data_inicio", DateTime(timezone=True)
    )
    ends_at: Mapped[datetime | None] = mapped_column("data_fim", DateTime(timezone=True))
    next_billing_at: Mapped[datetime | None] = mapped_column(
        "data_proxima_cobranca", DateTime(timezone=True)
    )
    mercadopago_preference_id: Mapped[str | None] = mapped_column(String(120))
    mercadopago_subscription_id: Mapped[str | None] = mapped_column(String(120))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    payments = relationship(
        "PaymentRecord",
        back_populates="subscription",
        order_by="PaymentRecord.created_at",
    )


class PaymentRecord(Base):
    """Append-only history of payment observations fetched from Mercado Pago."""

    __tablename__ = "pagamentos"
    __table_args__ = (
        Index("ix_pagamentos_mercadopago_payment_id", "mercadopago_payment_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        "assinatura_id", UUID(as_uuid=True), ForeignKey("assinaturas.id"), index=True
    )
    external_reference: Mapped[str | None] = mapped_column(String(120))
    mercadopago_payment_id: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    status_detail: Mapped[str | None] = mapped_column(String(120))
    amount: Mapped[Decimal | None] = mapped_column("valor", Numeric(10, 2))
    payment_method: Mapped[str | None] = mapped_column("metodo_pagamento", String(60))
    payment_type: Mapped[str | None] = mapped_column("tipo_pagamento", String(60))
    installments: Mapped[int | None] = mapped_column("parcelas", Integer)
    payer_email: Mapped[str | None] = mapped_column("email_pagador", String(255))
    payer_name: Mapped[str | None] = mapped_column("nome_pagador", String(160))
    payer_identification: Mapped[str | None] = mapped_column("cpf_pagador", String(40))
    approved_at: Mapped[datetime | None] = mapped_column(
        "data_aprovacao", DateTime(timezone=True)
    )
    raw_payload: Mapped[dict | None] = mapped_column("webhook_data", JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    subscription = relationship("Subscription", back_populates="payments")
