import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from monjapro.db import Base


class WebhookEvent(Base):
    """Audit row for one inbound Mercado Pago notification. Never deleted."""

    __tablename__ = "webhooks_mercadopago"
    __table_args__ = (
        Index("ix_webhooks_mercadopago_payment_id", "payment_id"),
        Index("ix_webhooks_mercadopago_processado", "processado"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_type: Mapped[str | None] = mapped_column("tipo", String(80))
    action: Mapped[str | None] = mapped_column("acao", String(80))
    payment_id: Mapped[str | None] = mapped_column(String(120))
    payload: Mapped[dict | None] = mapped_column("dados_completos", JSON)
    processed: Mapped[bool] = mapped_column("processado", Boolean, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(
        "processado_em", DateTime(timezone=True)
    )
    error: Mapped[str | None] = mapped_column("erro", Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
