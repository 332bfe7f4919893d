"""create subscription, payment and webhook tables

Revision ID: 8c1e4a7b2d90
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision = "8c1e4a7b2d90"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "assinaturas" not in existing_tables:
        op.create_table(
            "assinaturas",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("usuario_id", UUID(as_uuid=True), nullable=False),
            sa.Column("plano", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("preco", sa.Numeric(10, 2), nullable=False),
            sa.Column("data_inicio", sa.DateTime(timezone=True), nullable=True),
            sa.Column("data_fim", sa.DateTime(timezone=True), nullable=True),
            sa.Column("data_proxima_cobranca", sa.DateTime(timezone=True), nullable=True),
            sa.Column("mercadopago_preference_id", sa.String(length=120), nullable=True),
            sa.Column("mercadopago_subscription_id", sa.String(length=120), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_assinaturas_usuario_id", "assinaturas", ["usuario_id"])

    if "pagamentos" not in existing_tables:
        op.create_table(
            "pagamentos",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column(
                "assinatura_id",
                UUID(as_uuid=True),
                sa.ForeignKey("assinaturas.id"),
                nullable=True,
            ),
            sa.Column("external_reference", sa.String(length=120), nullable=True),
            sa.Column("mercadopago_payment_id", sa.String(length=120), nullable=False),
            sa.Column("status", sa.String(length=40), nullable=False),
            sa.Column("status_detail", sa.String(length=120), nullable=True),
            sa.Column("valor", sa.Numeric(10, 2), nullable=True),
            sa.Column("metodo_pagamento", sa.String(length=60), nullable=True),
            sa.Column("tipo_pagamento", sa.String(length=60), nullable=True),
            sa.Column("parcelas", sa.Integer(), nullable=True),
            sa.Column("email_pagador", sa.String(length=255), nullable=True),
            sa.Column("nome_pagador", sa.String(length=160), nullable=True),
            sa.Column("cpf_pagador", sa.String(length=40), nullable=True),
            sa.Column("data_aprovacao", sa.DateTime(timezone=True), nullable=True),
            sa.Column("webhook_data", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_pagamentos_assinatura_id", "pagamentos", ["assinatura_id"])
        op.create_index(
            "ix_pagamentos_mercadopago_payment_id", "pagamentos", ["mercadopago_payment_id"]
        )

    if "webhooks_mercadopago" not in existing_tables:
        op.create_table(
            "webhooks_mercadopago",
            sa.Column("id", UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("tipo", sa.String(length=80), nullable=True),
            sa.Column("acao", sa.String(length=80), nullable=True),
            sa.Column("payment_id", sa.String(length=120), nullable=True),
            sa.Column("dados_completos", sa.JSON(), nullable=True),
            sa.Column("processado", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("processado_em", sa.DateTime(timezone=True), nullable=True),
            sa.Column("erro", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(
            "ix_webhooks_mercadopago_payment_id", "webhooks_mercadopago", ["payment_id"]
        )
        op.create_index(
            "ix_webhooks_mercadopago_processado", "webhooks_mercadopago", ["processado"]
        )


def downgrade() -> None:
    op.drop_index("ix_webhooks_mercadopago_processado", table_name="webhooks_mercadopago")
    op.drop_index("ix_webhooks_mercadopago_payment_id", table_name="webhooks_mercadopago")
    op.drop_table("webhooks_mercadopago")
    op.drop_index("ix_pagamentos_mercadopago_payment_id", table_name="pagamentos")
    op.drop_index("ix_pagamentos_assinatura_id", table_name="pagamentos")
    op.drop_table("pagamentos")
    op.drop_index("ix_assinaturas_usuario_id", table_name="assinaturas")
    op.drop_table("assinaturas")
