"""Clients and debt/receivable ledger.

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


debt_direction_enum = postgresql.ENUM("debt", "receivable", name="debtdirection", create_type=False)
debt_status_enum = postgresql.ENUM("active", "paid", name="debtstatus", create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("timezone('utc', now())"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("timezone('utc', now())"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    debt_direction_enum.create(bind, checkfirst=True)
    debt_status_enum.create(bind, checkfirst=True)

    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.UniqueConstraint("owner_id", "name", name="uq_clients_owner_name"),
    )
    op.create_index("ix_clients_owner_id", "clients", ["owner_id"])

    op.create_table(
        "debt_receivables",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column(
            "client_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("clients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("direction", debt_direction_enum, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=False, server_default=sa.text("''")),
        sa.Column("status", debt_status_enum, nullable=False, server_default=sa.text("'active'")),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_debt_receivables_amount_positive"),
    )
    op.create_index("ix_debt_receivables_owner_id", "debt_receivables", ["owner_id"])
    op.create_index(
        "ix_debt_receivables_owner_status",
        "debt_receivables",
        ["owner_id", "status"],
    )


def downgrade() -> None:
    op.drop_index("ix_debt_receivables_owner_status", table_name="debt_receivables")
    op.drop_index("ix_debt_receivables_owner_id", table_name="debt_receivables")
    op.drop_table("debt_receivables")
    op.drop_index("ix_clients_owner_id", table_name="clients")
    op.drop_table("clients")

    bind = op.get_bind()
    debt_status_enum.drop(bind, checkfirst=True)
    debt_direction_enum.drop(bind, checkfirst=True)
