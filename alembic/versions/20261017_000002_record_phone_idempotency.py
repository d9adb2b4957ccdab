"""Per-record counterparty phone and client idempotency key.

Revision ID: 20261017_000002
Revises: 20261017_000001
Create Date: 2026-10-17 00:00:02.000000
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261017_000002"
down_revision: str | None = "20261017_000001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "debt_receivables",
        sa.Column("counterparty_phone", sa.String(length=20), nullable=True),
    )
    op.add_column(
        "debt_receivables",
        sa.Column("idempotency_key", postgresql.UUID(as_uuid=True), nullable=True),
    )
    # Existing rows take the number their client holds today.
    op.execute(
        "UPDATE debt_receivables AS r SET counterparty_phone = c.phone "
        "FROM clients AS c WHERE r.client_id = c.id"
    )
    op.create_unique_constraint(
        "uq_debt_receivables_owner_idempotency",
        "debt_receivables",
        ["owner_id", "idempotency_key"],
    )


def downgrade() -> None:
    op.drop_constraint("uq_debt_receivables_owner_idempotency", "debt_receivables", type_="unique")
    op.drop_column("debt_receivables", "idempotency_key")
    op.drop_column("debt_receivables", "counterparty_phone")
