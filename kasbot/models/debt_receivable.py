from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, Enum as SqlEnum, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class DebtDirection(str, Enum):
    """Who owes whom: ``DEBT`` means the user owes, ``RECEIVABLE`` means they are owed."""

    DEBT = "debt"
    RECEIVABLE = "receivable"


class DebtStatus(str, Enum):
    ACTIVE = "active"
    PAID = "paid"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Client(Base):
    """Counterparty of a debt or receivable, scoped to the chat that recorded it."""

    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_clients_owner_name"),)

    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    records: Mapped[list["DebtReceivable"]] = relationship(
        back_populates="client", cascade="all, delete-orphan"
    )


class DebtReceivable(Base):
    """A single debt (hutang) or receivable (piutang) captured from chat."""

    __tablename__ = "debt_receivables"
    __table_args__ = (
        UniqueConstraint("owner_id", "idempotency_key", name="uq_debt_receivables_owner_idempotency"),
    )

    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[DebtDirection] = mapped_column(
        SqlEnum(DebtDirection, name="debtdirection", values_callable=_enum_values), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False, doc="Whole Rupiah.")
    description: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    status: Mapped[DebtStatus] = mapped_column(
        SqlEnum(DebtStatus, name="debtstatus", values_callable=_enum_values),
        default=DebtStatus.ACTIVE,
        nullable=False,
    )
    # Number given for this record; the client row only keeps the latest one.
    counterparty_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    idempotency_key: Mapped[Optional[UUID]] = mapped_column(PG_UUID(as_uuid=True), nullable=True)

    client: Mapped[Client] = relationship(back_populates="records", lazy="joined")

    @property
    def counterparty_name(self) -> str:
        return self.client.name
