from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..models.debt_receivable import DebtDirection, DebtStatus

MAX_NAME_LENGTH = 128
MAX_DESCRIPTION_LENGTH = 512

DIRECTION_ALIASES: dict[str, DebtDirection] = {
    "hutang": DebtDirection.DEBT,
    "utang": DebtDirection.DEBT,
    "piutang": DebtDirection.RECEIVABLE,
}


def coerce_direction(value: DebtDirection | str) -> DebtDirection:
    """Accept enum members, their values, or the Indonesian labels (case-insensitive)."""
    if isinstance(value, DebtDirection):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in DIRECTION_ALIASES:
            return DIRECTION_ALIASES[lowered]
        try:
            return DebtDirection(lowered)
        except ValueError as exc:
            raise ValueError(f"Unsupported direction '{value}'") from exc
    raise TypeError("Direction must be a string or DebtDirection instance")


class DebtReceivableCreate(BaseModel):
    """Complete record ready to be persisted; partially filled data never gets this far."""

    owner_id: str = Field(min_length=1, max_length=64)
    direction: DebtDirection
    counterparty_name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    item_description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)
    amount: int = Field(gt=0, description="Whole Rupiah.")
    counterparty_phone: Optional[str] = Field(
        default=None,
        max_length=20,
        description="Normalised +62 number, or null when the user declined to give one.",
    )
    idempotency_key: Optional[UUID] = Field(
        default=None,
        description="Client-generated key; resending the same key returns the record already stored.",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("direction", mode="before")
    @classmethod
    def _normalise_direction(cls, value: DebtDirection | str) -> DebtDirection:
        return coerce_direction(value)

    @field_validator("counterparty_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = " ".join(value.split())
        if not stripped:
            raise ValueError("Counterparty name must not be blank")
        return stripped


class DebtReceivableRead(BaseModel):
    """API response shape for debts and receivables."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    client_id: UUID
    direction: DebtDirection
    amount: int
    description: str
    status: DebtStatus
    paid_at: Optional[datetime] = None
    counterparty_name: str
    counterparty_phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DebtReceivableSummary(BaseModel):
    owner_id: str
    total_receivable: int = 0
    total_debt: int = 0
    count_receivable: int = 0
    count_debt: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def net_balance(self) -> int:
        return self.total_receivable - self.total_debt


class ClientRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    name: str
    phone: Optional[str]
    created_at: datetime
    updated_at: datetime
