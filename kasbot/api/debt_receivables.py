from collections.abc import Mapping
from typing import Annotated, Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..models.debt_receivable import DebtDirection, DebtStatus
from ..schemas.debt_receivable import (
    DebtReceivableCreate,
    DebtReceivableRead,
    DebtReceivableSummary,
)
from ..services import (
    create_debt_receivable,
    get_debt_receivable,
    get_debt_receivable_summary,
    list_debt_receivables,
    mark_debt_receivable_paid,
)

router = APIRouter()

SessionDep = Annotated[AsyncSession, Depends(get_db)]


def _to_read(record: Any) -> DebtReceivableRead:
    """Normalise service responses (dicts or ORM objects) into DebtReceivableRead."""
    if isinstance(record, Mapping):
        return DebtReceivableRead.model_validate(dict(record))
    return DebtReceivableRead.model_validate(record)


def _get_owner_id(record: Any) -> Any:
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get("owner_id")
    return getattr(record, "owner_id", None)


@router.post("", response_model=DebtReceivableRead, status_code=status.HTTP_201_CREATED)
async def create_debt_receivable_endpoint(
    payload: DebtReceivableCreate,
    session: SessionDep,
) -> DebtReceivableRead:
    record = await create_debt_receivable(session, payload)
    return _to_read(record)


@router.get("", response_model=list[DebtReceivableRead])
async def list_debt_receivables_endpoint(
    session: SessionDep,
    owner_id: str = Query(..., min_length=1),
    direction: Optional[DebtDirection] = Query(default=None),
    status_filter: Optional[DebtStatus] = Query(default=DebtStatus.ACTIVE, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[DebtReceivableRead]:
    records = await list_debt_receivables(
        session,
        owner_id=owner_id,
        direction=direction,
        status=status_filter,
        limit=limit,
    )
    return [_to_read(record) for record in records]


@router.get("/summary", response_model=DebtReceivableSummary)
async def debt_receivable_summary_endpoint(
    session: SessionDep,
    owner_id: str = Query(..., min_length=1),
) -> DebtReceivableSummary:
    return await get_debt_receivable_summary(session, owner_id)


@router.post("/{record_id}/paid", response_model=DebtReceivableRead)
async def mark_paid_endpoint(
    record_id: UUID,
    session: SessionDep,
    owner_id: str = Query(..., min_length=1),
) -> DebtReceivableRead:
    record = await get_debt_receivable(session, record_id)
    if not record or _get_owner_id(record) != owner_id:
        raise HTTPException(status_code=404, detail="Record not found")
    try:
        record = await mark_debt_receivable_paid(session, record)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _to_read(record)
