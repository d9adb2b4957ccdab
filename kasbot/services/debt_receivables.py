from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utcnow
from ..models.debt_receivable import Client, DebtDirection, DebtReceivable, DebtStatus
from ..schemas.debt_receivable import DebtReceivableCreate, DebtReceivableSummary

logger = logging.getLogger(__name__)


async def find_client(session: AsyncSession, owner_id: str, name: str) -> Optional[Client]:
    """Case-insensitive lookup of a counterparty recorded by ``owner_id``."""
    stmt = select(Client).where(
        Client.owner_id == owner_id,
        func.lower(Client.name) == name.strip().lower(),
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def find_by_idempotency_key(
    session: AsyncSession, owner_id: str, key: UUID
) -> Optional[DebtReceivable]:
    stmt = select(DebtReceivable).where(
        DebtReceivable.owner_id == owner_id,
        DebtReceivable.idempotency_key == key,
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def create_debt_receivable(
    session: AsyncSession, payload: DebtReceivableCreate
) -> DebtReceivable:
    """Persist a record, registering the counterparty on first use.

    A known counterparty keeps its stored phone unless a different number is supplied.
    The record itself always stores the phone given in ``payload``. A payload whose
    ``idempotency_key`` was already stored returns the existing record unchanged.
    """
    key = payload.idempotency_key
    if key is not None:
        existing = await find_by_idempotency_key(session, payload.owner_id, key)
        if existing is not None:
            logger.info("Replayed create for owner %s (key %s)", payload.owner_id, key)
            return existing

    client = await find_client(session, payload.owner_id, payload.counterparty_name)
    if client is None:
        client = Client(
            owner_id=payload.owner_id,
            name=payload.counterparty_name,
            phone=payload.counterparty_phone,
        )
        session.add(client)
        await session.flush()
        logger.info("Registered client %s for owner %s", client.name, payload.owner_id)
    elif payload.counterparty_phone and client.phone != payload.counterparty_phone:
        client.phone = payload.counterparty_phone
        logger.info("Updated phone for client %s (owner %s)", client.name, payload.owner_id)

    record = DebtReceivable(
        owner_id=payload.owner_id,
        client=client,
        direction=payload.direction,
        amount=payload.amount,
        description=payload.item_description,
        counterparty_phone=payload.counterparty_phone,
        idempotency_key=key,
        status=DebtStatus.ACTIVE,
        created_at=payload.created_at,
    )
    session.add(record)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        if key is None:
            raise
        # A concurrent request with the same key committed first.
        existing = await find_by_idempotency_key(session, payload.owner_id, key)
        if existing is None:
            raise
        logger.info("Lost idempotent create race for owner %s (key %s)", payload.owner_id, key)
        return existing
    await session.refresh(record)
    return record


async def list_debt_receivables(
    session: AsyncSession,
    *,
    owner_id: str,
    direction: Optional[DebtDirection] = None,
    status: Optional[DebtStatus] = DebtStatus.ACTIVE,
    limit: int = 50,
) -> list[DebtReceivable]:
    stmt = (
        select(DebtReceivable)
        .where(DebtReceivable.owner_id == owner_id)
        .order_by(DebtReceivable.created_at.desc())
        .limit(limit)
    )
    if direction is not None:
        stmt = stmt.where(DebtReceivable.direction == direction)
    if status is not None:
        stmt = stmt.where(DebtReceivable.status == status)
    result = await session.execute(stmt)
    return result.scalars().unique().all()


async def get_debt_receivable_summary(session: AsyncSession, owner_id: str) -> DebtReceivableSummary:
    """Totals and counts of active records, split by direction."""
    stmt = (
        select(
            DebtReceivable.direction,
            func.coalesce(func.sum(DebtReceivable.amount), 0),
            func.count(DebtReceivable.id),
        )
        .where(
            DebtReceivable.owner_id == owner_id,
            DebtReceivable.status == DebtStatus.ACTIVE,
        )
        .group_by(DebtReceivable.direction)
    )
    result = await session.execute(stmt)
    summary = DebtReceivableSummary(owner_id=owner_id)
    for direction, total, count in result.all():
        if direction == DebtDirection.RECEIVABLE:
            summary.total_receivable = int(total)
            summary.count_receivable = int(count)
        else:
            summary.total_debt = int(total)
            summary.count_debt = int(count)
    return summary


async def get_debt_receivable(session: AsyncSession, record_id: UUID) -> Optional[DebtReceivable]:
    return await session.get(DebtReceivable, record_id)


async def mark_debt_receivable_paid(session: AsyncSession, record: DebtReceivable) -> DebtReceivable:
    if record.status == DebtStatus.PAID:
        raise ValueError("Record is already marked as paid.")
    record.status = DebtStatus.PAID
    record.paid_at = utcnow()
    await session.commit()
    await session.refresh(record)
    return record
