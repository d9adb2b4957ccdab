from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_db
from ..schemas.debt_receivable import ClientRead
from ..services import find_client

router = APIRouter()

SessionDep = Annotated[AsyncSession, Depends(get_db)]


@router.get("/lookup", response_model=ClientRead)
async def lookup_client_endpoint(
    session: SessionDep,
    owner_id: str = Query(..., min_length=1),
    name: str = Query(..., min_length=1),
) -> ClientRead:
    client = await find_client(session, owner_id, name)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return ClientRead.model_validate(client)
