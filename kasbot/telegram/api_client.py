from __future__ import annotations

from typing import Any
from uuid import UUID

import httpx

from ..models.debt_receivable import DebtDirection
from ..schemas.debt_receivable import (
    ClientRead,
    DebtReceivableCreate,
    DebtReceivableRead,
    DebtReceivableSummary,
)


class LedgerApiClient:
    """HTTP client that forwards captured records to the FastAPI backend."""

    def __init__(self, api_base_url: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.client = httpx.AsyncClient(
            base_url=api_base_url,
            timeout=httpx.Timeout(timeout=30.0, connect=10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def save(self, payload: DebtReceivableCreate) -> DebtReceivableRead:
        response = await self.client.post("/api/debt-receivables", json=payload.model_dump(mode="json"))
        response.raise_for_status()
        return DebtReceivableRead.model_validate(response.json())

    async def lookup_counterparty(self, owner_id: str, name: str) -> ClientRead | None:
        response = await self.client.get(
            "/api/clients/lookup",
            params={"owner_id": owner_id, "name": name},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return ClientRead.model_validate(response.json())

    async def list_debt_receivables(
        self,
        *,
        owner_id: str,
        direction: DebtDirection | None = None,
        limit: int = 50,
    ) -> list[DebtReceivableRead]:
        params: dict[str, Any] = {"owner_id": owner_id, "limit": min(limit, 200)}
        if direction is not None:
            params["direction"] = direction.value
        response = await self.client.get("/api/debt-receivables", params=params)
        response.raise_for_status()
        return [DebtReceivableRead.model_validate(item) for item in response.json()]

    async def summary(self, *, owner_id: str) -> DebtReceivableSummary:
        response = await self.client.get("/api/debt-receivables/summary", params={"owner_id": owner_id})
        response.raise_for_status()
        return DebtReceivableSummary.model_validate(response.json())

    async def mark_paid(self, record_id: UUID | str, *, owner_id: str) -> DebtReceivableRead:
        response = await self.client.post(
            f"/api/debt-receivables/{record_id}/paid",
            params={"owner_id": owner_id},
        )
        response.raise_for_status()
        return DebtReceivableRead.model_validate(response.json())
