from fastapi import APIRouter

from . import clients, debt_receivables, telegram

api_router = APIRouter()
api_router.include_router(debt_receivables.router, prefix="/debt-receivables", tags=["debt-receivables"])
api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(telegram.router, prefix="/telegram", tags=["telegram"])
