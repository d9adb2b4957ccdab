from .base import Base
from .debt_receivable import Client, DebtDirection, DebtReceivable, DebtStatus

__all__ = [
    "Base",
    "Client",
    "DebtDirection",
    "DebtReceivable",
    "DebtStatus",
]
