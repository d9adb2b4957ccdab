from .debt_receivable import (
    ClientRead,
    DebtReceivableCreate,
    DebtReceivableRead,
    DebtReceivableSummary,
    coerce_direction,
)

__all__ = [
    "ClientRead",
    "DebtReceivableCreate",
    "DebtReceivableRead",
    "DebtReceivableSummary",
    "coerce_direction",
]
