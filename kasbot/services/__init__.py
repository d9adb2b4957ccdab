from .debt_receivables import (
    create_debt_receivable,
    find_by_idempotency_key,
    find_client,
    get_debt_receivable,
    get_debt_receivable_summary,
    list_debt_receivables,
    mark_debt_receivable_paid,
)
from .llm import get_transaction_parser
from .tts import create_speech_service

__all__ = [
    "create_debt_receivable",
    "find_by_idempotency_key",
    "find_client",
    "get_debt_receivable",
    "get_debt_receivable_summary",
    "list_debt_receivables",
    "mark_debt_receivable_paid",
    "get_transaction_parser",
    "create_speech_service",
]
