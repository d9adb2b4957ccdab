from __future__ import annotations

import json
import logging
import textwrap
from decimal import Decimal, InvalidOperation
from typing import Any

import anyio
import google.generativeai as genai

from ..config import get_settings
from ..conversation.extraction import ParsedTransaction
from ..conversation.prompts import PromptDirectives
from ..schemas.debt_receivable import coerce_direction

logger = logging.getLogger(__name__)

TRANSACTION_PROMPT = textwrap.dedent(
    """
    You read short Indonesian chat messages that record a debt or a receivable.
    "piutang" means someone owes the user (receivable). "hutang"/"utang" means the user owes someone (debt).
    Return only JSON with keys:
      direction: "piutang", "hutang" or null,
      counterparty_name: the other person's or shop's name, or null,
      item_description: what the money was for, or "" when not stated,
      amount: the total in whole Rupiah as an integer (200K = 200000, 1,5jt = 1500000), or null,
      confidence: a number between 0 and 1 describing how sure you are.
    When several numbers appear, the amount is the total, usually stated last.

    Message:
    """
).strip()

REPLY_PROMPT = textwrap.dedent(
    """
    Rewrite the assistant reply below for the user. Keep every fact (names, amounts, phone
    numbers, record ids) exactly as given and do not add new facts.
    """
).strip()


class TransactionParseError(RuntimeError):
    """Raised when the LLM cannot return valid transaction data."""


def _coerce_amount(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = int(Decimal(str(value).replace(",", "")))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount > 0 else None


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


class GeminiTransactionParser:
    """Thin wrapper around Google's Gemini API for reading debt/receivable messages."""

    def __init__(self, model_name: str | None = None) -> None:
        settings = get_settings()
        if not settings.gemini_api_key:
            raise RuntimeError("GEMINI_API_KEY is not configured.")
        genai.configure(api_key=settings.gemini_api_key)
        self.model = genai.GenerativeModel(model_name or settings.gemini_model)

    def _call_model(self, prompt: str) -> str:
        response = self.model.generate_content(prompt)
        if not response or not response.text:
            raise TransactionParseError("Gemini did not return any text.")
        return response.text

    @staticmethod
    def _clean_model_output(raw_text: str) -> str:
        """Remove Markdown code fences that Gemini may wrap around JSON."""
        text = raw_text.strip()
        if text.startswith("```"):
            first_newline = text.find("\n")
            text = text[first_newline + 1 :] if first_newline != -1 else ""
        if text.endswith("```"):
            text = text[: text.rfind("```")]
        return text.strip()

    @staticmethod
    def _to_parsed_transaction(payload: dict[str, Any]) -> ParsedTransaction:
        direction = None
        raw_direction = payload.get("direction")
        if raw_direction:
            try:
                direction = coerce_direction(str(raw_direction))
            except ValueError:
                logger.info("Ignoring unknown direction from Gemini: %s", raw_direction)
        return ParsedTransaction(
            confidence=_coerce_confidence(payload.get("confidence")),
            direction=direction,
            counterparty_name=_coerce_text(payload.get("counterparty_name")),
            item_description=_coerce_text(payload.get("item_description")) or "",
            amount=_coerce_amount(payload.get("amount")),
        )

    async def parse(self, text: str) -> ParsedTransaction:
        """Send the message to Gemini and map the JSON answer onto transaction fields."""
        prompt = f"{TRANSACTION_PROMPT}\n{text}"
        raw_text = await anyio.to_thread.run_sync(self._call_model, prompt)
        cleaned_text = self._clean_model_output(raw_text)
        try:
            payload = json.loads(cleaned_text)
        except json.JSONDecodeError as exc:
            raise TransactionParseError(f"Could not parse Gemini output: {raw_text}") from exc
        if not isinstance(payload, dict):
            raise TransactionParseError(f"Unexpected Gemini output: {raw_text}")
        return self._to_parsed_transaction(payload)

    async def write_reply(self, base_text: str, directives: PromptDirectives) -> str:
        """Rephrase a template reply in the register the directives ask for."""
        prompt = f"{directives.as_instructions()}\n\n{REPLY_PROMPT}\n\n{base_text}"
        raw_text = await anyio.to_thread.run_sync(self._call_model, prompt)
        return self._clean_model_output(raw_text)


_parser: GeminiTransactionParser | None = None


def get_transaction_parser() -> GeminiTransactionParser | None:
    """Shared parser instance, or ``None`` when Gemini is not configured."""
    global _parser
    if _parser is None:
        if not get_settings().gemini_api_key:
            return None
        _parser = GeminiTransactionParser()
    return _parser
