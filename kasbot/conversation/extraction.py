"""Turn a free-text chat message into debt/receivable fields.

Two strategies share one contract: the LLM-backed :class:`ParserExtractor` and the
deterministic :class:`RuleBasedExtractor`. :class:`TransactionFieldExtractor` tries the
parser first and falls back to the rules when the parser is missing, slow, unsure or
incomplete.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import ClassVar, Optional, Protocol, Union

from ..models.debt_receivable import DebtDirection

logger = logging.getLogger(__name__)

RULES_CONFIDENCE = 0.7


class ExtractionFailureReason(str, Enum):
    MISSING_DIRECTION = "missing-direction"
    MISSING_COUNTERPARTY = "missing-counterparty"
    MISSING_AMOUNT = "missing-amount"
    LOW_CONFIDENCE = "low-confidence"
    PARSER_UNAVAILABLE = "parser-unavailable"


class ExtractionSource(str, Enum):
    PARSER = "parser"
    RULES = "rules"


@dataclass(frozen=True)
class TransactionFields:
    direction: Optional[DebtDirection] = None
    counterparty_name: Optional[str] = None
    item_description: str = ""
    amount: Optional[int] = None

    def missing_reason(self) -> Optional[ExtractionFailureReason]:
        if self.direction is None:
            return ExtractionFailureReason.MISSING_DIRECTION
        if not self.counterparty_name:
            return ExtractionFailureReason.MISSING_COUNTERPARTY
        if self.amount is None or self.amount <= 0:
            return ExtractionFailureReason.MISSING_AMOUNT
        return None

    @property
    def is_complete(self) -> bool:
        return self.missing_reason() is None


@dataclass(frozen=True)
class ExtractionSuccess:
    fields: TransactionFields
    confidence: float
    source: ExtractionSource

    ok: ClassVar[bool] = True


@dataclass(frozen=True)
class ExtractionFailure:
    reason: ExtractionFailureReason
    confidence: float = 0.0
    parser_unavailable: bool = False

    ok: ClassVar[bool] = False


ExtractionResult = Union[ExtractionSuccess, ExtractionFailure]


@dataclass(frozen=True)
class ParsedTransaction:
    """Raw answer of a natural-language parser; any field may be missing."""

    confidence: float
    direction: Optional[DebtDirection] = None
    counterparty_name: Optional[str] = None
    item_description: Optional[str] = None
    amount: Optional[int] = None


class TransactionParser(Protocol):
    async def parse(self, text: str) -> ParsedTransaction: ...


class ExtractionStrategy(Protocol):
    async def extract(self, text: str) -> ExtractionResult: ...


def tidy_name(name: str) -> str:
    words = name.split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def tidy_text(text: str) -> str:
    return " ".join(text.split()).strip(" ,.;:-")


class ParserExtractor:
    """Delegates to an external parser, bounded by a timeout and a confidence floor."""

    def __init__(
        self,
        parser: TransactionParser,
        *,
        confidence_threshold: float = 0.6,
        timeout: float = 15.0,
    ) -> None:
        self.parser = parser
        self.confidence_threshold = confidence_threshold
        self.timeout = timeout

    async def extract(self, text: str) -> ExtractionResult:
        try:
            parsed = await asyncio.wait_for(self.parser.parse(text), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Transaction parser timed out after %.1fs", self.timeout)
            return ExtractionFailure(ExtractionFailureReason.PARSER_UNAVAILABLE, parser_unavailable=True)
        except Exception:
            logger.exception("Transaction parser failed")
            return ExtractionFailure(ExtractionFailureReason.PARSER_UNAVAILABLE, parser_unavailable=True)

        fields = TransactionFields(
            direction=parsed.direction,
            counterparty_name=tidy_name(parsed.counterparty_name or "") or None,
            item_description=tidy_text(parsed.item_description or ""),
            amount=parsed.amount,
        )
        if parsed.confidence < self.confidence_threshold:
            logger.info(
                "Parser confidence %.2f below threshold %.2f",
                parsed.confidence,
                self.confidence_threshold,
            )
            return ExtractionFailure(ExtractionFailureReason.LOW_CONFIDENCE, confidence=parsed.confidence)
        reason = fields.missing_reason()
        if reason is not None:
            return ExtractionFailure(reason, confidence=parsed.confidence)
        return ExtractionSuccess(fields=fields, confidence=parsed.confidence, source=ExtractionSource.PARSER)


# Ordered: the first keyword found in the message decides the direction.
DIRECTION_RULES: tuple[tuple[str, DebtDirection], ...] = (
    ("piutang", DebtDirection.RECEIVABLE),
    ("hutang", DebtDirection.DEBT),
    ("utang", DebtDirection.DEBT),
    ("ngutang", DebtDirection.DEBT),
)

UNIT_MULTIPLIERS: dict[str, int] = {
    "rb": 1_000,
    "ribu": 1_000,
    "k": 1_000,
    "jt": 1_000_000,
    "juta": 1_000_000,
}

CURRENCY_PREFIXES = frozenset({"rp", "rp."})
NAME_CONNECTORS = frozenset({"ke", "sama", "ama", "dari", "kepada", "dengan"})
HONORIFICS = frozenset({"pak", "bu", "bapak", "ibu", "mas", "mbak", "mba", "bang", "kak", "om", "tante"})
ITEM_BOUNDARY_WORDS = frozenset(
    {"beli", "buat", "untuk", "utk", "bayar", "ambil", "pesan", "pinjam", "belanja", "sewa", "jasa"}
)
MAX_NAME_WORDS = 2

_AMOUNT_TOKEN_RE = re.compile(
    r"^(?:rp\.?)?(?P<number>\d+(?:[.,]\d+)*)(?P<unit>rb|ribu|k|jt|juta)?$", re.IGNORECASE
)
_THOUSANDS_RE = re.compile(r"^\d{1,3}(?:[.,]\d{3})+$")
_PUNCTUATION = ",.;:!?()\"'"


@dataclass(frozen=True)
class _AmountSpan:
    start: int
    end: int
    value: int


def parse_amount(number: str, unit: Optional[str] = None) -> Optional[int]:
    """Convert ``number`` plus an optional unit suffix into whole Rupiah."""
    multiplier = UNIT_MULTIPLIERS.get(unit.lower(), 1) if unit else 1
    if _THOUSANDS_RE.match(number) and (multiplier == 1 or number.count(".") + number.count(",") > 1):
        cleaned = re.sub(r"[.,]", "", number)
    elif multiplier == 1 and not number.isdigit():
        return None
    else:
        cleaned = number.replace(",", ".")
    try:
        value = (Decimal(cleaned) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    return int(value) if value > 0 else None


def _normalise_token(token: str) -> str:
    return token.strip(_PUNCTUATION).lower()


# Suffixed forms such as "hutangnya" still count.
def _is_direction_word(token: str) -> bool:
    return any(token.startswith(keyword) for keyword, _ in DIRECTION_RULES)


class RuleBasedExtractor:
    """Deterministic fallback driven by ordered keyword and amount rules."""

    async def extract(self, text: str) -> ExtractionResult:
        return self.extract_sync(text)

    def extract_sync(self, text: str) -> ExtractionResult:
        tokens = (text or "").split()
        normalised = [_normalise_token(token) for token in tokens]

        keyword_index, direction = self._find_direction(normalised)
        if direction is None:
            return ExtractionFailure(ExtractionFailureReason.MISSING_DIRECTION)

        amount_span = self._find_amount(normalised)
        amount_positions = set(range(amount_span.start, amount_span.end)) if amount_span else set()

        name_start, name_end = self._find_name(normalised, keyword_index, amount_positions)
        if name_start == name_end:
            return ExtractionFailure(ExtractionFailureReason.MISSING_COUNTERPARTY)
        if amount_span is None:
            return ExtractionFailure(ExtractionFailureReason.MISSING_AMOUNT)

        name = tidy_name(" ".join(token.strip(_PUNCTUATION) for token in tokens[name_start:name_end]))
        description = tidy_text(
            " ".join(
                token
                for index, token in enumerate(tokens[name_end:], start=name_end)
                if index not in amount_positions
            )
        )
        fields = TransactionFields(
            direction=direction,
            counterparty_name=name,
            item_description=description,
            amount=amount_span.value,
        )
        return ExtractionSuccess(fields=fields, confidence=RULES_CONFIDENCE, source=ExtractionSource.RULES)

    @staticmethod
    def _find_direction(tokens: list[str]) -> tuple[int, Optional[DebtDirection]]:
        for keyword, direction in DIRECTION_RULES:
            for index, token in enumerate(tokens):
                if token.startswith(keyword):
                    return index, direction
        return -1, None

    @staticmethod
    def _find_amount(tokens: list[str]) -> Optional[_AmountSpan]:
        """Return the last amount-like span; the total is usually stated last."""
        found: Optional[_AmountSpan] = None
        for index, token in enumerate(tokens):
            match = _AMOUNT_TOKEN_RE.match(token)
            if not match:
                continue
            unit = match.group("unit")
            end = index + 1
            if unit is None and end < len(tokens) and tokens[end] in UNIT_MULTIPLIERS:
                unit = tokens[end]
                end += 1
            value = parse_amount(match.group("number"), unit)
            if value is None:
                continue
            start = index - 1 if index > 0 and tokens[index - 1] in CURRENCY_PREFIXES else index
            found = _AmountSpan(start=start, end=end, value=value)
        return found

    @staticmethod
    def _find_name(tokens: list[str], keyword_index: int, amount_positions: set[int]) -> tuple[int, int]:
        start = keyword_index + 1
        while start < len(tokens) and tokens[start] in NAME_CONNECTORS:
            start += 1
        end = start
        name_words = 0
        while end < len(tokens) and name_words < MAX_NAME_WORDS:
            token = tokens[end]
            if (
                end in amount_positions
                or not token
                or token in ITEM_BOUNDARY_WORDS
                or token in CURRENCY_PREFIXES
                or any(char.isdigit() for char in token)
                or _is_direction_word(token)
            ):
                break
            if token not in HONORIFICS:
                name_words += 1
            end += 1
        return start, end


class TransactionFieldExtractor:
    """Parser first, rules second; callers never need to know which one answered."""

    def __init__(
        self,
        primary: Optional[ExtractionStrategy] = None,
        fallback: Optional[ExtractionStrategy] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback if fallback is not None else RuleBasedExtractor()

    @classmethod
    def with_parser(
        cls,
        parser: Optional[TransactionParser],
        *,
        confidence_threshold: float,
        timeout: float,
    ) -> "TransactionFieldExtractor":
        primary = (
            ParserExtractor(parser, confidence_threshold=confidence_threshold, timeout=timeout)
            if parser is not None
            else None
        )
        return cls(primary=primary)

    async def extract(self, text: str) -> ExtractionResult:
        parser_unavailable = self.primary is None
        if self.primary is not None:
            result = await self.primary.extract(text)
            if result.ok:
                return result
            parser_unavailable = result.reason is ExtractionFailureReason.PARSER_UNAVAILABLE
            logger.info("Falling back to rule-based extraction (%s)", result.reason.value)

        result = await self.fallback.extract(text)
        if result.ok or not parser_unavailable:
            return result
        return replace(result, parser_unavailable=True)
