"""Multi-turn capture of debt/receivable records from chat messages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional, Protocol
from uuid import UUID, uuid4

from pydantic import ValidationError

from ..config import Settings
from ..schemas.debt_receivable import ClientRead, DebtReceivableCreate, DebtReceivableRead
from . import messages
from .extraction import TransactionFieldExtractor, TransactionFields, TransactionParser
from .phone import PhoneValid, validate_phone
from .prompts import DeliveryRegister, PromptDirectives, ResponsePromptComposer
from .sessions import Session, SessionRegistry, SessionState
from .voice import NO_VOICE, VoiceDecision, VoiceIntentDetector

logger = logging.getLogger(__name__)

CANCEL_KEYWORDS = frozenset({"batal", "cancel", "stop", "/batal"})
REUSE_PHONE_KEYWORDS = frozenset({"pakai", "pake", "pakai itu", "pake itu", "sama"})


@dataclass(frozen=True)
class OutboundMessage:
    chat_id: str
    text: str
    deliver_as: DeliveryRegister
    directives: PromptDirectives
    voice: VoiceDecision = NO_VOICE


class TransactionStore(Protocol):
    async def save(self, payload: DebtReceivableCreate) -> DebtReceivableRead: ...

    async def lookup_counterparty(self, owner_id: str, name: str) -> Optional[ClientRead]: ...


def _normalise(text: str) -> str:
    return " ".join(text.casefold().split())


def _is_cancel(text: str) -> bool:
    return _normalise(text) in CANCEL_KEYWORDS


def _is_reuse(text: str) -> bool:
    return _normalise(text) in REUSE_PHONE_KEYWORDS


def _error_field(exc: ValidationError) -> Optional[str]:
    for error in exc.errors():
        if error.get("loc"):
            return str(error["loc"][0])
    return None


def _build_payload(
    owner_id: str,
    fields: TransactionFields,
    phone: Optional[str],
    idempotency_key: Optional[UUID] = None,
) -> DebtReceivableCreate:
    return DebtReceivableCreate(
        owner_id=owner_id,
        direction=fields.direction,
        counterparty_name=fields.counterparty_name,
        item_description=fields.item_description,
        amount=fields.amount,
        counterparty_phone=phone,
        idempotency_key=idempotency_key,
    )


class SessionStateMachine:
    def __init__(
        self,
        *,
        extractor: TransactionFieldExtractor,
        store: TransactionStore,
        registry: Optional[SessionRegistry] = None,
        composer: Optional[ResponsePromptComposer] = None,
        voice_detector: Optional[VoiceIntentDetector] = None,
        voice_enabled: bool = True,
        store_timeout: float = 10.0,
    ) -> None:
        self.extractor = extractor
        self.store = store
        # SessionRegistry defines __len__, so an empty one is falsy.
        self.registry = registry if registry is not None else SessionRegistry()
        self.composer = composer if composer is not None else ResponsePromptComposer()
        self.voice_detector = voice_detector if voice_detector is not None else VoiceIntentDetector()
        self.voice_enabled = voice_enabled
        self.store_timeout = store_timeout

    async def handle(
        self,
        chat_id: str | int,
        text: str,
        *,
        display_name: Optional[str] = None,
    ) -> OutboundMessage:
        """Process one inbound message and return the reply the transport should deliver."""
        chat_key = str(chat_id)
        raw = text or ""
        decision = self.voice_detector.detect(raw)
        body = VoiceIntentDetector.strip_trigger(raw, decision)
        directives = self.composer.compose(
            display_name=display_name,
            is_voice_requested=decision.is_voice_requested and self.voice_enabled,
        )

        async with self.registry.acquire(chat_key) as session:
            if session.state is SessionState.AWAITING_PHONE:
                if raw.strip() and not body.strip():
                    # Only a voice request, no answer to the phone question yet.
                    reply = self._phone_prompt(session)
                else:
                    reply = await self._handle_phone(session, body)
            else:
                reply = await self._handle_idle(session, body)

        return OutboundMessage(
            chat_id=chat_key,
            text=reply,
            deliver_as=directives.delivery_register,
            directives=directives,
            voice=decision,
        )

    async def _handle_idle(self, session: Session, text: str) -> str:
        if _is_cancel(text):
            return messages.nothing_to_cancel()

        result = await self.extractor.extract(text)
        if not result.ok:
            logger.info("Extraction failed for chat %s: %s", session.chat_id, result.reason.value)
            return messages.extraction_retry(result.reason, parser_unavailable=result.parser_unavailable)

        try:
            _build_payload(session.chat_id, result.fields, None)
        except ValidationError as exc:
            field = _error_field(exc)
            logger.info("Chat %s sent a record that cannot be stored (%s)", session.chat_id, field)
            return messages.invalid_record(field)

        session.pending_transaction = result.fields
        session.idempotency_key = uuid4()
        session.state = SessionState.AWAITING_PHONE
        logger.info(
            "Chat %s captured %s via %s (confidence %.2f)",
            session.chat_id,
            result.fields.direction.value,
            result.source.value,
            result.confidence,
        )
        known = await self._lookup_counterparty(session.chat_id, result.fields)
        session.known_phone = known.phone if known is not None and known.phone else None
        return self._phone_prompt(session)

    def _phone_prompt(self, session: Session) -> str:
        prompt = messages.phone_request(session.pending_transaction)
        if session.known_phone:
            prompt += "\n" + messages.known_phone_hint(session.known_phone)
        return prompt

    async def _handle_phone(self, session: Session, text: str) -> str:
        if _is_cancel(text):
            session.reset()
            logger.info("Chat %s cancelled a pending record", session.chat_id)
            return messages.cancelled()

        if session.known_phone and _is_reuse(text):
            phone = PhoneValid(normalized=session.known_phone)
        else:
            phone = validate_phone(text)
        if not phone.ok:
            return messages.invalid_phone(phone.reason)

        fields = session.pending_transaction
        if fields is None:
            session.reset()
            return messages.nothing_to_cancel()

        try:
            payload = _build_payload(session.chat_id, fields, phone.normalized, session.idempotency_key)
        except ValidationError as exc:
            field = _error_field(exc)
            logger.warning("Discarding invalid pending record for chat %s (%s)", session.chat_id, field)
            session.reset()
            return messages.invalid_record(field)

        try:
            record = await asyncio.wait_for(self.store.save(payload), timeout=self.store_timeout)
        except asyncio.TimeoutError:
            logger.warning("Saving record for chat %s timed out after %.1fs", session.chat_id, self.store_timeout)
            return messages.save_failed()
        except Exception:
            logger.exception("Failed to save record for chat %s", session.chat_id)
            return messages.save_failed()

        session.state = SessionState.COMPLETE
        reply = messages.saved(fields, phone.normalized, _record_id(record))
        session.reset()
        return reply

    async def _lookup_counterparty(self, owner_id: str, fields: TransactionFields) -> Optional[ClientRead]:
        try:
            return await asyncio.wait_for(
                self.store.lookup_counterparty(owner_id, fields.counterparty_name or ""),
                timeout=self.store_timeout,
            )
        except Exception:
            logger.warning("Counterparty lookup failed for chat %s", owner_id, exc_info=True)
            return None


def _record_id(record: Any) -> Optional[str]:
    record_id = record.get("id") if isinstance(record, dict) else getattr(record, "id", None)
    return str(record_id) if record_id is not None else None


def build_engine(
    settings: Settings,
    *,
    parser: Optional[TransactionParser],
    store: TransactionStore,
) -> SessionStateMachine:
    extractor = TransactionFieldExtractor.with_parser(
        parser,
        confidence_threshold=settings.parser_confidence_threshold,
        timeout=settings.parser_timeout_seconds,
    )
    registry = SessionRegistry(
        expiry=timedelta(seconds=settings.session_expiry_seconds),
        max_sessions=settings.max_sessions,
    )
    return SessionStateMachine(
        extractor=extractor,
        store=store,
        registry=registry,
        composer=ResponsePromptComposer(persona_name=settings.bot_name),
        voice_enabled=settings.voice_replies_enabled,
        store_timeout=settings.store_timeout_seconds,
    )
