from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase
from uuid import uuid4

from kasbot.conversation.engine import SessionStateMachine, build_engine
from kasbot.conversation.extraction import (
    ParsedTransaction,
    TransactionFieldExtractor,
    TransactionFields,
)
from kasbot.conversation.prompts import DeliveryRegister
from kasbot.conversation.sessions import SessionRegistry, SessionState
from kasbot.models.debt_receivable import DebtDirection
from kasbot.schemas.debt_receivable import DebtReceivableCreate

REFERENCE_MESSAGE = "Piutang Warung Madura Voucher Wifi 2rebuan 200K"


class FakeStore:
    def __init__(self) -> None:
        self.saved: list[DebtReceivableCreate] = []
        self.error: Exception | None = None
        self.delay = 0.0
        self.known: dict[str, SimpleNamespace] = {}
        self.lookups: list[tuple[str, str]] = []

    async def save(self, payload: DebtReceivableCreate) -> SimpleNamespace:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.saved.append(payload)
        return SimpleNamespace(id=uuid4())

    async def lookup_counterparty(self, owner_id: str, name: str):
        self.lookups.append((owner_id, name))
        return self.known.get(name)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class SessionStateMachineTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = FakeStore()
        self.clock = FakeClock()
        self.registry = SessionRegistry(expiry=timedelta(minutes=5), clock=self.clock)
        self.engine = SessionStateMachine(
            extractor=TransactionFieldExtractor(),
            store=self.store,
            registry=self.registry,
            store_timeout=0.5,
        )

    async def test_reference_scenario_with_phone(self) -> None:
        reply = await self.engine.handle(42, REFERENCE_MESSAGE, display_name="Rina")
        self.assertEqual(reply.chat_id, "42")
        self.assertIs(reply.deliver_as, DeliveryRegister.TEXT)
        self.assertIn("Nomor HP Warung Madura", reply.text)
        self.assertIn("Rp 200.000", reply.text)
        session = self.registry.get("42")
        self.assertIs(session.state, SessionState.AWAITING_PHONE)

        reply = await self.engine.handle(42, "081234567890")
        self.assertIn("berhasil dicatat", reply.text)
        self.assertIn("+6281234567890", reply.text)
        self.assertEqual(len(self.store.saved), 1)
        saved = self.store.saved[0]
        self.assertEqual(saved.owner_id, "42")
        self.assertIs(saved.direction, DebtDirection.RECEIVABLE)
        self.assertEqual(saved.counterparty_name, "Warung Madura")
        self.assertEqual(saved.item_description, "Voucher Wifi 2rebuan")
        self.assertEqual(saved.amount, 200_000)
        self.assertEqual(saved.counterparty_phone, "+6281234567890")
        self.assertIs(session.state, SessionState.IDLE)
        self.assertIsNone(session.pending_transaction)

    async def test_reference_scenario_with_decline(self) -> None:
        await self.engine.handle(42, REFERENCE_MESSAGE)
        reply = await self.engine.handle(42, "tidak")
        self.assertIn("berhasil dicatat", reply.text)
        self.assertIsNone(self.store.saved[0].counterparty_phone)

    async def test_invalid_phone_keeps_pending_transaction(self) -> None:
        await self.engine.handle(7, REFERENCE_MESSAGE)
        session = self.registry.get("7")
        pending = session.pending_transaction
        for attempt in ("12345", "nanti ya", "0812"):
            reply = await self.engine.handle(7, attempt)
            self.assertIn("belum valid", reply.text)
            self.assertIs(session.state, SessionState.AWAITING_PHONE)
            self.assertIs(session.pending_transaction, pending)
        self.assertEqual(self.store.saved, [])

        await self.engine.handle(7, "+62 812 3456 7890")
        self.assertEqual(len(self.store.saved), 1)

    async def test_extraction_failure_names_missing_field(self) -> None:
        reply = await self.engine.handle(1, "Piutang Budi beli pulsa")
        self.assertIn("nominal", reply.text.lower())
        reply = await self.engine.handle(1, "Budi 50rb")
        self.assertIn("piutang", reply.text.lower())
        self.assertIs(self.registry.get("1").state, SessionState.IDLE)

    async def test_generic_lead_only_when_parser_is_down(self) -> None:
        class DownParser:
            async def parse(self, text: str) -> ParsedTransaction:
                raise RuntimeError("quota")

        class UnsureParser:
            async def parse(self, text: str) -> ParsedTransaction:
                return ParsedTransaction(confidence=0.1)

        down = SessionStateMachine(
            extractor=TransactionFieldExtractor.with_parser(DownParser(), confidence_threshold=0.6, timeout=1),
            store=self.store,
        )
        reply = await down.handle(1, "Budi 50rb")
        self.assertTrue(reply.text.startswith("🤔 Maaf"))

        unsure = SessionStateMachine(
            extractor=TransactionFieldExtractor.with_parser(UnsureParser(), confidence_threshold=0.6, timeout=1),
            store=self.store,
        )
        reply = await unsure.handle(1, "Budi 50rb")
        self.assertNotIn("Maaf", reply.text)
        self.assertIn("piutang", reply.text)

    async def test_persistence_failure_keeps_state_and_allows_retry(self) -> None:
        await self.engine.handle(5, REFERENCE_MESSAGE)
        session = self.registry.get("5")
        pending = session.pending_transaction
        self.store.error = RuntimeError("db down")

        reply = await self.engine.handle(5, "tidak")
        self.assertIn("belum bisa disimpan", reply.text)
        self.assertIs(session.state, SessionState.AWAITING_PHONE)
        self.assertIs(session.pending_transaction, pending)

        self.store.error = None
        reply = await self.engine.handle(5, "tidak")
        self.assertIn("berhasil dicatat", reply.text)
        self.assertEqual(len(self.store.saved), 1)

    async def test_persistence_timeout_is_reported(self) -> None:
        await self.engine.handle(5, REFERENCE_MESSAGE)
        self.store.delay = 2
        reply = await self.engine.handle(5, "tidak")
        self.assertIn("belum bisa disimpan", reply.text)
        self.assertIs(self.registry.get("5").state, SessionState.AWAITING_PHONE)

    async def test_cancel_discards_pending(self) -> None:
        await self.engine.handle(3, REFERENCE_MESSAGE)
        reply = await self.engine.handle(3, "Batal")
        self.assertIn("dibatalkan", reply.text)
        session = self.registry.get("3")
        self.assertIs(session.state, SessionState.IDLE)
        self.assertIsNone(session.pending_transaction)
        self.assertEqual(self.store.saved, [])

    async def test_cancel_when_idle_says_nothing_pending(self) -> None:
        reply = await self.engine.handle(3, "/batal")
        self.assertIn("Tidak ada catatan", reply.text)

    async def test_expired_session_never_persists_stale_transaction(self) -> None:
        await self.engine.handle(9, REFERENCE_MESSAGE)
        self.clock.now += timedelta(minutes=10)
        reply = await self.engine.handle(9, "tidak")
        self.assertEqual(self.store.saved, [])
        self.assertNotIn("berhasil", reply.text)
        self.assertIs(self.registry.get("9").state, SessionState.IDLE)

    async def test_non_positive_amount_is_rejected_before_persisting(self) -> None:
        async with self.registry.acquire("8") as session:
            session.state = SessionState.AWAITING_PHONE
            session.pending_transaction = TransactionFields(
                direction=DebtDirection.DEBT, counterparty_name="Andi", amount=0
            )
        reply = await self.engine.handle(8, "tidak")
        self.assertIn("lebih dari nol", reply.text)
        self.assertEqual(self.store.saved, [])
        self.assertIs(self.registry.get("8").state, SessionState.IDLE)

    async def test_voice_request_routes_reply_to_voice(self) -> None:
        reply = await self.engine.handle(11, "Piutang Budi 50rb pake suara", display_name="Rina")
        self.assertIs(reply.deliver_as, DeliveryRegister.VOICE)
        self.assertTrue(reply.directives.is_voice)
        self.assertEqual(reply.voice.matched_keyword, "pake suara")
        pending = self.registry.get("11").pending_transaction
        self.assertEqual(pending.counterparty_name, "Budi")
        self.assertEqual(pending.amount, 50_000)

        reply = await self.engine.handle(11, "tidak")
        self.assertIs(reply.deliver_as, DeliveryRegister.TEXT)

    async def test_voice_disabled_falls_back_to_text(self) -> None:
        self.engine.voice_enabled = False
        reply = await self.engine.handle(11, "Piutang Budi 50rb balas dengan suara")
        self.assertIs(reply.deliver_as, DeliveryRegister.TEXT)
        self.assertTrue(reply.voice.is_voice_requested)

    async def test_known_counterparty_phone_is_offered(self) -> None:
        self.store.known["Budi"] = SimpleNamespace(phone="+6281111111111")
        reply = await self.engine.handle(12, "Piutang Budi 50rb")
        self.assertIn("Nomor tersimpan: +6281111111111", reply.text)
        self.assertEqual(self.store.lookups, [("12", "Budi")])

    async def test_known_phone_is_reused_on_request(self) -> None:
        self.store.known["Budi"] = SimpleNamespace(phone="+6281111111111")
        await self.engine.handle(12, "Piutang Budi 50rb")
        reply = await self.engine.handle(12, "Pakai")
        self.assertIn("berhasil dicatat", reply.text)
        self.assertEqual(self.store.saved[0].counterparty_phone, "+6281111111111")
        self.assertIsNone(self.registry.get("12").known_phone)

    async def test_decline_with_known_phone_saves_without_number(self) -> None:
        self.store.known["Budi"] = SimpleNamespace(phone="+6281111111111")
        await self.engine.handle(12, "Piutang Budi 50rb")
        reply = await self.engine.handle(12, "tidak")
        self.assertIn("HP: -", reply.text)
        self.assertIsNone(self.store.saved[0].counterparty_phone)

    async def test_reuse_keyword_without_known_phone_is_invalid(self) -> None:
        await self.engine.handle(12, "Piutang Budi 50rb")
        reply = await self.engine.handle(12, "pakai")
        self.assertIn("belum valid", reply.text)
        self.assertEqual(self.store.saved, [])

    async def test_voice_request_alone_repeats_phone_question(self) -> None:
        await self.engine.handle(13, REFERENCE_MESSAGE)
        session = self.registry.get("13")
        pending = session.pending_transaction

        reply = await self.engine.handle(13, "pake suara")
        self.assertIs(reply.deliver_as, DeliveryRegister.VOICE)
        self.assertIn("Nomor HP Warung Madura", reply.text)
        self.assertIs(session.state, SessionState.AWAITING_PHONE)
        self.assertIs(session.pending_transaction, pending)
        self.assertEqual(self.store.saved, [])

        reply = await self.engine.handle(13, "081234567890 pake suara")
        self.assertIs(reply.deliver_as, DeliveryRegister.VOICE)
        self.assertEqual(self.store.saved[0].counterparty_phone, "+6281234567890")

    async def test_long_description_is_rejected_before_phone_step(self) -> None:
        reply = await self.engine.handle(14, f"Piutang Budi beli {'x' * 600} 50rb")
        self.assertIn("Keterangan terlalu panjang", reply.text)
        self.assertNotIn("Nominal", reply.text)
        session = self.registry.get("14")
        self.assertIs(session.state, SessionState.IDLE)
        self.assertIsNone(session.pending_transaction)

    async def test_long_name_is_rejected_before_phone_step(self) -> None:
        class LongNameParser:
            async def parse(self, text: str) -> ParsedTransaction:
                return ParsedTransaction(
                    confidence=0.9,
                    direction=DebtDirection.RECEIVABLE,
                    counterparty_name="Budi " * 40,
                    amount=50_000,
                )

        engine = SessionStateMachine(
            extractor=TransactionFieldExtractor.with_parser(LongNameParser(), confidence_threshold=0.6, timeout=1),
            store=self.store,
            registry=self.registry,
        )
        reply = await engine.handle(15, "Piutang Budi 50rb")
        self.assertIn("Nama orangnya belum valid", reply.text)
        self.assertIs(self.registry.get("15").state, SessionState.IDLE)
        self.assertEqual(self.store.saved, [])

    async def test_retried_save_reuses_idempotency_key(self) -> None:
        keys = []

        class FlakyStore(FakeStore):
            async def save(self, payload: DebtReceivableCreate) -> SimpleNamespace:
                keys.append(payload.idempotency_key)
                if len(keys) == 1:
                    raise RuntimeError("connection reset")
                return await super().save(payload)

        engine = SessionStateMachine(
            extractor=TransactionFieldExtractor(),
            store=FlakyStore(),
            registry=self.registry,
        )
        await engine.handle(16, REFERENCE_MESSAGE)
        await engine.handle(16, "tidak")
        reply = await engine.handle(16, "tidak")
        self.assertIn("berhasil dicatat", reply.text)
        self.assertIsNotNone(keys[0])
        self.assertEqual(keys[0], keys[1])

        await engine.handle(16, REFERENCE_MESSAGE)
        await engine.handle(16, "tidak")
        self.assertNotEqual(keys[2], keys[0])

    async def test_empty_registry_is_kept(self) -> None:
        registry = SessionRegistry()
        engine = SessionStateMachine(extractor=TransactionFieldExtractor(), store=self.store, registry=registry)
        self.assertIs(engine.registry, registry)

    async def test_concurrent_messages_for_one_chat_save_once(self) -> None:
        await self.engine.handle(20, REFERENCE_MESSAGE)
        self.store.delay = 0.05
        first, second = await asyncio.gather(
            self.engine.handle(20, "tidak"),
            self.engine.handle(20, "tidak"),
        )
        self.assertIn("berhasil dicatat", first.text)
        self.assertNotIn("berhasil dicatat", second.text)
        self.assertEqual(len(self.store.saved), 1)

    async def test_chats_do_not_share_state(self) -> None:
        await self.engine.handle(30, REFERENCE_MESSAGE)
        reply = await self.engine.handle(31, "tidak")
        self.assertNotIn("berhasil", reply.text)
        self.assertIs(self.registry.get("30").state, SessionState.AWAITING_PHONE)


class BuildEngineTests(IsolatedAsyncioTestCase):
    async def test_factory_applies_settings(self) -> None:
        settings = SimpleNamespace(
            parser_confidence_threshold=0.75,
            parser_timeout_seconds=3.0,
            session_expiry_seconds=120,
            max_sessions=50,
            bot_name="Kasir",
            voice_replies_enabled=False,
            store_timeout_seconds=4.0,
        )
        engine = build_engine(settings, parser=None, store=FakeStore())
        self.assertIsNone(engine.extractor.primary)
        self.assertEqual(engine.registry.expiry, timedelta(seconds=120))
        self.assertEqual(engine.registry.max_sessions, 50)
        self.assertEqual(engine.composer.persona_name, "Kasir")
        self.assertFalse(engine.voice_enabled)
        self.assertEqual(engine.store_timeout, 4.0)
