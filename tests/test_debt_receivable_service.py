from __future__ import annotations

from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from kasbot.models.debt_receivable import Client, DebtDirection, DebtReceivable, DebtStatus
from kasbot.schemas.debt_receivable import DebtReceivableCreate
from kasbot.services import debt_receivables


class DummySession:
    def __init__(self) -> None:
        self.add = MagicMock()
        self.get: AsyncMock = AsyncMock()
        self.execute: AsyncMock = AsyncMock()
        self.flush: AsyncMock = AsyncMock()
        self.commit: AsyncMock = AsyncMock()
        self.rollback: AsyncMock = AsyncMock()
        self.refresh: AsyncMock = AsyncMock()


def _payload(**overrides) -> DebtReceivableCreate:
    data = {
        "owner_id": "528101001",
        "direction": DebtDirection.RECEIVABLE,
        "counterparty_name": "Warung Madura",
        "item_description": "Voucher Wifi 2rebuan",
        "amount": 200_000,
        "counterparty_phone": "+6281234567890",
    }
    data.update(overrides)
    return DebtReceivableCreate(**data)


class DebtReceivableServiceTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.session = DummySession()

    async def test_create_registers_new_client(self) -> None:
        with patch("kasbot.services.debt_receivables.find_client", new_callable=AsyncMock) as find_mock:
            find_mock.return_value = None
            record = await debt_receivables.create_debt_receivable(self.session, _payload())

        find_mock.assert_awaited_once_with(self.session, "528101001", "Warung Madura")
        self.assertEqual(self.session.add.call_count, 2)
        client = self.session.add.call_args_list[0].args[0]
        self.assertIsInstance(client, Client)
        self.assertEqual(client.name, "Warung Madura")
        self.assertEqual(client.phone, "+6281234567890")
        self.session.flush.assert_awaited_once()

        self.session.add.assert_called_with(record)
        self.session.commit.assert_awaited_once()
        self.session.refresh.assert_awaited_once_with(record)
        self.assertIs(record.client, client)
        self.assertIs(record.direction, DebtDirection.RECEIVABLE)
        self.assertEqual(record.amount, 200_000)
        self.assertEqual(record.description, "Voucher Wifi 2rebuan")
        self.assertEqual(record.counterparty_phone, "+6281234567890")
        self.assertIsNone(record.idempotency_key)
        self.assertIs(record.status, DebtStatus.ACTIVE)

    async def test_create_reuses_known_client_and_updates_phone(self) -> None:
        client = Client(owner_id="528101001", name="Warung Madura", phone="+6280000000000")
        with patch("kasbot.services.debt_receivables.find_client", new_callable=AsyncMock) as find_mock:
            find_mock.return_value = client
            record = await debt_receivables.create_debt_receivable(self.session, _payload())

        self.session.add.assert_called_once_with(record)
        self.session.flush.assert_not_awaited()
        self.assertIs(record.client, client)
        self.assertEqual(client.phone, "+6281234567890")

    async def test_declined_phone_is_stored_on_the_record_only(self) -> None:
        client = Client(owner_id="528101001", name="Warung Madura", phone="+6280000000000")
        with patch("kasbot.services.debt_receivables.find_client", new_callable=AsyncMock) as find_mock:
            find_mock.return_value = client
            record = await debt_receivables.create_debt_receivable(
                self.session, _payload(counterparty_phone=None)
            )

        self.assertIsNone(record.counterparty_phone)
        self.assertEqual(client.phone, "+6280000000000")

    async def test_records_keep_their_own_phone(self) -> None:
        client = Client(owner_id="528101001", name="Warung Madura", phone="+6280000000000")
        with patch("kasbot.services.debt_receivables.find_client", new_callable=AsyncMock) as find_mock:
            find_mock.return_value = client
            first = await debt_receivables.create_debt_receivable(self.session, _payload())
            second = await debt_receivables.create_debt_receivable(
                self.session, _payload(counterparty_phone="+6289999999999")
            )

        self.assertEqual(first.counterparty_phone, "+6281234567890")
        self.assertEqual(second.counterparty_phone, "+6289999999999")
        self.assertEqual(client.phone, "+6289999999999")

    async def test_repeated_idempotency_key_returns_stored_record(self) -> None:
        key = uuid4()
        existing = DebtReceivable(owner_id="528101001", amount=200_000, idempotency_key=key)
        with patch(
            "kasbot.services.debt_receivables.find_by_idempotency_key", new_callable=AsyncMock
        ) as lookup_mock, patch(
            "kasbot.services.debt_receivables.find_client", new_callable=AsyncMock
        ) as find_mock:
            lookup_mock.return_value = existing
            record = await debt_receivables.create_debt_receivable(
                self.session, _payload(idempotency_key=key)
            )

        self.assertIs(record, existing)
        lookup_mock.assert_awaited_once_with(self.session, "528101001", key)
        find_mock.assert_not_awaited()
        self.session.add.assert_not_called()
        self.session.commit.assert_not_awaited()

    async def test_new_idempotency_key_is_stored(self) -> None:
        key = uuid4()
        client = Client(owner_id="528101001", name="Warung Madura", phone=None)
        with patch(
            "kasbot.services.debt_receivables.find_by_idempotency_key", new_callable=AsyncMock
        ) as lookup_mock, patch(
            "kasbot.services.debt_receivables.find_client", new_callable=AsyncMock
        ) as find_mock:
            lookup_mock.return_value = None
            find_mock.return_value = client
            record = await debt_receivables.create_debt_receivable(
                self.session, _payload(idempotency_key=key)
            )

        self.assertEqual(record.idempotency_key, key)
        self.session.commit.assert_awaited_once()

    async def test_concurrent_duplicate_key_returns_winner(self) -> None:
        key = uuid4()
        winner = DebtReceivable(owner_id="528101001", amount=200_000, idempotency_key=key)
        client = Client(owner_id="528101001", name="Warung Madura", phone=None)
        self.session.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate key"))
        with patch(
            "kasbot.services.debt_receivables.find_by_idempotency_key", new_callable=AsyncMock
        ) as lookup_mock, patch(
            "kasbot.services.debt_receivables.find_client", new_callable=AsyncMock
        ) as find_mock:
            lookup_mock.side_effect = [None, winner]
            find_mock.return_value = client
            record = await debt_receivables.create_debt_receivable(
                self.session, _payload(idempotency_key=key)
            )

        self.assertIs(record, winner)
        self.session.rollback.assert_awaited_once()
        self.session.refresh.assert_not_awaited()

    async def test_integrity_error_without_key_propagates(self) -> None:
        self.session.commit.side_effect = IntegrityError("INSERT", {}, Exception("fk violation"))
        with patch("kasbot.services.debt_receivables.find_client", new_callable=AsyncMock) as find_mock:
            find_mock.return_value = None
            with self.assertRaises(IntegrityError):
                await debt_receivables.create_debt_receivable(self.session, _payload())
        self.session.rollback.assert_awaited_once()

    async def test_summary_splits_totals_by_direction(self) -> None:
        self.session.execute.return_value = SimpleNamespace(
            all=lambda: [
                (DebtDirection.RECEIVABLE, 250_000, 2),
                (DebtDirection.DEBT, 100_000, 1),
            ]
        )
        summary = await debt_receivables.get_debt_receivable_summary(self.session, "528101001")

        self.assertEqual(summary.total_receivable, 250_000)
        self.assertEqual(summary.count_receivable, 2)
        self.assertEqual(summary.total_debt, 100_000)
        self.assertEqual(summary.count_debt, 1)
        self.assertEqual(summary.net_balance, 150_000)

    async def test_summary_for_empty_ledger(self) -> None:
        self.session.execute.return_value = SimpleNamespace(all=lambda: [])
        summary = await debt_receivables.get_debt_receivable_summary(self.session, "528101001")
        self.assertEqual(summary.net_balance, 0)
        self.assertEqual(summary.count_debt, 0)

    async def test_mark_paid_sets_status_and_timestamp(self) -> None:
        record = DebtReceivable(owner_id="528101001", amount=50_000, status=DebtStatus.ACTIVE)
        result = await debt_receivables.mark_debt_receivable_paid(self.session, record)

        self.assertIs(result, record)
        self.assertIs(record.status, DebtStatus.PAID)
        self.assertIsNotNone(record.paid_at)
        self.session.commit.assert_awaited_once()
        self.session.refresh.assert_awaited_once_with(record)

    async def test_mark_paid_twice_raises(self) -> None:
        record = DebtReceivable(owner_id="528101001", amount=50_000, status=DebtStatus.PAID)
        with self.assertRaises(ValueError):
            await debt_receivables.mark_debt_receivable_paid(self.session, record)
        self.session.commit.assert_not_awaited()

    async def test_get_record_uses_primary_key_lookup(self) -> None:
        record = DebtReceivable(owner_id="528101001", amount=1)
        self.session.get.return_value = record
        found = await debt_receivables.get_debt_receivable(self.session, "abc")
        self.session.get.assert_awaited_once_with(DebtReceivable, "abc")
        self.assertIs(found, record)
