from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

CURRENT_DIR = Path(__file__).resolve().parents[2]
if str(CURRENT_DIR) not in sys.path:
    sys.path.insert(0, str(CURRENT_DIR))

from telethon.tl.custom.message import Message  # noqa: E402

from integration_tests.telegram_bot.common import (  # noqa: E402
    TelegramBotInteractor,
    extract_record_id,
    run_flow,
)

logger = logging.getLogger(__name__)


def _is_voice_or_text_confirmation(message: Message) -> bool:
    if getattr(message, "voice", None):
        return True
    return "berhasil dicatat" in (message.text or "").lower()


class LedgerFlowsTester:
    def __init__(self, interactor: TelegramBotInteractor) -> None:
        self.interactor = interactor

    async def run(self) -> None:
        await self.interactor.send_and_expect("Piutang Pak Joko beli semen 750rb", "nomor hp")
        saved = await self.interactor.send_and_expect("+62 812-3456-7890", "berhasil dicatat")
        record_id = extract_record_id(saved)

        listing = await self.interactor.send_and_expect("/daftar", ["catatan belum lunas", "tidak ada"])
        if record_id not in (listing.text or ""):
            raise RuntimeError(f"Record {record_id} missing from /daftar output.")

        await self.interactor.send_and_expect("/ringkasan", "ringkasan")
        await self.interactor.send_and_expect(f"/lunas {record_id}", "sudah lunas")
        await self.interactor.send_and_expect(f"/lunas {record_id}", "sudah lunas")
        await self.interactor.send_and_expect("/lunas bukan-id", "tidak valid")

        await self.interactor.send_and_expect("Hutang sama Mas Andi 25rb pake suara", "nomor hp")
        await self.interactor.send_and_wait("tidak, balas dengan suara", _is_voice_or_text_confirmation)

        logger.info("Ledger flow test completed successfully")


def main() -> None:
    asyncio.run(run_flow(LedgerFlowsTester))


if __name__ == "__main__":
    main()
