from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

CURRENT_DIR = Path(__file__).resolve().parents[2]
if str(CURRENT_DIR) not in sys.path:
    sys.path.insert(0, str(CURRENT_DIR))

from integration_tests.telegram_bot.common import (  # noqa: E402
    TelegramBotInteractor,
    extract_record_id,
    run_flow,
)

logger = logging.getLogger(__name__)


class CaptureFlowsTester:
    def __init__(self, interactor: TelegramBotInteractor) -> None:
        self.interactor = interactor

    async def run(self) -> None:
        await self.interactor.send_and_expect("/batal", ["tidak ada catatan", "dibatalkan"])
        await self.interactor.send_and_expect("/start", "cara mencatat")

        await self.interactor.send_and_expect(
            "Piutang Warung Madura Voucher Wifi 2rebuan 200K",
            "nomor hp",
        )
        await self.interactor.send_and_expect("12345", "belum valid")
        await self.interactor.send_and_expect("12", "belum valid")
        saved = await self.interactor.send_and_expect("081234567890", "berhasil dicatat")
        if "Rp 200.000" not in (saved.text or ""):
            raise RuntimeError(f"Unexpected amount in confirmation: {saved.text!r}")
        if "+6281234567890" not in (saved.text or ""):
            raise RuntimeError(f"Phone was not normalised: {saved.text!r}")
        extract_record_id(saved)

        await self.interactor.send_and_expect("Hutang ke Bu Sari 1,5jt buat modal", "nomor hp")
        declined = await self.interactor.send_and_expect("tidak", "berhasil dicatat")
        if "Rp 1.500.000" not in (declined.text or ""):
            raise RuntimeError(f"Unexpected amount in confirmation: {declined.text!r}")

        await self.interactor.send_and_expect("Piutang Budi 50rb", "nomor hp")
        await self.interactor.send_and_expect("batal", "dibatalkan")

        await self.interactor.send_and_expect("Budi pinjam 50rb", ["piutang", "hutang"])
        await self.interactor.send_and_expect("Piutang Budi beli pulsa", "nominal")

        logger.info("Capture flow test completed successfully")


def main() -> None:
    asyncio.run(run_flow(CaptureFlowsTester))


if __name__ == "__main__":
    main()
