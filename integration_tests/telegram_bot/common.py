from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv
from telethon import TelegramClient, events
from telethon.errors import SessionPasswordNeededError
from telethon.tl.custom.message import Message

logger = logging.getLogger(__name__)

RECORD_ID_RE = re.compile(r"🆔\s*(?P<id>[0-9a-fA-F-]{36})")

load_dotenv()


@dataclass
class TestConfig:
    api_id: int
    api_hash: str
    phone_number: str
    bot_username: str
    session_path: Path

    @classmethod
    def from_env(cls) -> "TestConfig":
        try:
            api_id = int(os.environ["TELEGRAM_TEST_API_ID"])
            api_hash = os.environ["TELEGRAM_TEST_API_HASH"]
            phone = os.environ["TELEGRAM_TEST_PHONE"]
        except KeyError as exc:
            raise SystemExit(f"Missing required env var: {exc.args[0]}") from exc

        bot_username = os.environ.get("TELEGRAM_MAIN_BOT_USERNAME")
        if not bot_username:
            raise SystemExit("Set TELEGRAM_MAIN_BOT_USERNAME to the bot username (e.g. @KasAIBot).")

        session_file = Path(
            os.environ.get(
                "TELEGRAM_TEST_SESSION",
                "integration_tests/telegram_bot/test_user.session",
            )
        )
        session_file.parent.mkdir(parents=True, exist_ok=True)
        return cls(
            api_id=api_id,
            api_hash=api_hash,
            phone_number=phone,
            bot_username=bot_username,
            session_path=session_file,
        )


def text_contains(expectations: list[str] | str) -> Callable[[Message], bool]:
    expectations_list = [expectations] if isinstance(expectations, str) else expectations
    expectations_lower = [exp.lower() for exp in expectations_list]

    def predicate(msg: Message) -> bool:
        text_lower = (msg.text or "").lower()
        return bool(text_lower) and any(exp in text_lower for exp in expectations_lower)

    return predicate


def extract_record_id(message: Message) -> str:
    match = RECORD_ID_RE.search(message.text or "")
    if not match:
        raise RuntimeError(f"No record id in bot reply: {message.text!r}")
    return match.group("id")


class TelegramBotInteractor:
    def __init__(self, client: TelegramClient, bot_username: str) -> None:
        self.client = client
        self.bot_username = bot_username
        self._bot_entity = None

    async def initialise(self) -> None:
        self._bot_entity = await self.client.get_entity(self.bot_username)

    async def send_and_expect(
        self,
        text: str,
        expectations: list[str] | str,
        *,
        timeout: float = 60.0,
    ) -> Message:
        return await self.send_and_wait(text, text_contains(expectations), timeout=timeout)

    async def send_and_wait(
        self,
        text: str,
        predicate: Callable[[Message], bool],
        *,
        timeout: float = 60.0,
    ) -> Message:
        return await self._wait_for_message(predicate, timeout, send=text)

    async def _wait_for_message(
        self,
        predicate: Callable[[Message], bool],
        timeout: float,
        *,
        send: str | None = None,
    ) -> Message:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Message] = loop.create_future()

        async def handler(event: events.NewMessage.Event) -> None:
            if predicate(event.message) and not future.done():
                future.set_result(event.message)

        self.client.add_event_handler(handler, events.NewMessage(from_users=self._bot_entity))
        try:
            if send is not None:
                await self.client.send_message(self._bot_entity, send)
            return await asyncio.wait_for(future, timeout)
        finally:
            self.client.remove_event_handler(handler)


async def ensure_authorized(client: TelegramClient, config: TestConfig) -> None:
    if await client.is_user_authorized():
        return
    logger.info("Authorising Telegram client for %s", config.phone_number)
    await client.send_code_request(config.phone_number)
    code = input("Enter the login code Telegram sent to your user: ")
    try:
        await client.sign_in(config.phone_number, code)
    except SessionPasswordNeededError:
        password = os.environ.get("TELEGRAM_TEST_PASSWORD")
        if not password:
            password = input("Enter your Telegram 2FA password: ")
        await client.sign_in(password=password)


def load_client(config: TestConfig) -> TelegramClient:
    return TelegramClient(str(config.session_path), config.api_id, config.api_hash)


async def run_flow(flow_factory: Callable[[TelegramBotInteractor], "object"]) -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    config = TestConfig.from_env()
    client = load_client(config)
    await client.connect()
    try:
        await ensure_authorized(client, config)
        interactor = TelegramBotInteractor(client, config.bot_username)
        await interactor.initialise()
        await flow_factory(interactor).run()
    finally:
        await client.disconnect()
