from __future__ import annotations

import asyncio
import contextlib
import logging
from io import BytesIO
from typing import Any, Optional, Protocol

import httpx
from telegram import BotCommand, Update
from telegram.ext import (
    AIORateLimiter,
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..config import get_settings
from ..conversation import messages
from ..conversation.engine import OutboundMessage, SessionStateMachine, build_engine
from ..conversation.prompts import DeliveryRegister, PromptDirectives
from ..conversation.sessions import SessionRegistry
from ..services.llm import get_transaction_parser
from ..services.tts import ElevenLabsSpeechService, SpeechSynthesisError, create_speech_service
from .api_client import LedgerApiClient
from .helpers import format_record_list, format_summary, parse_record_id

logger = logging.getLogger(__name__)

ALLOWED_UPDATES = ["message"]
PURGE_INTERVAL_SECONDS = 60.0

BOT_COMMANDS = [
    BotCommand("start", "Mulai dan lihat contoh"),
    BotCommand("help", "Cara mencatat piutang/hutang"),
    BotCommand("batal", "Batalkan catatan yang sedang diproses"),
    BotCommand("daftar", "Lihat catatan yang belum lunas"),
    BotCommand("ringkasan", "Total piutang dan hutang"),
    BotCommand("lunas", "Tandai catatan sudah lunas"),
]


class ReplyWriter(Protocol):
    async def write_reply(self, base_text: str, directives: PromptDirectives) -> str: ...


class BotNotInitialisedError(RuntimeError):
    """Raised when an update arrives before the bot is ready."""


_lock = asyncio.Lock()
_application: Optional[Application] = None
_api_client: Optional[LedgerApiClient] = None
_speech_service: Optional[ElevenLabsSpeechService] = None
_purge_task: Optional[asyncio.Task] = None


def _owner_id(update: Update) -> Optional[str]:
    chat = getattr(update, "effective_chat", None)
    return str(chat.id) if chat is not None else None


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    bot_name = context.application.bot_data.get("bot_name", "KasAI")
    user = getattr(update, "effective_user", None)
    greeting = f"Halo {user.first_name}! " if user and getattr(user, "first_name", None) else "Halo! "
    await update.message.reply_text(
        f"👋 {greeting}Saya {bot_name}, asisten pencatat piutang dan hutang kamu.\n\n{messages.HELP_TEXT}"
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    await update.message.reply_text(messages.HELP_TEXT)


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    engine: SessionStateMachine = context.application.bot_data["engine"]
    outbound = await engine.handle(update.effective_chat.id, "batal")
    await deliver_reply(update.message, outbound, context.application.bot_data)


async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    api_client: LedgerApiClient = context.application.bot_data["api_client"]
    try:
        records = await api_client.list_debt_receivables(owner_id=_owner_id(update))
    except Exception:
        logger.exception("Failed to fetch debt/receivable list.")
        await update.message.reply_text("😥 Daftar catatan belum bisa diambil. Coba lagi nanti ya.")
        return
    await update.message.reply_text(format_record_list(records))


async def summary_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    api_client: LedgerApiClient = context.application.bot_data["api_client"]
    try:
        summary = await api_client.summary(owner_id=_owner_id(update))
    except Exception:
        logger.exception("Failed to fetch debt/receivable summary.")
        await update.message.reply_text("😥 Ringkasan belum bisa diambil. Coba lagi nanti ya.")
        return
    await update.message.reply_text(format_summary(summary))


async def paid_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    args = getattr(context, "args", None) or []
    if not args:
        await update.message.reply_text("Pakai: /lunas <id>. ID bisa dilihat lewat /daftar.")
        return
    try:
        record_id = parse_record_id(args[0])
    except ValueError as exc:
        await update.message.reply_text(f"⚠️ {exc} ID bisa dilihat lewat /daftar.")
        return

    api_client: LedgerApiClient = context.application.bot_data["api_client"]
    try:
        record = await api_client.mark_paid(record_id, owner_id=_owner_id(update))
    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 404:
            await update.message.reply_text("🔍 Catatan dengan ID itu tidak ditemukan.")
        elif exc.response.status_code == 400:
            await update.message.reply_text("👌 Catatan itu sudah lunas.")
        else:
            logger.exception("Failed to mark record %s as paid", record_id)
            await update.message.reply_text("😥 Catatan belum bisa ditandai lunas. Coba lagi nanti ya.")
        return
    except Exception:
        logger.exception("Failed to mark record %s as paid", record_id)
        await update.message.reply_text("😥 Catatan belum bisa ditandai lunas. Coba lagi nanti ya.")
        return

    label = messages.DIRECTION_LABELS.get(record.direction, "Catatan")
    await update.message.reply_text(
        f"✅ {label} {record.counterparty_name} sebesar {messages.format_rupiah(record.amount)} sudah lunas."
    )


async def free_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.effective_chat:
        return
    text = update.message.text or ""
    if not text.strip():
        return
    user = getattr(update, "effective_user", None)
    engine: SessionStateMachine = context.application.bot_data["engine"]
    outbound = await engine.handle(
        update.effective_chat.id,
        text,
        display_name=getattr(user, "first_name", None),
    )
    await deliver_reply(update.message, outbound, context.application.bot_data)


async def deliver_reply(message: Any, outbound: OutboundMessage, bot_data: dict[str, Any]) -> None:
    """Send the reply as text, or as a voice note when one was asked for and can be produced."""
    speech_service: Optional[ElevenLabsSpeechService] = bot_data.get("speech_service")
    if outbound.deliver_as is not DeliveryRegister.VOICE or speech_service is None:
        await message.reply_text(outbound.text)
        return

    spoken_text = outbound.text
    reply_writer: Optional[ReplyWriter] = bot_data.get("reply_writer")
    if reply_writer is not None:
        try:
            spoken_text = await reply_writer.write_reply(outbound.text, outbound.directives) or outbound.text
        except Exception:
            logger.warning("Reply writer failed; speaking the template reply", exc_info=True)

    try:
        audio = await speech_service.synthesize(spoken_text)
    except SpeechSynthesisError:
        logger.warning("Speech synthesis failed for chat %s; replying with text", outbound.chat_id, exc_info=True)
        await message.reply_text(outbound.text)
        return

    voice = BytesIO(audio)
    voice.name = "balasan.mp3"
    await message.reply_voice(voice=voice, caption=outbound.text[:1024])


async def _purge_sessions_periodically(registry: SessionRegistry, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await registry.purge_expired()


def _create_application(
    token: str,
    api_client: LedgerApiClient,
    engine: SessionStateMachine,
    *,
    bot_name: str,
    speech_service: Optional[ElevenLabsSpeechService] = None,
    reply_writer: Optional[ReplyWriter] = None,
) -> Application:
    application = (
        Application.builder()
        .token(token)
        .rate_limiter(AIORateLimiter())
        .build()
    )
    application.bot_data.update(
        {
            "api_client": api_client,
            "engine": engine,
            "bot_name": bot_name,
            "speech_service": speech_service,
            "reply_writer": reply_writer,
        }
    )
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("batal", cancel_command))
    application.add_handler(CommandHandler("daftar", list_command))
    application.add_handler(CommandHandler("ringkasan", summary_command))
    application.add_handler(CommandHandler("lunas", paid_command))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, free_text_message))
    return application


async def init_bot() -> None:
    """Initialise the Telegram bot and register the webhook."""
    settings = get_settings()
    if not settings.telegram_bot_token or not settings.telegram_webhook_secret:
        logger.info("Telegram bot or webhook secret not configured; skipping bot initialisation.")
        return
    if not settings.backend_base_url:
        logger.warning("BACKEND_BASE_URL is missing; skipping Telegram webhook setup.")
        return

    base_url = str(settings.backend_base_url)
    webhook_url = base_url.rstrip("/") + f"/api/telegram/webhook/{settings.telegram_webhook_secret}"
    api_base_url = str(settings.internal_backend_base_url or settings.backend_base_url)

    async with _lock:
        global _application, _api_client, _speech_service, _purge_task
        if _application is not None:
            return

        api_client = LedgerApiClient(api_base_url)
        parser = get_transaction_parser()
        if parser is None:
            logger.warning("GEMINI_API_KEY not configured; using rule-based extraction only.")
        speech_service = create_speech_service() if settings.voice_replies_enabled else None
        engine = build_engine(settings, parser=parser, store=api_client)
        application = _create_application(
            settings.telegram_bot_token,
            api_client,
            engine,
            bot_name=settings.bot_name,
            speech_service=speech_service,
            reply_writer=parser,
        )

        try:
            await application.initialize()
            await application.start()
            try:
                await application.bot.set_my_commands(BOT_COMMANDS)
            except Exception:
                logger.exception("Failed to set Telegram command list.")
            if settings.telegram_register_webhook_on_start:
                await application.bot.set_webhook(
                    url=webhook_url,
                    drop_pending_updates=False,
                    allowed_updates=ALLOWED_UPDATES,
                )
        except Exception:
            logger.exception("Failed to initialise Telegram webhook; bot disabled for this run.")
            with contextlib.suppress(Exception):
                await application.stop()
            with contextlib.suppress(Exception):
                await application.shutdown()
            await api_client.aclose()
            if speech_service is not None:
                await speech_service.aclose()
            return

        _application = application
        _api_client = api_client
        _speech_service = speech_service
        _purge_task = asyncio.create_task(
            _purge_sessions_periodically(engine.registry, PURGE_INTERVAL_SECONDS)
        )
        logger.info("Telegram webhook configured at %s", webhook_url)


async def handle_update(payload: dict[str, Any]) -> None:
    """Process a Telegram update forwarded by FastAPI."""
    async with _lock:
        if _application is None:
            raise BotNotInitialisedError("Telegram bot is not initialised.")
        application = _application
    update = Update.de_json(payload, application.bot)
    await application.process_update(update)


async def shutdown_bot() -> None:
    """Tear down the Telegram bot and release its HTTP clients."""
    async with _lock:
        global _application, _api_client, _speech_service, _purge_task
        if _application is None:
            return
        if _purge_task is not None:
            _purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await _purge_task
        await _application.stop()
        await _application.shutdown()
        if _api_client:
            await _api_client.aclose()
        if _speech_service:
            await _speech_service.aclose()
        _application = None
        _api_client = None
        _speech_service = None
        _purge_task = None
