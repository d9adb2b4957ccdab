from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ..config import get_settings

logger = logging.getLogger(__name__)

MAX_SPEECH_CHARS = 2500

_MARKDOWN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"_(.*?)_"), r"\1"),
    (re.compile(r"`(.*?)`"), r"\1"),
    (re.compile(r"#{1,6}\s"), ""),
    (re.compile(r"\[(.*?)\]\(.*?\)"), r"\1"),
)

_EMOJI_RE = re.compile(
    "["
    "\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F900-\U0001F9FF"
    "\U0001F100-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\uFE0F"
    "]"
)


class SpeechSynthesisError(RuntimeError):
    """Raised when a reply cannot be turned into audio."""


def clean_text_for_speech(text: str) -> str:
    """Strip markdown and emoji so the voice does not read them out."""
    cleaned = text
    for pattern, replacement in _MARKDOWN_PATTERNS:
        cleaned = pattern.sub(replacement, cleaned)
    cleaned = _EMOJI_RE.sub("", cleaned)
    cleaned = re.sub(r"\s*\n+\s*", ". ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = re.sub(r"\.(\s*\.)+", ".", cleaned)
    cleaned = re.sub(r"([!?,:;])\.", r"\1", cleaned)
    return cleaned.strip().lstrip(". ")


class ElevenLabsSpeechService:
    """HTTP client for the ElevenLabs text-to-speech endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        voice_id: str,
        model: str,
        base_url: str,
        language_id: str = "id",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.voice_id = voice_id
        self.model = model
        self.language_id = language_id
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={"xi-api-key": api_key, "Accept": "audio/mpeg"},
            timeout=httpx.Timeout(timeout=30.0, connect=10.0),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def synthesize(self, text: str) -> bytes:
        """Return MP3 bytes for ``text``."""
        spoken = clean_text_for_speech(text)
        if not spoken:
            raise SpeechSynthesisError("Nothing to say after cleaning the text.")
        if len(spoken) > MAX_SPEECH_CHARS:
            raise SpeechSynthesisError(f"Text too long for speech ({len(spoken)} characters).")

        payload: dict[str, Any] = {
            "text": spoken,
            "model_id": self.model,
            "language_code": self.language_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.5,
                "style": 0.0,
                "use_speaker_boost": True,
            },
        }
        logger.info("Synthesising %d characters of speech", len(spoken))
        try:
            response = await self.client.post(f"/text-to-speech/{self.voice_id}", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SpeechSynthesisError(f"ElevenLabs request failed: {exc}") from exc
        if not response.content:
            raise SpeechSynthesisError("ElevenLabs returned an empty audio payload.")
        return response.content


def create_speech_service() -> ElevenLabsSpeechService | None:
    settings = get_settings()
    if not settings.elevenlabs_api_key:
        logger.info("ELEVENLABS_API_KEY not configured; voice replies fall back to text.")
        return None
    return ElevenLabsSpeechService(
        settings.elevenlabs_api_key,
        voice_id=settings.elevenlabs_voice_id,
        model=settings.elevenlabs_model,
        base_url=str(settings.elevenlabs_base_url).rstrip("/"),
        language_id=settings.elevenlabs_language_id,
    )
