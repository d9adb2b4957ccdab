"""Detection of in-message requests for a spoken reply."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

# Longer phrases come first so the reported trigger is the most specific one.
VOICE_TRIGGERS: tuple[str, ...] = (
    "balas dengan suara",
    "bales dengan suara",
    "bales pake suara",
    "jawab pake suara",
    "jawab dengan suara",
    "ceritakan dengan suara",
    "jelasin pake suara",
    "jelasin dengan suara",
    "bicarakan dengan suara",
    "bisa pake suara",
    "bisa dengan suara",
    "pakai suara",
    "pake suara",
    "gunakan suara",
    "minta suara",
    "mau suara",
    "kirim suara",
    "suara dong",
    "pesan suara",
    "dengan voice",
    "pakai voice",
    "pake voice",
    "voice note",
    "voice message",
    "voice dong",
    "send voice",
    "suarakan",
)


@dataclass(frozen=True)
class VoiceDecision:
    is_voice_requested: bool = False
    matched_keyword: Optional[str] = None


NO_VOICE = VoiceDecision()


def _normalise(text: str) -> str:
    return " ".join(text.casefold().split())


class VoiceIntentDetector:
    """Case-insensitive substring match against an ordered trigger list."""

    def __init__(self, triggers: Sequence[str] = VOICE_TRIGGERS) -> None:
        self.triggers = tuple(_normalise(trigger) for trigger in triggers if trigger.strip())

    def detect(self, text: Optional[str]) -> VoiceDecision:
        if not text:
            return NO_VOICE
        haystack = _normalise(text)
        for trigger in self.triggers:
            if trigger in haystack:
                return VoiceDecision(is_voice_requested=True, matched_keyword=trigger)
        return NO_VOICE

    @staticmethod
    def strip_trigger(text: str, decision: VoiceDecision) -> str:
        """Remove the matched phrase so the rest of the message can be parsed on its own."""
        if not decision.is_voice_requested or not decision.matched_keyword:
            return text
        pattern = r"\s+".join(re.escape(word) for word in decision.matched_keyword.split())
        stripped = re.sub(pattern, " ", text, count=1, flags=re.IGNORECASE)
        return " ".join(stripped.split()).strip(" ,.!?")
