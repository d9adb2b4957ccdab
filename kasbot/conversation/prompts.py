"""Steering directives for the reply writer.

The composer never writes the reply itself. It only decides how the user is addressed,
which register the reply is delivered in, and the style limits that follow from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DeliveryRegister(str, Enum):
    TEXT = "text"
    VOICE = "voice"


SPOKEN_DURATION_SECONDS = (30, 60)
SPOKEN_WORD_RANGE = (80, 160)

VOICE_STYLE_CONSTRAINTS: tuple[str, ...] = (
    "Write for natural spoken delivery with a relaxed, conversational cadence.",
    "Avoid markdown, bullet lists, emoji and dense punctuation.",
    "Pace sentences with commas instead of line breaks.",
    (
        f"Keep it between {SPOKEN_DURATION_SECONDS[0]} and {SPOKEN_DURATION_SECONDS[1]} seconds "
        f"when read aloud, roughly {SPOKEN_WORD_RANGE[0]} to {SPOKEN_WORD_RANGE[1]} words."
    ),
)

TEXT_STYLE_CONSTRAINTS: tuple[str, ...] = (
    "Expressive emoji are welcome as empathy cues (😊🤗💙✨).",
    "No spoken-duration limit applies.",
)


@dataclass(frozen=True)
class PromptDirectives:
    persona_name: str
    addressing_instruction: str
    delivery_register: DeliveryRegister
    style_constraints: tuple[str, ...]
    allow_emoji: bool
    target_duration_seconds: Optional[tuple[int, int]] = None
    target_word_range: Optional[tuple[int, int]] = None

    @property
    def is_voice(self) -> bool:
        return self.delivery_register is DeliveryRegister.VOICE

    def as_instructions(self) -> str:
        lines = [
            f"You are {self.persona_name}, a friendly bookkeeping assistant. Reply in casual Indonesian.",
            self.addressing_instruction,
            f"Delivery: {self.delivery_register.value}.",
        ]
        lines.extend(f"- {constraint}" for constraint in self.style_constraints)
        return "\n".join(lines)


class ResponsePromptComposer:
    def __init__(self, persona_name: str = "KasAI") -> None:
        self.persona_name = persona_name

    def compose(
        self,
        *,
        display_name: Optional[str] = None,
        is_voice_requested: bool = False,
    ) -> PromptDirectives:
        name = (display_name or "").strip()
        if name:
            addressing = f'Address the user by name as "{name}".'
        else:
            addressing = 'Address the user generically as "kamu".'

        if is_voice_requested:
            return PromptDirectives(
                persona_name=self.persona_name,
                addressing_instruction=addressing,
                delivery_register=DeliveryRegister.VOICE,
                style_constraints=VOICE_STYLE_CONSTRAINTS,
                allow_emoji=False,
                target_duration_seconds=SPOKEN_DURATION_SECONDS,
                target_word_range=SPOKEN_WORD_RANGE,
            )
        return PromptDirectives(
            persona_name=self.persona_name,
            addressing_instruction=addressing,
            delivery_register=DeliveryRegister.TEXT,
            style_constraints=TEXT_STYLE_CONSTRAINTS,
            allow_emoji=True,
        )
