from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

DECLINE_TOKENS = frozenset({"", "tidak", "tidak ada", "no", "n"})

PHONE_FORMAT_HINT = "08xxxxxxxxxx atau +628xxxxxxxxx (9-13 digit setelah awalan)"

_LOCAL_RE = re.compile(r"^0(\d{9,13})$")
_INTERNATIONAL_RE = re.compile(r"^\+?62(\d{9,13})$")


@dataclass(frozen=True)
class PhoneValid:
    normalized: str

    ok: ClassVar[bool] = True
    explicit_none: ClassVar[bool] = False


@dataclass(frozen=True)
class PhoneDeclined:
    """The user chose not to give a number; a valid terminal answer."""

    ok: ClassVar[bool] = True
    explicit_none: ClassVar[bool] = True

    @property
    def normalized(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class PhoneInvalid:
    reason: str

    ok: ClassVar[bool] = False
    explicit_none: ClassVar[bool] = False


PhoneResult = Union[PhoneValid, PhoneDeclined, PhoneInvalid]


def validate_phone(raw: Optional[str]) -> PhoneResult:
    """Normalise an Indonesian mobile number to ``+62…`` or recognise a decline."""
    text = (raw or "").strip()
    if text.lower() in DECLINE_TOKENS:
        return PhoneDeclined()

    compact = re.sub(r"[^\d+]", "", text)
    digits = compact.replace("+", "")
    candidate = f"+{digits}" if compact.startswith("+") else digits

    match = _LOCAL_RE.match(candidate) or _INTERNATIONAL_RE.match(candidate)
    if match:
        return PhoneValid(normalized=f"+62{match.group(1)}")
    return PhoneInvalid(reason=f"Nomor harus berformat {PHONE_FORMAT_HINT}.")
