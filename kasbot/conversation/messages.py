from __future__ import annotations

import textwrap
from typing import Optional

from ..models.debt_receivable import DebtDirection
from ..schemas.debt_receivable import MAX_DESCRIPTION_LENGTH, MAX_NAME_LENGTH
from .extraction import ExtractionFailureReason, TransactionFields
from .phone import PHONE_FORMAT_HINT

DIRECTION_LABELS: dict[DebtDirection, str] = {
    DebtDirection.RECEIVABLE: "Piutang",
    DebtDirection.DEBT: "Hutang",
}

EXAMPLES = (
    '• "Piutang Budi beli pulsa 50rb"\n'
    '• "Hutang ke Bu Sari 1,5jt buat modal"'
)

RETRY_HINTS: dict[ExtractionFailureReason, str] = {
    ExtractionFailureReason.MISSING_DIRECTION: (
        "Ini piutang (orang lain berutang ke kamu) atau hutang (kamu berutang)? "
        "Sebutkan kata *piutang* atau *hutang* ya."
    ),
    ExtractionFailureReason.MISSING_COUNTERPARTY: "Siapa nama orangnya? Tulis nama setelah kata piutang/hutang.",
    ExtractionFailureReason.MISSING_AMOUNT: "Berapa nominalnya? Contoh: 200K, 50rb, 1,5jt atau 250000.",
}

GENERIC_FAILURE_LEAD = "🤔 Maaf, saya belum bisa memahami pesan itu."

HELP_TEXT = textwrap.dedent(
    f"""
    📒 Cara mencatat:
    Kirim satu pesan berisi piutang/hutang, nama, barang (opsional) dan nominal.
    {EXAMPLES}

    Setelah itu saya minta nomor HP orangnya. Balas "tidak" kalau tidak ada.
    Ketik "batal" kapan saja untuk membatalkan.

    Perintah lain:
    /daftar - lihat catatan yang belum lunas
    /ringkasan - total piutang dan hutang
    /lunas <id> - tandai catatan sudah lunas

    Mau dibalas pakai suara? Tambahkan "pake suara" di pesanmu 🎙️
    """
).strip()


def format_rupiah(amount: int) -> str:
    return "Rp " + f"{int(amount):,}".replace(",", ".")


def describe_transaction(fields: TransactionFields) -> str:
    label = DIRECTION_LABELS.get(fields.direction, "Catatan")
    lines = [
        f"📝 {label}",
        f"👤 Nama: {fields.counterparty_name}",
    ]
    if fields.item_description:
        lines.append(f"🛒 Keterangan: {fields.item_description}")
    lines.append(f"💰 Nominal: {format_rupiah(fields.amount or 0)}")
    return "\n".join(lines)


def phone_request(fields: TransactionFields) -> str:
    return (
        f"{describe_transaction(fields)}\n\n"
        f"📱 Nomor HP {fields.counterparty_name}? Format {PHONE_FORMAT_HINT}.\n"
        'Balas "tidak" kalau tidak ada, atau "batal" untuk membatalkan.'
    )


def invalid_phone(reason: str) -> str:
    return (
        f"⚠️ Nomor HP belum valid. {reason}\n"
        'Balas "tidak" kalau tidak ada, atau "batal" untuk membatalkan.'
    )


def saved(fields: TransactionFields, phone: Optional[str], record_id: Optional[str] = None) -> str:
    label = DIRECTION_LABELS.get(fields.direction, "Catatan")
    lines = [f"✅ {label} berhasil dicatat!", describe_transaction(fields)]
    lines.append(f"📱 HP: {phone}" if phone else "📱 HP: -")
    if record_id:
        lines.append(f"🆔 {record_id}")
    return "\n".join(lines)


def save_failed() -> str:
    return (
        "😥 Catatan belum bisa disimpan karena server sedang bermasalah. "
        "Kirim ulang nomor HP (atau \"tidak\") untuk mencoba lagi, atau \"batal\" untuk membatalkan."
    )


def cancelled() -> str:
    return "🚫 Oke, catatan dibatalkan."


def nothing_to_cancel() -> str:
    return "👌 Tidak ada catatan yang sedang diproses."


def invalid_amount() -> str:
    return f"⚠️ Nominal harus lebih dari nol. Kirim ulang catatannya ya.\n{EXAMPLES}"


def invalid_name() -> str:
    return (
        f"⚠️ Nama orangnya belum valid (maksimal {MAX_NAME_LENGTH} karakter). "
        f"Kirim ulang catatannya ya.\n{EXAMPLES}"
    )


def description_too_long() -> str:
    return (
        f"⚠️ Keterangan terlalu panjang (maksimal {MAX_DESCRIPTION_LENGTH} karakter). "
        "Kirim ulang catatannya dengan keterangan yang lebih singkat ya."
    )


FIELD_ERROR_REPLIES = {
    "amount": invalid_amount,
    "counterparty_name": invalid_name,
    "item_description": description_too_long,
}


def invalid_record(field: Optional[str]) -> str:
    reply = FIELD_ERROR_REPLIES.get(field or "")
    if reply is not None:
        return reply()
    return f"⚠️ Catatan belum bisa diproses. Kirim ulang catatannya ya.\n{EXAMPLES}"


def known_phone_hint(phone: str) -> str:
    return f'📇 Nomor tersimpan: {phone}. Balas "pakai" untuk memakainya lagi.'


def extraction_retry(reason: ExtractionFailureReason, *, parser_unavailable: bool = False) -> str:
    hint = RETRY_HINTS.get(reason, "Coba tulis ulang dengan format di bawah ini.")
    lines = []
    if parser_unavailable:
        lines.append(GENERIC_FAILURE_LEAD)
    lines.append(f"🤔 {hint}" if not parser_unavailable else hint)
    lines.append(f"Contoh:\n{EXAMPLES}")
    return "\n".join(lines)
