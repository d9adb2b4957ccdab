from __future__ import annotations

from uuid import UUID

from ..conversation.messages import DIRECTION_LABELS, format_rupiah
from ..models.debt_receivable import DebtDirection
from ..schemas.debt_receivable import DebtReceivableRead, DebtReceivableSummary

DIRECTION_MARKERS: dict[DebtDirection, str] = {
    DebtDirection.RECEIVABLE: "🟢",
    DebtDirection.DEBT: "🔴",
}


def parse_record_id(raw: str) -> UUID:
    try:
        return UUID(raw.strip())
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"ID '{raw}' tidak valid.") from exc


def format_record_line(record: DebtReceivableRead) -> str:
    marker = DIRECTION_MARKERS.get(record.direction, "•")
    label = DIRECTION_LABELS.get(record.direction, record.direction.value)
    parts = [f"{marker} {label} {record.counterparty_name}: {format_rupiah(record.amount)}"]
    if record.description:
        parts.append(f"({record.description})")
    return " ".join(parts) + f"\n   🆔 {record.id}"


def format_record_list(records: list[DebtReceivableRead]) -> str:
    if not records:
        return "🎉 Tidak ada piutang atau hutang yang belum lunas."
    lines = ["📒 Catatan belum lunas:"]
    lines.extend(format_record_line(record) for record in records)
    lines.append("\nTandai lunas dengan /lunas <id>.")
    return "\n".join(lines)


def format_summary(summary: DebtReceivableSummary) -> str:
    net = summary.net_balance
    sign = "+" if net > 0 else ("-" if net < 0 else "")
    return "\n".join(
        [
            "📊 Ringkasan:",
            f"🟢 Piutang: {format_rupiah(summary.total_receivable)} ({summary.count_receivable} catatan)",
            f"🔴 Hutang: {format_rupiah(summary.total_debt)} ({summary.count_debt} catatan)",
            f"⚖️ Selisih: {sign}{format_rupiah(abs(net))}",
        ]
    )
