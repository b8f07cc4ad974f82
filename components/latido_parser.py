"""
Latido Invoice Parser
=====================
Parses Latido "Honorarnoten" Excel exports.

Each invoice row counts as one session. The export carries no therapy name,
so every session gets a price marker ("__price:<amount>") that is resolved
against the therapy catalog by price at commit time.

Expected columns (matched loosely, case-insensitive):
- Rechnungsdatum: invoice date (DD.MM.YYYY, ISO or Excel serial)
- Rechnungsnummer: invoice number (used for duplicate detection)
- Gesamtbetrag (Netto) / Gesamtbetrag (Brutto): amount, net preferred
- Zahlungsstatus: payment status (Storno/Storniert = cancellation)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from components.file_reader import SourceTable, read_spreadsheet_bytes
from components.import_types import ImportFormatError, ImportIssue, SessionImportRow
from components.session_parser import parse_date, parse_number, is_blank
from components.therapy_resolution import price_marker

logger = logging.getLogger(__name__)

CANCELLED_STATUSES = ("storno", "storniert")


@dataclass
class LatidoParseResult:
    sessions: List[SessionImportRow] = field(default_factory=list)
    errors: List[ImportIssue] = field(default_factory=list)
    warnings: List[ImportIssue] = field(default_factory=list)
    rows_processed: int = 0
    summary: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors or bool(self.sessions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sessions": [s.to_dict() for s in self.sessions],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "rows_processed": self.rows_processed,
            "session_count": len(self.sessions),
            "summary": self.summary,
        }


def _find_column(headers: List[str], predicate: Callable[[str], bool]) -> int:
    for i, header in enumerate(headers):
        if predicate(header.strip().lower()):
            return i
    return -1


def _latido_columns(headers: List[str]) -> Dict[str, int]:
    columns = {
        "date": _find_column(headers, lambda h: "rechnungsdatum" in h or h in ("datum", "date")),
        "net": _find_column(headers, lambda h: "netto" in h),
        "gross": _find_column(headers, lambda h: "brutto" in h),
        "status": _find_column(headers, lambda h: "zahlungsstatus" in h or "status" in h),
        "invoice": _find_column(headers, lambda h: "rechnungsnummer" in h or "invoice" in h),
    }
    columns["amount"] = columns["net"] if columns["net"] != -1 else columns["gross"]
    return columns


def _text(row: List[Any], index: int) -> str:
    if index == -1 or index >= len(row) or is_blank(row[index]):
        return ""
    value = row[index]
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def parse_latido_table(table: SourceTable) -> LatidoParseResult:
    """Parse an already-read Latido worksheet."""
    columns = _latido_columns(table.headers)
    if columns["date"] == -1:
        raise ImportFormatError('Column "Rechnungsdatum" not found', "MISSING_COLUMN")
    if columns["amount"] == -1:
        raise ImportFormatError(
            'Column "Gesamtbetrag (Netto)" or "Gesamtbetrag (Brutto)" not found', "MISSING_COLUMN"
        )

    result = LatidoParseResult(rows_processed=len(table.rows))
    if columns["invoice"] == -1:
        result.warnings.append(ImportIssue(
            row=0, message='Column "Rechnungsnummer" not found; duplicate detection not possible',
        ))

    total_invoices = 0
    cancelled = 0
    monthly: Dict[str, Dict[str, float]] = {}

    for offset, row in enumerate(table.rows):
        row_number = table.row_number(offset)
        raw_date = row[columns["date"]] if columns["date"] < len(row) else None
        raw_amount = row[columns["amount"]] if columns["amount"] < len(row) else None

        if is_blank(raw_date) and is_blank(raw_amount):
            continue
        total_invoices += 1

        amount = parse_number(raw_amount)
        if amount is None:
            result.errors.append(ImportIssue(
                row=row_number, message=f"Invalid amount: {raw_amount}", field="amount",
            ))
            continue

        status = _text(row, columns["status"]).lower()
        if amount < 0 or status in CANCELLED_STATUSES:
            cancelled += 1
            continue

        iso_date = parse_date(raw_date, allow_serial=True)
        if iso_date is None:
            result.errors.append(ImportIssue(
                row=row_number, message=f"Invalid date: {raw_date}", field="date",
            ))
            continue

        invoice_number = _text(row, columns["invoice"]) or None
        session = SessionImportRow(
            date=iso_date,
            therapy_type=price_marker(amount),
            sessions=1,
            revenue=amount,
            invoice_number=invoice_number,
        )
        result.sessions.append(session)

        bucket = monthly.setdefault(session.month, {"sessions": 0, "revenue": 0.0})
        bucket["sessions"] += 1
        bucket["revenue"] = round(bucket["revenue"] + amount, 2)

    result.summary = {
        "total_invoices": total_invoices,
        "valid_invoices": len(result.sessions),
        "cancelled_invoices": cancelled,
        "monthly_breakdown": dict(sorted(monthly.items())),
    }
    logger.info(
        "Latido export: %d invoices, %d valid, %d cancelled, %d errors",
        total_invoices, len(result.sessions), cancelled, len(result.errors),
    )
    return result


def parse_latido_excel(data: bytes, filename: str = "latido.xlsx") -> LatidoParseResult:
    """
    Read and parse a Latido invoice export.

    Raises:
        ImportFormatError: unreadable workbook, no worksheet, or required
            columns missing.
    """
    table = read_spreadsheet_bytes(data, filename)
    return parse_latido_table(table)


def invoice_numbers(sessions: List[SessionImportRow]) -> List[str]:
    """Distinct non-empty invoice numbers, first-seen order."""
    seen: Dict[str, None] = {}
    for s in sessions:
        if s.invoice_number:
            seen.setdefault(s.invoice_number, None)
    return list(seen)

