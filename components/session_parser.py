"""
Session Row Parser
==================
Validates raw source rows against a column mapping and produces typed
SessionImportRow records.

A bad row never stops the batch: it becomes a RowError with the 1-based
source row number and the reason, and parsing moves on. Only structural
problems (incomplete mapping, mapped column missing from the file) raise.
"""

import logging
import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, List, Optional, Union

from components.column_mapper import validate_mapping
from components.file_reader import SourceTable, read_csv_text
from components.import_types import (
    CSVImportConfig,
    DEFAULT_CSV_CONFIG,
    ImportColumnMapping,
    ImportFormatError,
    ImportIssue,
    ParseResult,
    RowError,
    RowOk,
    RowOutcome,
    SessionImportRow,
)

logger = logging.getLogger(__name__)

# Days between the Excel epoch (1899-12-30) and the Unix epoch.
EXCEL_EPOCH_OFFSET_DAYS = 25569
SECONDS_PER_DAY = 86400

_ISO_RE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')
_GERMAN_RE = re.compile(r'^(\d{1,2})\.(\d{1,2})\.(\d{4})$')
_US_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
_NUMERIC_RE = re.compile(r'^-?\d+(\.\d+)?$')


# =============================================================================
# VALUE PARSERS
# =============================================================================

def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ''


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def excel_serial_to_date(serial: float) -> Optional[date]:
    """Convert an Excel serial day number to a calendar date (UTC)."""
    try:
        seconds = (float(serial) - EXCEL_EPOCH_OFFSET_DAYS) * SECONDS_PER_DAY
        if not math.isfinite(seconds):
            return None
        moment = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        return None
    return moment.date()


def _safe_date(year: str, month: str, day: str) -> Optional[date]:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def parse_date(
    value: Any,
    date_format: str = "YYYY-MM-DD",
    allow_serial: bool = False,
) -> Optional[str]:
    """
    Parse a date value to an ISO 'YYYY-MM-DD' string, or None if invalid.

    Accepts ISO and DD.MM.YYYY text always, MM/DD/YYYY text when that format
    is configured, date/datetime objects, and (for spreadsheets) Excel
    serial numbers.
    """
    if is_blank(value):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if _is_number(value):
        if not allow_serial:
            return None
        parsed = excel_serial_to_date(value)
        return parsed.isoformat() if parsed else None

    text = str(value).strip()

    m = _ISO_RE.match(text)
    if m:
        parsed = _safe_date(m.group(1), m.group(2), m.group(3))
        return parsed.isoformat() if parsed else None

    m = _GERMAN_RE.match(text)
    if m:
        day, month, year = m.groups()
        parsed = _safe_date(year, month, day)
        return parsed.isoformat() if parsed else None

    if date_format == "MM/DD/YYYY":
        m = _US_RE.match(text)
        if m:
            month, day, year = m.groups()
            parsed = _safe_date(year, month, day)
            return parsed.isoformat() if parsed else None

    if allow_serial and _NUMERIC_RE.match(text):
        parsed = excel_serial_to_date(float(text))
        return parsed.isoformat() if parsed else None

    return None


def normalize_decimal(text: str) -> str:
    """
    Normalise a German/English number string for float().

    "3,0" -> "3.0", "1.234,50" -> "1234.50", "1,234.50" -> "1234.50".
    """
    cleaned = text.strip().replace('\xa0', '').replace(' ', '')
    if ',' in cleaned and '.' in cleaned:
        if cleaned.rfind(',') > cleaned.rfind('.'):
            cleaned = cleaned.replace('.', '').replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
    else:
        cleaned = cleaned.replace(',', '.')
    return cleaned


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric cell; None when empty or not a finite number."""
    if is_blank(value):
        return None
    if _is_number(value):
        result = float(value)
    else:
        text = normalize_decimal(str(value).replace('€', ''))
        try:
            result = float(text)
        except ValueError:
            return None
    return result if math.isfinite(result) else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def parse_patient_type(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    text = str(value).strip().lower()
    if 'kasse' in text or 'gkk' in text or 'ögk' in text:
        return 'kasse'
    if 'privat' in text or 'wahl' in text:
        return 'privat'
    return None


# =============================================================================
# ROW PARSING
# =============================================================================

class _ColumnIndex:
    """Resolved header positions for a mapping."""

    def __init__(self, table: SourceTable, mapping: ImportColumnMapping):
        self.date = table.header_index(mapping.date_column)
        self.therapy = table.header_index(mapping.therapy_type_column)
        self.sessions = table.header_index(mapping.sessions_column)
        self.revenue = table.header_index(mapping.revenue_column) if mapping.revenue_column else -1
        self.patient_type = table.header_index(mapping.patient_type_column) if mapping.patient_type_column else -1
        self.notes = table.header_index(mapping.notes_column) if mapping.notes_column else -1


def _cell(row: List[Any], index: int) -> Any:
    if index < 0 or index >= len(row):
        return None
    return row[index]


def parse_row(
    row: List[Any],
    row_number: int,
    columns: _ColumnIndex,
    config: CSVImportConfig,
    allow_serial: bool,
) -> RowOutcome:
    """Parse one raw row into RowOk or RowError."""
    raw_date = _cell(row, columns.date)
    if is_blank(raw_date):
        return RowError(row_number, 'Date is required', field='date')
    iso_date = parse_date(raw_date, config.date_format, allow_serial=allow_serial)
    if iso_date is None:
        return RowError(row_number, f'Invalid date format: "{raw_date}"', field='date', raw=str(raw_date))

    raw_therapy = _cell(row, columns.therapy)
    therapy_type = '' if is_blank(raw_therapy) else str(raw_therapy).strip()
    if not therapy_type:
        return RowError(row_number, 'Therapy type is required', field='therapy_type')

    raw_sessions = _cell(row, columns.sessions)
    if is_blank(raw_sessions):
        return RowError(row_number, 'Sessions count is required', field='sessions')
    sessions_value = parse_number(raw_sessions)
    if sessions_value is None or sessions_value < 0:
        return RowError(
            row_number, f'Invalid sessions count: "{raw_sessions}"', field='sessions', raw=str(raw_sessions)
        )
    sessions = round_half_up(sessions_value)

    warnings = []
    revenue = None
    raw_revenue = _cell(row, columns.revenue)
    if not is_blank(raw_revenue):
        revenue = parse_number(raw_revenue)
        if revenue is None:
            warnings.append(ImportIssue(
                row=row_number,
                message=f'Invalid revenue format, will be calculated: "{raw_revenue}"',
                field='revenue',
                data={'raw': str(raw_revenue)},
            ))
        elif revenue < 0:
            warnings.append(ImportIssue(
                row=row_number,
                message=f'Negative revenue ignored, will be calculated: "{raw_revenue}"',
                field='revenue',
                data={'raw': str(raw_revenue)},
            ))
            revenue = None

    raw_notes = _cell(row, columns.notes)
    notes = None if is_blank(raw_notes) else str(raw_notes).strip()

    record = SessionImportRow(
        date=iso_date,
        therapy_type=therapy_type,
        sessions=sessions,
        revenue=revenue,
        patient_type=parse_patient_type(_cell(row, columns.patient_type)),
        notes=notes,
    )
    return RowOk(row_number, record, tuple(warnings))


def parse_session_rows(
    table: SourceTable,
    mapping: ImportColumnMapping,
    config: CSVImportConfig = DEFAULT_CSV_CONFIG,
) -> ParseResult:
    """
    Parse every data row of `table`.

    Raises:
        ImportFormatError: mapping incomplete or a mapped column is absent.
    """
    ok, messages = validate_mapping(mapping, table.headers)
    if not ok:
        raise ImportFormatError('; '.join(messages), 'INVALID_MAPPING')

    columns = _ColumnIndex(table, mapping)
    result = ParseResult()

    for offset, row in enumerate(table.rows):
        row_number = table.row_number(offset)
        try:
            outcome = parse_row(row, row_number, columns, config, allow_serial=table.is_spreadsheet)
        except Exception as e:
            logger.debug("Unexpected failure parsing row %d", row_number, exc_info=True)
            outcome = RowError(row_number, f'Could not parse row: {e}', raw=[str(c) for c in row])

        if isinstance(outcome, RowOk):
            result.rows.append(outcome.record)
            result.warnings.extend(outcome.warnings)
        else:
            result.errors.append(outcome.to_issue())

    for bad in table.bad_lines:
        result.errors.append(RowError(
            bad.line,
            f'Unexpected number of columns: expected {table.width}, found {len(bad.cells)}',
            raw=bad.cells,
        ).to_issue())
    result.errors.sort(key=lambda issue: issue.row)

    logger.info(
        "Parsed %d rows: %d valid, %d errors, %d warnings",
        len(table.rows) + len(table.bad_lines), len(result.rows), len(result.errors), len(result.warnings),
    )
    return result


def parse_session_import(
    content: Union[str, bytes],
    mapping: ImportColumnMapping,
    config: CSVImportConfig = DEFAULT_CSV_CONFIG,
) -> ParseResult:
    """Read CSV content and parse it in one step."""
    table = read_csv_text(content, config)
    return parse_session_rows(table, mapping, config)
