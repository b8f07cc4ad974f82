"""
Source File Reader
==================
Turns uploaded CSV text or spreadsheet bytes into a header list plus raw rows.

Rows are returned as plain lists so the row parser can address cells by the
header index chosen in the column mapping. CSV cells are always strings;
spreadsheet cells keep their native type (numbers, datetimes) so that Excel
serial dates can be recognised later.
"""

import io
import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, List, Tuple, Union

import pandas as pd

from components.import_types import CSVImportConfig, DEFAULT_CSV_CONFIG, ImportFormatError

logger = logging.getLogger(__name__)

SPREADSHEET_ENGINES = {
    ".xlsx": "openpyxl",
    ".xls": "xlrd",
}

# Placeholder cell left where pandas drops an over-long line
_BAD_LINE_MARKER = "\x00bad-line:"

NumberedRow = Tuple[int, List[Any]]


@dataclass
class BadLine:
    """A CSV line with more cells than the header row."""
    line: int
    cells: List[str]


@dataclass
class SourceTable:
    headers: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)
    source_kind: str = "csv"  # 'csv' | 'spreadsheet'
    has_header: bool = True
    line_numbers: List[int] = field(default_factory=list)
    bad_lines: List[BadLine] = field(default_factory=list)

    @property
    def is_spreadsheet(self) -> bool:
        return self.source_kind == "spreadsheet"

    @property
    def width(self) -> int:
        return len(self.headers)

    def row_number(self, offset: int) -> int:
        """1-based source line of data row `offset`."""
        if offset < len(self.line_numbers):
            return self.line_numbers[offset]
        return offset + (2 if self.has_header else 1)

    def header_index(self, header: str) -> int:
        """Index of the first header equal to `header`, or -1."""
        for i, h in enumerate(self.headers):
            if h == header:
                return i
        return -1


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    return str(value).strip() == ""


def _clean_cell(value: Any) -> Any:
    if _is_blank(value):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    # numpy scalars -> python scalars
    if hasattr(value, "item") and callable(value.item):
        try:
            return value.item()
        except (ValueError, TypeError):
            return value
    return value


def _decode(content: Union[str, bytes], encoding: str) -> str:
    if isinstance(content, str):
        return content.lstrip("﻿")
    codec = "utf-8-sig" if encoding == "utf-8" else encoding
    try:
        return content.decode(codec)
    except UnicodeDecodeError as e:
        raise ImportFormatError(
            f"File is not valid {encoding} text: {e}", "UNREADABLE_FILE"
        ) from e


def _synthetic_headers(width: int) -> List[str]:
    return [f"Column {i}" for i in range(1, width + 1)]


def read_csv_text(
    content: Union[str, bytes],
    config: CSVImportConfig = DEFAULT_CSV_CONFIG,
) -> SourceTable:
    """
    Read CSV content using the configured delimiter.

    Blank lines are dropped but still counted, so every row keeps its source
    line number. Lines with more cells than the first line are set aside in
    `bad_lines` instead of failing the file. Without a header row, headers
    are named "Column 1".."Column N" so mappings still work by name.
    """
    text = _decode(content, config.encoding)
    if not text.strip():
        raise ImportFormatError("The file is empty", "EMPTY_FILE")

    # The first non-blank line fixes the column count
    lines = text.split("\n")
    leading_blank = next(i for i, line in enumerate(lines) if line.strip())
    text = "\n".join(lines[leading_blank:])

    held: List[List[str]] = []

    def _hold_bad_line(cells: List[str]) -> List[str]:
        held.append([str(c).strip() for c in cells])
        return [f"{_BAD_LINE_MARKER}{len(held) - 1}"]

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=config.delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            engine="python",
            on_bad_lines=_hold_bad_line,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ImportFormatError(f"Could not read CSV: {e}", "UNREADABLE_FILE") from e

    numbered: List[NumberedRow] = []
    bad_lines: List[BadLine] = []
    for index, row in enumerate(df.itertuples(index=False, name=None)):
        line = leading_blank + index + 1
        first = row[0] if row else None
        if isinstance(first, str) and first.startswith(_BAD_LINE_MARKER):
            bad_lines.append(BadLine(line=line, cells=held[int(first[len(_BAD_LINE_MARKER):])]))
            continue
        cells = [_clean_cell(v) for v in row]
        if not all(_is_blank(v) for v in cells):
            numbered.append((line, cells))

    if bad_lines:
        logger.warning("%d CSV line(s) have more cells than the header", len(bad_lines))

    table = _build_table(numbered, config.has_header, source_kind="csv")
    table.bad_lines = bad_lines
    return table


def read_spreadsheet_bytes(data: bytes, filename: str) -> SourceTable:
    """
    Read the first worksheet of an .xlsx/.xls file. The first row is the header.
    """
    suffix = PurePath(filename or "").suffix.lower()
    engine = SPREADSHEET_ENGINES.get(suffix)
    if engine is None:
        raise ImportFormatError(
            f"Unsupported file type '{suffix or filename}'. Use .xlsx or .xls", "UNSUPPORTED_FILE"
        )

    try:
        workbook = pd.ExcelFile(io.BytesIO(data), engine=engine)
    except Exception as e:
        raise ImportFormatError(f"Could not open spreadsheet: {e}", "UNREADABLE_FILE") from e

    if not workbook.sheet_names:
        raise ImportFormatError("No worksheet found in the spreadsheet", "NO_WORKSHEET")

    try:
        df = workbook.parse(workbook.sheet_names[0], header=None)
    except Exception as e:
        raise ImportFormatError(f"Could not read worksheet: {e}", "UNREADABLE_FILE") from e

    numbered = [
        (index + 1, [_clean_cell(v) for v in row])
        for index, row in enumerate(df.itertuples(index=False, name=None))
    ]
    numbered = [(n, r) for n, r in numbered if not all(_is_blank(v) for v in r)]

    if len(numbered) < 2:
        raise ImportFormatError(
            "The spreadsheet needs a header row and at least one data row", "EMPTY_FILE"
        )

    logger.debug("Read %d rows from sheet %r of %s", len(numbered) - 1, workbook.sheet_names[0], filename)
    return _build_table(numbered, has_header=True, source_kind="spreadsheet")


def read_upload(data: bytes, filename: str, config: CSVImportConfig = DEFAULT_CSV_CONFIG) -> SourceTable:
    """Dispatch on file extension: .csv/.txt go through the CSV reader."""
    suffix = PurePath(filename or "").suffix.lower()
    if suffix in SPREADSHEET_ENGINES:
        return read_spreadsheet_bytes(data, filename)
    if suffix in (".csv", ".txt", ""):
        return read_csv_text(data, config)
    raise ImportFormatError(
        f"Unsupported file type '{suffix}'. Use .csv, .xlsx or .xls", "UNSUPPORTED_FILE"
    )


def _build_table(numbered: List[NumberedRow], has_header: bool, source_kind: str) -> SourceTable:
    if not numbered:
        raise ImportFormatError("The file contains no rows", "EMPTY_FILE")

    width = max(len(r) for _, r in numbered)
    padded = [(n, list(r) + [""] * (width - len(r))) for n, r in numbered]

    if has_header:
        headers = [str(h).strip() for h in padded[0][1]]
        if not any(headers):
            raise ImportFormatError("The header row is empty", "EMPTY_FILE")
        body = padded[1:]
    else:
        headers = _synthetic_headers(width)
        body = padded

    return SourceTable(
        headers=headers,
        rows=[r for _, r in body],
        source_kind=source_kind,
        has_header=has_header,
        line_numbers=[n for n, _ in body],
    )
