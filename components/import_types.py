"""
Import Types
============
Shared data structures for the session import pipeline.

Rows arrive from CSV text or spreadsheets as loose strings/numbers; everything
downstream of the row parser works with the typed records defined here.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Union


PRICE_MARKER_PREFIX = "__price:"

REQUIRED_MAPPING_FIELDS = ("date_column", "therapy_type_column", "sessions_column")


class MergeMode(str, Enum):
    """How imported sessions combine with the stored actual_sessions."""
    REPLACE = "replace"
    ADD = "add"


def month_start(month: str) -> str:
    """'YYYY-MM' or 'YYYY-MM-DD' -> 'YYYY-MM-01' (value of the month DATE column)."""
    return f"{month[:7]}-01"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ImportFormatError(Exception):
    """Raised when a source file or mapping cannot be used at all."""

    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class PlanStoreError(Exception):
    """Raised by the monthly plan store when a read or write fails."""


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class CSVImportConfig:
    """Format options for a CSV source."""
    has_header: bool = True
    delimiter: str = ","
    encoding: str = "utf-8"
    date_format: str = "YYYY-MM-DD"

    VALID_DELIMITERS = (",", ";", "\t")
    VALID_ENCODINGS = ("utf-8", "latin1")
    VALID_DATE_FORMATS = ("DD.MM.YYYY", "YYYY-MM-DD", "MM/DD/YYYY")

    def __post_init__(self):
        if self.delimiter not in self.VALID_DELIMITERS:
            raise ImportFormatError(f"Unsupported delimiter: {self.delimiter!r}", "INVALID_CONFIG")
        if self.encoding not in self.VALID_ENCODINGS:
            raise ImportFormatError(f"Unsupported encoding: {self.encoding!r}", "INVALID_CONFIG")
        if self.date_format not in self.VALID_DATE_FORMATS:
            raise ImportFormatError(f"Unsupported date format: {self.date_format!r}", "INVALID_CONFIG")


DEFAULT_CSV_CONFIG = CSVImportConfig()


@dataclass
class ImportColumnMapping:
    """Source header name per semantic field. Empty string = not mapped."""
    date_column: str = ""
    therapy_type_column: str = ""
    sessions_column: str = ""
    revenue_column: Optional[str] = None
    patient_type_column: Optional[str] = None
    notes_column: Optional[str] = None

    def is_complete(self) -> bool:
        return all(getattr(self, name) for name in REQUIRED_MAPPING_FIELDS)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportColumnMapping":
        known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)


# =============================================================================
# ROWS AND PARSE RESULTS
# =============================================================================

@dataclass(frozen=True)
class SessionImportRow:
    """One validated source row."""
    date: str  # YYYY-MM-DD
    therapy_type: str
    sessions: int
    revenue: Optional[float] = None
    patient_type: Optional[str] = None  # 'kasse' | 'privat'
    notes: Optional[str] = None
    invoice_number: Optional[str] = None

    @property
    def month(self) -> str:
        return self.date[:7]

    @property
    def is_price_marker(self) -> bool:
        return self.therapy_type.startswith(PRICE_MARKER_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionImportRow":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class ImportIssue:
    """A row-level error or warning. Row 0 means 'not tied to a row'."""
    row: int
    message: str
    field: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class RowOk:
    row: int
    record: SessionImportRow
    warnings: tuple = ()


@dataclass(frozen=True)
class RowError:
    row: int
    message: str
    field: Optional[str] = None
    raw: Any = None

    def to_issue(self) -> ImportIssue:
        data = {"raw": self.raw} if self.raw is not None else None
        return ImportIssue(row=self.row, message=self.message, field=self.field, data=data)


RowOutcome = Union[RowOk, RowError]


@dataclass
class ParseResult:
    rows: List[SessionImportRow] = field(default_factory=list)
    errors: List[ImportIssue] = field(default_factory=list)
    warnings: List[ImportIssue] = field(default_factory=list)


@dataclass
class ImportPreview:
    valid_rows: int = 0
    invalid_rows: int = 0
    total_sessions: int = 0
    total_revenue: float = 0.0
    date_range: Dict[str, str] = field(default_factory=lambda: {"start": "", "end": ""})
    therapy_types_found: List[str] = field(default_factory=list)
    sample_rows: List[SessionImportRow] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["sample_rows"] = [r.to_dict() for r in self.sample_rows]
        return d


# =============================================================================
# CATALOG AND RESOLUTION
# =============================================================================

@dataclass(frozen=True)
class TherapyType:
    id: str
    name: str
    price_per_session: float = 0.0
    variable_cost_per_session: float = 0.0

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TherapyType":
        return cls(
            id=str(record["id"]),
            name=str(record.get("name") or ""),
            price_per_session=float(record.get("price_per_session") or 0),
            variable_cost_per_session=float(record.get("variable_cost_per_session") or 0),
        )


@dataclass
class TherapyResolution:
    matched: Dict[str, TherapyType] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)

    def lookup(self, name: str) -> Optional[TherapyType]:
        hit = self.matched.get(name)
        if hit is not None:
            return hit
        key = name.strip().lower()
        for source_name, therapy in self.matched.items():
            if source_name.strip().lower() == key:
                return therapy
        return None


# =============================================================================
# COMMIT RESULT
# =============================================================================

@dataclass
class GroupOutcome:
    month: str
    therapy_type_id: str
    actual_sessions: int
    revenue: float
    row_count: int
    status: str = "pending"  # 'imported' | 'error'
    error: Optional[str] = None


@dataclass
class ImportResult:
    success: bool = True
    imported_count: int = 0
    skipped_count: int = 0
    duplicate_count: int = 0
    errors: List[ImportIssue] = field(default_factory=list)
    warnings: List[ImportIssue] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    imported_months: List[str] = field(default_factory=list)
    groups: List[GroupOutcome] = field(default_factory=list)

    @property
    def imported_groups(self) -> int:
        return sum(1 for g in self.groups if g.status == "imported")

    @property
    def errored_groups(self) -> int:
        return sum(1 for g in self.groups if g.status == "error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "imported_count": self.imported_count,
            "skipped_count": self.skipped_count,
            "duplicate_count": self.duplicate_count,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "missing": list(self.missing),
            "imported_months": list(self.imported_months),
            "groups": [asdict(g) for g in self.groups],
        }
