"""
Unit Tests for the Session Row Parser
=====================================
"""

from datetime import date, datetime

import pytest

from components.column_mapper import STANDARD_COLUMN_MAPPING
from components.file_reader import SourceTable
from components.import_types import CSVImportConfig, ImportColumnMapping, ImportFormatError, SessionImportRow
from components.session_parser import (
    excel_serial_to_date,
    normalize_decimal,
    parse_date,
    parse_number,
    parse_patient_type,
    parse_session_import,
    parse_session_rows,
    round_half_up,
)

HEADER = "Date,Therapy Type,Sessions,Revenue,Patient Type,Notes\n"


def _csv(*lines):
    return HEADER + "\n".join(lines) + "\n"


class TestParseDate:
    """Test suite for date parsing."""

    def test_iso_and_german_are_equal(self):
        assert parse_date("2024-03-15") == "2024-03-15"
        assert parse_date("15.03.2024") == "2024-03-15"

    def test_german_without_leading_zeros(self):
        assert parse_date("1.3.2024") == "2024-03-01"

    def test_impossible_dates(self):
        assert parse_date("31.02.2024") is None
        assert parse_date("2024-13-01") is None

    def test_garbage(self):
        assert parse_date("not-a-date") is None
        assert parse_date("") is None
        assert parse_date(None) is None

    def test_us_format_only_when_configured(self):
        assert parse_date("03/15/2024") is None
        assert parse_date("03/15/2024", "MM/DD/YYYY") == "2024-03-15"

    def test_date_objects(self):
        assert parse_date(datetime(2024, 3, 15, 14, 30)) == "2024-03-15"
        assert parse_date(date(2024, 3, 15)) == "2024-03-15"

    def test_excel_serial_only_when_allowed(self):
        assert parse_date(45366, allow_serial=True) == "2024-03-15"
        assert parse_date(45366.75, allow_serial=True) == "2024-03-15"
        assert parse_date("45366", allow_serial=True) == "2024-03-15"
        assert parse_date(45366) is None
        assert parse_date("45366") is None

    def test_excel_serial_to_date(self):
        assert excel_serial_to_date(25569) == date(1970, 1, 1)
        assert excel_serial_to_date(float("inf")) is None


class TestParseNumber:
    """Test suite for numeric cells."""

    @pytest.mark.parametrize("text,expected", [
        ("3,0", "3.0"),
        ("1.234,50", "1234.50"),
        ("1,234.50", "1234.50"),
        ("80", "80"),
    ])
    def test_normalize_decimal(self, text, expected):
        assert normalize_decimal(text) == expected

    def test_parse_number(self):
        assert parse_number("3,0") == 3.0
        assert parse_number("€ 80,00") == 80.0
        assert parse_number(12) == 12.0
        assert parse_number("abc") is None
        assert parse_number("") is None
        assert parse_number(float("nan")) is None
        assert parse_number("inf") is None

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4) == 2
        assert round_half_up(0.5) == 1

    def test_patient_type(self):
        assert parse_patient_type("Kasse") == "kasse"
        assert parse_patient_type("ÖGK") == "kasse"
        assert parse_patient_type("Wahlarzt") == "privat"
        assert parse_patient_type("privat") == "privat"
        assert parse_patient_type("sonstige") is None
        assert parse_patient_type("") is None


class TestParseSessionImport:
    """Test suite for parsing whole CSV batches."""

    def test_clean_rows(self):
        content = _csv(
            "2024-03-01,Massage,5,,kasse,",
            "15.03.2024,Massage,3,180,,Erstgespräch",
        )
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)

        assert result.errors == []
        assert result.rows == [
            SessionImportRow(date="2024-03-01", therapy_type="Massage", sessions=5, patient_type="kasse"),
            SessionImportRow(date="2024-03-15", therapy_type="Massage", sessions=3, revenue=180.0,
                             notes="Erstgespräch"),
        ]

    def test_german_decimal_sessions(self):
        result = parse_session_import(_csv('2024-03-01,Massage,"3,0",,,'), STANDARD_COLUMN_MAPPING)
        assert result.rows[0].sessions == 3

    def test_fractional_sessions_round_half_up(self):
        result = parse_session_import(_csv("2024-03-01,Massage,2.5,,,", "2024-03-02,Massage,2.4,,,"),
                                      STANDARD_COLUMN_MAPPING)
        assert [r.sessions for r in result.rows] == [3, 2]

    def test_invalid_date_reports_row_and_value(self):
        content = _csv("2024-03-01,Massage,5,,,", "not-a-date,Massage,2,,,")
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)

        assert len(result.rows) == 1
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.row == 3
        assert error.field == "date"
        assert error.message == 'Invalid date format: "not-a-date"'

    def test_required_fields(self):
        content = _csv(",Massage,5,,,", "2024-03-01,,5,,,", "2024-03-01,Massage,,,,")
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)

        assert result.rows == []
        assert [e.message for e in result.errors] == [
            "Date is required",
            "Therapy type is required",
            "Sessions count is required",
        ]
        assert [e.row for e in result.errors] == [2, 3, 4]

    def test_negative_and_non_numeric_sessions(self):
        content = _csv("2024-03-01,Massage,-1,,,", "2024-03-01,Massage,viele,,,")
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        assert result.rows == []
        assert result.errors[0].message == 'Invalid sessions count: "-1"'
        assert result.errors[1].field == "sessions"

    def test_zero_sessions_is_valid(self):
        result = parse_session_import(_csv("2024-03-01,Massage,0,,,"), STANDARD_COLUMN_MAPPING)
        assert result.rows[0].sessions == 0

    def test_bad_revenue_is_a_warning(self):
        result = parse_session_import(_csv("2024-03-01,Massage,5,abc,,"), STANDARD_COLUMN_MAPPING)

        assert len(result.rows) == 1
        assert result.rows[0].revenue is None
        assert result.errors == []
        assert result.warnings[0].field == "revenue"
        assert result.warnings[0].message == 'Invalid revenue format, will be calculated: "abc"'

    def test_negative_revenue_is_ignored(self):
        result = parse_session_import(_csv("2024-03-01,Massage,5,-20,,"), STANDARD_COLUMN_MAPPING)
        assert result.rows[0].revenue is None
        assert len(result.warnings) == 1

    def test_parsing_is_deterministic(self):
        content = _csv("2024-03-01,Massage,5,,,", "bad,Massage,2,,,", "2024-03-02,Massage,x,,,")
        first = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        second = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        assert first == second

    def test_each_row_is_valid_or_error(self):
        content = _csv("2024-03-01,Massage,5,,,", "bad,Massage,2,,,", "2024-03-02,Massage,1,zz,,")
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        assert len(result.rows) + len(result.errors) == 3

    def test_semicolon_german_export(self):
        content = "Datum;Leistung;Anzahl\n15.03.2024;Massage;2\n"
        mapping = ImportColumnMapping(date_column="Datum", therapy_type_column="Leistung", sessions_column="Anzahl")
        result = parse_session_import(content, mapping, CSVImportConfig(delimiter=";"))
        assert result.rows == [SessionImportRow(date="2024-03-15", therapy_type="Massage", sessions=2)]

    def test_line_with_extra_cells_is_a_row_error(self):
        content = "Date,Therapy Type,Sessions\n2024-03-01,Massage,5\n2024-03-02,Massage,3,oops\n2024-03-15,Massage,3\n"
        mapping = ImportColumnMapping(date_column="Date", therapy_type_column="Therapy Type",
                                      sessions_column="Sessions")
        result = parse_session_import(content, mapping)

        assert [r.date for r in result.rows] == ["2024-03-01", "2024-03-15"]
        assert len(result.errors) == 1
        assert result.errors[0].row == 3
        assert result.errors[0].message == "Unexpected number of columns: expected 3, found 4"
        assert result.errors[0].data == {"raw": ["2024-03-02", "Massage", "3", "oops"]}

    def test_errors_stay_in_line_order(self):
        content = _csv("bad,Massage,1,,,", "2024-03-01,Massage,1,,,,,extra", "2024-03-02,Massage,x,,,")
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        assert [e.row for e in result.errors] == [2, 3, 4]

    def test_row_numbers_count_blank_lines(self):
        content = HEADER + "2024-03-01,Massage,5,,,\n\nnot-a-date,Massage,5,,,\n"
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        assert result.errors[0].row == 4

    def test_warning_after_blank_line_uses_source_line(self):
        content = HEADER + "\n\n2024-03-01,Massage,5,zz,,\n"
        result = parse_session_import(content, STANDARD_COLUMN_MAPPING)
        assert result.warnings[0].row == 4

    def test_without_header_rows_start_at_one(self):
        mapping = ImportColumnMapping(date_column="Column 1", therapy_type_column="Column 2", sessions_column="Column 3")
        result = parse_session_import("bad,Massage,1\n", mapping, CSVImportConfig(has_header=False))
        assert result.errors[0].row == 1

    def test_incomplete_mapping_raises(self):
        mapping = ImportColumnMapping(date_column="Date", therapy_type_column="Therapy Type")
        with pytest.raises(ImportFormatError) as exc:
            parse_session_import(_csv("2024-03-01,Massage,5,,,"), mapping)
        assert exc.value.error_code == "INVALID_MAPPING"

    def test_mapped_column_missing_from_file_raises(self):
        mapping = ImportColumnMapping(date_column="Datum", therapy_type_column="Therapy Type", sessions_column="Sessions")
        with pytest.raises(ImportFormatError) as exc:
            parse_session_import(_csv("2024-03-01,Massage,5,,,"), mapping)
        assert exc.value.error_code == "INVALID_MAPPING"
        assert "Datum" in exc.value.message


class TestParseSpreadsheetRows:
    """Spreadsheet cells keep native types; serial dates are accepted."""

    MAPPING = ImportColumnMapping(date_column="Datum", therapy_type_column="Leistung", sessions_column="Anzahl")

    def test_serial_and_datetime_cells(self):
        table = SourceTable(
            headers=["Datum", "Leistung", "Anzahl"],
            rows=[[45366, "Massage", 2], [datetime(2024, 3, 16), "Massage", 1.0]],
            source_kind="spreadsheet",
        )
        result = parse_session_rows(table, self.MAPPING)
        assert [r.date for r in result.rows] == ["2024-03-15", "2024-03-16"]
        assert [r.sessions for r in result.rows] == [2, 1]

    def test_serial_strings_rejected_in_csv(self):
        table = SourceTable(headers=["Datum", "Leistung", "Anzahl"], rows=[["45366", "Massage", "2"]])
        result = parse_session_rows(table, self.MAPPING)
        assert result.rows == []
        assert result.errors[0].message == 'Invalid date format: "45366"'

    def test_short_rows_are_errors_not_crashes(self):
        table = SourceTable(headers=["Datum", "Leistung", "Anzahl"], rows=[["2024-03-01"]])
        result = parse_session_rows(table, self.MAPPING)
        assert result.errors[0].message == "Therapy type is required"
