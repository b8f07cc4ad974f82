"""
Unit Tests for Import Preview
=============================
"""

from components.import_preview import SAMPLE_SIZE, generate_import_preview
from components.import_types import SessionImportRow


class TestGenerateImportPreview:
    """Test suite for the pre-commit summary."""

    def test_empty_batch(self):
        preview = generate_import_preview([], invalid_rows=3)
        assert preview.valid_rows == 0
        assert preview.invalid_rows == 3
        assert preview.total_sessions == 0
        assert preview.total_revenue == 0.0
        assert preview.date_range == {"start": "", "end": ""}
        assert preview.therapy_types_found == []
        assert preview.sample_rows == []

    def test_totals_and_range(self, sample_rows):
        preview = generate_import_preview(sample_rows, invalid_rows=1)
        assert preview.valid_rows == 3
        assert preview.invalid_rows == 1
        assert preview.total_sessions == 10
        assert preview.total_revenue == 150.0
        assert preview.date_range == {"start": "2024-03-01", "end": "2024-04-02"}

    def test_date_range_ignores_row_order(self, sample_rows):
        preview = generate_import_preview(list(reversed(sample_rows)))
        assert preview.date_range == {"start": "2024-03-01", "end": "2024-04-02"}

    def test_distinct_therapy_types_in_first_seen_order(self, sample_rows):
        preview = generate_import_preview(sample_rows)
        assert preview.therapy_types_found == ["Massage", "Psychotherapie"]

    def test_sample_rows_capped(self):
        rows = [SessionImportRow(date=f"2024-03-{d:02d}", therapy_type="Massage", sessions=1) for d in range(1, 10)]
        preview = generate_import_preview(rows)
        assert len(preview.sample_rows) == SAMPLE_SIZE
        assert preview.sample_rows[0] == rows[0]

    def test_revenue_rounded(self):
        rows = [
            SessionImportRow(date="2024-03-01", therapy_type="Massage", sessions=1, revenue=0.1),
            SessionImportRow(date="2024-03-02", therapy_type="Massage", sessions=1, revenue=0.2),
        ]
        assert generate_import_preview(rows).total_revenue == 0.3

    def test_to_dict(self, sample_rows):
        data = generate_import_preview(sample_rows).to_dict()
        assert data["sample_rows"][0] == {"date": "2024-03-01", "therapy_type": "Massage", "sessions": 5}
