"""
Import Preview
==============
Summary of a parsed batch, shown before the user commits.
"""

from typing import List

from components.import_types import ImportPreview, SessionImportRow

SAMPLE_SIZE = 5


def generate_import_preview(rows: List[SessionImportRow], invalid_rows: int = 0) -> ImportPreview:
    """
    Summarise valid rows: counts, totals, date range and distinct therapy names.

    An empty batch yields zero counts and an empty date range.
    """
    if not rows:
        return ImportPreview(invalid_rows=invalid_rows)

    dates = sorted(r.date for r in rows)

    therapy_types: List[str] = []
    seen = set()
    for r in rows:
        if r.therapy_type not in seen:
            seen.add(r.therapy_type)
            therapy_types.append(r.therapy_type)

    return ImportPreview(
        valid_rows=len(rows),
        invalid_rows=invalid_rows,
        total_sessions=sum(r.sessions for r in rows),
        total_revenue=round(sum(r.revenue or 0.0 for r in rows), 2),
        date_range={"start": dates[0], "end": dates[-1]},
        therapy_types_found=therapy_types,
        sample_rows=list(rows[:SAMPLE_SIZE]),
    )
