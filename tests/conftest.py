"""
Pytest Configuration and Fixtures
==================================
Shared test fixtures: mock database handler, sample therapy catalog and
rows, an in-memory plan store and an in-memory workbook builder.
"""

import io
import itertools
from typing import Any, Dict, List, Optional, Set
from unittest.mock import Mock

import pytest
from openpyxl import Workbook

from components.import_types import (
    MergeMode,
    PlanStoreError,
    SessionImportRow,
    TherapyType,
    month_start,
)


class InMemoryPlanStore:
    """
    Plan store with the SupabaseHandler interface, backed by lists.

    `fail_months` makes writes for those YYYY-MM months raise;
    `fail_catalog` makes the catalog read raise.
    """

    def __init__(self, therapy_types: Optional[List[Dict[str, Any]]] = None):
        self.therapy_types = list(therapy_types or [])
        self.plans: List[Dict[str, Any]] = []
        self.invoices: List[Dict[str, Any]] = []
        self.fail_months: Set[str] = set()
        self.fail_catalog = False
        self._ids = itertools.count(1)

    # catalog
    def get_therapy_types(self, user_id: str) -> List[Dict[str, Any]]:
        if self.fail_catalog:
            raise PlanStoreError("catalog unavailable")
        return list(self.therapy_types)

    # monthly plans
    def get_monthly_plan(self, user_id, therapy_type_id, month):
        for plan in self.plans:
            if (plan["user_id"], plan["therapy_type_id"], plan["month"]) == (
                user_id, therapy_type_id, month_start(month)
            ):
                return plan
        return None

    def upsert_actual_sessions(self, user_id, therapy_type_id, month, actual_sessions, mode=MergeMode.REPLACE):
        if month[:7] in self.fail_months:
            raise PlanStoreError(f"write failed for {month}")
        plan = self.get_monthly_plan(user_id, therapy_type_id, month)
        if plan is None:
            plan = {
                "id": f"plan-{next(self._ids)}",
                "user_id": user_id,
                "therapy_type_id": therapy_type_id,
                "month": month_start(month),
                "planned_sessions": 0,
                "actual_sessions": actual_sessions,
            }
            self.plans.append(plan)
        elif mode == MergeMode.ADD:
            plan["actual_sessions"] = (plan["actual_sessions"] or 0) + actual_sessions
        else:
            plan["actual_sessions"] = actual_sessions
        return plan

    def reset_actual_sessions(self, user_id, therapy_type_id, month):
        plan = self.get_monthly_plan(user_id, therapy_type_id, month)
        if plan is not None:
            plan["actual_sessions"] = None
        return plan

    def decrement_actual_sessions(self, user_id, therapy_type_id, month):
        plan = self.get_monthly_plan(user_id, therapy_type_id, month)
        if plan is not None:
            plan["actual_sessions"] = max(0, (plan["actual_sessions"] or 0) - 1)
        return plan

    # imported invoices
    def get_imported_invoice_numbers(self, user_id, invoice_numbers):
        wanted = set(invoice_numbers)
        return {i["invoice_number"] for i in self.invoices if i["user_id"] == user_id and i["invoice_number"] in wanted}

    def record_imported_invoice(self, user_id, invoice_number, invoice_date, amount, therapy_type_id):
        record = {
            "id": f"inv-{next(self._ids)}",
            "user_id": user_id,
            "invoice_number": invoice_number,
            "invoice_date": invoice_date,
            "amount": amount,
            "therapy_type_id": therapy_type_id,
            "created_at": "2024-04-02T10:00:00+00:00",
        }
        self.invoices.append(record)
        return record

    def get_imported_invoices(self, user_id):
        names = {t["id"]: t["name"] for t in self.therapy_types}
        return [
            {**i, "therapy_types": {"name": names[i["therapy_type_id"]]} if i["therapy_type_id"] in names else None}
            for i in self.invoices
            if i["user_id"] == user_id
        ]

    def get_imported_invoice(self, user_id, invoice_id):
        return next((i for i in self.invoices if i["id"] == invoice_id and i["user_id"] == user_id), None)

    def delete_imported_invoice(self, user_id, invoice_id):
        self.invoices = [i for i in self.invoices if not (i["id"] == invoice_id and i["user_id"] == user_id)]

    def delete_imported_invoices_for_month(self, user_id, therapy_type_id, month):
        self.invoices = [
            i for i in self.invoices
            if not (i["user_id"] == user_id and i["therapy_type_id"] == therapy_type_id
                    and i["invoice_date"][:7] == month[:7])
        ]

    # helpers for assertions
    def plans_for(self, user_id, therapy_type_id, month):
        return [
            p for p in self.plans
            if (p["user_id"], p["therapy_type_id"], p["month"]) == (user_id, therapy_type_id, month_start(month))
        ]


@pytest.fixture
def mock_db_handler():
    """Create a mock database handler."""
    db = Mock()
    db.client = Mock()
    return db


@pytest.fixture
def sample_catalog_records():
    """Therapy types as returned by the therapy_types table."""
    return [
        {'id': 't-massage', 'name': 'Massage', 'price_per_session': 60.0, 'variable_cost_per_session': 5.0},
        {'id': 't-psy', 'name': 'Psychotherapie', 'price_per_session': 80.0, 'variable_cost_per_session': 0.0},
        {'id': 't-group', 'name': 'Gruppentherapie', 'price_per_session': 40.0, 'variable_cost_per_session': 0.0},
    ]


@pytest.fixture
def sample_catalog(sample_catalog_records):
    return [TherapyType.from_record(r) for r in sample_catalog_records]


@pytest.fixture
def plan_store(sample_catalog_records):
    return InMemoryPlanStore(sample_catalog_records)


@pytest.fixture
def sample_rows():
    """Clean rows: two Massage rows in March, one Psychotherapie row in April."""
    return [
        SessionImportRow(date='2024-03-01', therapy_type='Massage', sessions=5),
        SessionImportRow(date='2024-03-15', therapy_type='Massage', sessions=3),
        SessionImportRow(date='2024-04-02', therapy_type='Psychotherapie', sessions=2, revenue=150.0),
    ]


@pytest.fixture
def make_xlsx():
    """Build an .xlsx file in memory from a list of rows (first row = header)."""
    def _make(rows: List[List[Any]]) -> bytes:
        wb = Workbook()
        ws = wb.active
        for row in rows:
            ws.append(row)
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()
    return _make
