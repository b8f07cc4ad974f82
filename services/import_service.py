"""
Session Import Service
======================
Orchestrates the session import for the Streamlit page and the API:
read -> detect mapping -> parse/preview -> validate therapies -> commit,
plus Latido invoice imports and monthly plan maintenance.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from components.column_mapper import detect_column_mapping
from components.file_reader import SourceTable, read_upload
from components.import_preview import generate_import_preview
from components.import_types import (
    CSVImportConfig,
    DEFAULT_CSV_CONFIG,
    ImportColumnMapping,
    ImportPreview,
    ImportResult,
    MergeMode,
    ParseResult,
    PlanStoreError,
    SessionImportRow,
)
from components.latido_parser import LatidoParseResult, parse_latido_excel
from components.session_parser import parse_session_rows
from components.therapy_resolution import resolve_therapies
from import_engine import SessionImportEngine

logger = logging.getLogger(__name__)

UNKNOWN_THERAPY = "Unbekannt"


class SessionImportService:
    """
    Service for session import business logic.

    Wraps the plan store (SupabaseHandler or a compatible object) and the
    import engine.
    """

    def __init__(self, db_handler):
        """
        Args:
            db_handler: Database handler instance (SupabaseHandler)
        """
        self.db = db_handler
        self.engine = SessionImportEngine(db_handler)

    # =========================================================================
    # READ / MAP / PREVIEW
    # =========================================================================
    def read_source(
        self,
        data: bytes,
        filename: str,
        config: CSVImportConfig = DEFAULT_CSV_CONFIG,
    ) -> SourceTable:
        return read_upload(data, filename, config)

    def detect_mapping(
        self,
        data: bytes,
        filename: str,
        config: CSVImportConfig = DEFAULT_CSV_CONFIG,
    ) -> Tuple[SourceTable, ImportColumnMapping]:
        table = self.read_source(data, filename, config)
        return table, detect_column_mapping(table.headers)

    def preview(
        self,
        table: SourceTable,
        mapping: ImportColumnMapping,
        config: CSVImportConfig = DEFAULT_CSV_CONFIG,
    ) -> Tuple[ParseResult, ImportPreview]:
        """
        Parse all rows and summarise the valid ones.

        Raises:
            ImportFormatError: mapping incomplete or column missing.
        """
        parsed = parse_session_rows(table, mapping, config)
        return parsed, generate_import_preview(parsed.rows, invalid_rows=len(parsed.errors))

    def validate_therapy_types(self, user_id: str, names: List[str]) -> Dict[str, List[str]]:
        """
        Split therapy names into those found in the user's catalog and the rest.

        Raises:
            PlanStoreError: catalog could not be loaded.
        """
        catalog = self.engine.load_catalog(user_id)
        resolution = resolve_therapies(names, catalog)
        existing = []
        for name in names:
            if name in resolution.matched and name not in existing:
                existing.append(name)
        return {"missing": resolution.missing, "existing": existing}

    # =========================================================================
    # COMMIT
    # =========================================================================
    def commit_sessions(self, user_id: str, rows: List[SessionImportRow]) -> ImportResult:
        """Replace actual_sessions per (month, therapy) with the imported sums."""
        return self.engine.commit(rows, user_id, merge_mode=MergeMode.REPLACE)

    def parse_latido(self, data: bytes, filename: str = "latido.xlsx") -> LatidoParseResult:
        return parse_latido_excel(data, filename)

    def import_latido(self, user_id: str, sessions: List[SessionImportRow]) -> ImportResult:
        """Add invoice sessions to actual_sessions, skipping already imported invoices."""
        return self.engine.commit_invoices(sessions, user_id)

    # =========================================================================
    # MAINTENANCE
    # =========================================================================
    def reset_actual_sessions(self, user_id: str, therapy_type_id: str, month: str) -> Dict[str, Any]:
        """
        Clear actual_sessions for one plan and forget the invoices imported
        into it, so the month can be imported again.
        """
        try:
            plan = self.db.reset_actual_sessions(user_id, therapy_type_id, month)
        except PlanStoreError as e:
            logger.error("Reset failed for %s/%s: %s", therapy_type_id, month, e)
            return {"success": False, "error": str(e), "code": "DB_ERROR"}
        if plan is None:
            return {"success": False, "error": "No monthly plan found for this therapy type and month", "code": "NOT_FOUND"}

        try:
            self.db.delete_imported_invoices_for_month(user_id, therapy_type_id, month)
        except PlanStoreError as e:
            logger.warning("Reset %s/%s: invoice cleanup failed: %s", therapy_type_id, month, e)

        return {"success": True, "plan": plan}

    def get_import_history(self, user_id: str) -> List[Dict[str, Any]]:
        """Imported invoices grouped by import day, newest first."""
        invoices = self.db.get_imported_invoices(user_id)

        days: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for inv in sorted(invoices, key=lambda r: str(r.get("created_at") or ""), reverse=True):
            day = str(inv.get("created_at") or "")[:10]
            therapy = inv.get("therapy_types") or {}
            group = days.setdefault(day, {"date": day, "invoice_count": 0, "total_amount": 0.0, "invoices": []})
            amount = float(inv.get("amount") or 0)
            group["invoice_count"] += 1
            group["total_amount"] = round(group["total_amount"] + amount, 2)
            group["invoices"].append({
                "id": inv.get("id"),
                "invoice_number": inv.get("invoice_number"),
                "invoice_date": inv.get("invoice_date"),
                "amount": amount,
                "therapy_type_id": inv.get("therapy_type_id"),
                "therapy_name": therapy.get("name") or UNKNOWN_THERAPY,
            })
        return list(days.values())

    def remove_imported_invoice(self, user_id: str, invoice_id: str) -> Dict[str, Any]:
        """Take one imported invoice back out: one session less, record deleted."""
        try:
            invoice = self.db.get_imported_invoice(user_id, invoice_id)
            if invoice is None:
                return {"success": False, "error": "Invoice not found", "code": "NOT_FOUND"}

            plan: Optional[Dict[str, Any]] = None
            if invoice.get("therapy_type_id") and invoice.get("invoice_date"):
                plan = self.db.decrement_actual_sessions(
                    user_id, invoice["therapy_type_id"], str(invoice["invoice_date"])[:7]
                )
            self.db.delete_imported_invoice(user_id, invoice_id)
        except PlanStoreError as e:
            logger.error("Removing invoice %s failed: %s", invoice_id, e)
            return {"success": False, "error": str(e), "code": "DB_ERROR"}

        return {"success": True, "plan": plan}
