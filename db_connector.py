"""
Database Connector - Supabase Handler
Centralized database operations with type hints.

Tables used by the session import:
- therapy_types: the user's therapy catalog (name, price_per_session, ...)
- monthly_plans: one row per (user_id, therapy_type_id, month) with
  planned_sessions / actual_sessions
- imported_invoices: invoice numbers already counted, for duplicate detection
"""
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set

from supabase import Client

from components.import_types import MergeMode, PlanStoreError, month_start
from supabase_pagination import fetch_all_rows
from supabase_utils import get_supabase_client

logger = logging.getLogger(__name__)

MONTHLY_PLAN_KEY = "user_id,therapy_type_id,month"
IMPORT_NOTE = "Imported from practice software"


def _is_missing_constraint(error: Exception) -> bool:
    """True when PostgREST rejects on_conflict because the unique index is absent."""
    msg = str(error)
    return "42P10" in msg or "no unique or exclusion constraint" in msg.lower()


def _next_month(month_date: str) -> str:
    year, month = int(month_date[:4]), int(month_date[5:7])
    if month == 12:
        return date(year + 1, 1, 1).isoformat()
    return date(year, month + 1, 1).isoformat()


class SupabaseHandler:
    """
    Handler class for Supabase database operations.
    Uses the given client, or one built from Streamlit secrets.

    Write methods raise PlanStoreError. List reads that back UI tables log
    the failure and return an empty list.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            client = get_supabase_client()
        if client is None:
            raise RuntimeError("Supabase client is not configured")
        self.client: Client = client
        # Flipped off once the database reports the unique index is missing.
        self.atomic_upsert = True

    # =========================================================================
    # 1. THERAPY CATALOG
    # =========================================================================
    def get_therapy_types(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            response = (
                self.client.table("therapy_types")
                .select("id, name, price_per_session, variable_cost_per_session")
                .eq("user_id", user_id)
                .order("name")
                .execute()
            )
            return response.data if response.data else []
        except Exception as e:
            raise PlanStoreError(f"Error loading therapy types: {e}") from e

    # =========================================================================
    # 2. MONTHLY PLANS
    # =========================================================================
    def get_monthly_plan(self, user_id: str, therapy_type_id: str, month: str) -> Optional[Dict[str, Any]]:
        try:
            response = (
                self.client.table("monthly_plans")
                .select("id, planned_sessions, actual_sessions")
                .eq("user_id", user_id)
                .eq("therapy_type_id", therapy_type_id)
                .eq("month", month_start(month))
                .limit(1)
                .execute()
            )
            return response.data[0] if response.data else None
        except Exception as e:
            raise PlanStoreError(f"Error loading monthly plan: {e}") from e

    def upsert_actual_sessions(
        self,
        user_id: str,
        therapy_type_id: str,
        month: str,
        actual_sessions: int,
        mode: MergeMode = MergeMode.REPLACE,
    ) -> Dict[str, Any]:
        """
        Write actual_sessions for one (user, therapy, month).

        REPLACE uses a single upsert on the unique key; the payload carries no
        planned_sessions, so an existing plan keeps its value. When the unique
        index is missing, or in ADD mode, it falls back to read-then-write,
        which is not atomic across concurrent imports.
        """
        if mode == MergeMode.REPLACE and self.atomic_upsert:
            payload = {
                "user_id": user_id,
                "therapy_type_id": therapy_type_id,
                "month": month_start(month),
                "actual_sessions": actual_sessions,
            }
            try:
                response = (
                    self.client.table("monthly_plans")
                    .upsert(payload, on_conflict=MONTHLY_PLAN_KEY)
                    .execute()
                )
                return response.data[0] if response.data else payload
            except Exception as e:
                if not _is_missing_constraint(e):
                    raise PlanStoreError(f"Error saving monthly plan: {e}") from e
                logger.warning(
                    "monthly_plans has no unique index on (%s); using read-then-write", MONTHLY_PLAN_KEY
                )
                self.atomic_upsert = False

        return self._read_then_write(user_id, therapy_type_id, month, actual_sessions, mode)

    def _read_then_write(
        self,
        user_id: str,
        therapy_type_id: str,
        month: str,
        actual_sessions: int,
        mode: MergeMode,
    ) -> Dict[str, Any]:
        existing = self.get_monthly_plan(user_id, therapy_type_id, month)
        try:
            if existing:
                new_actual = actual_sessions
                if mode == MergeMode.ADD:
                    new_actual = (existing.get("actual_sessions") or 0) + actual_sessions
                response = (
                    self.client.table("monthly_plans")
                    .update({"actual_sessions": new_actual})
                    .eq("id", existing["id"])
                    .execute()
                )
                return response.data[0] if response.data else {**existing, "actual_sessions": new_actual}

            record = {
                "user_id": user_id,
                "therapy_type_id": therapy_type_id,
                "month": month_start(month),
                "planned_sessions": 0,
                "actual_sessions": actual_sessions,
                "notes": IMPORT_NOTE,
            }
            response = self.client.table("monthly_plans").insert(record).execute()
            return response.data[0] if response.data else record
        except Exception as e:
            raise PlanStoreError(f"Error saving monthly plan: {e}") from e

    def reset_actual_sessions(self, user_id: str, therapy_type_id: str, month: str) -> Optional[Dict[str, Any]]:
        """Set actual_sessions to null. Returns None when no plan exists."""
        existing = self.get_monthly_plan(user_id, therapy_type_id, month)
        if not existing:
            return None
        try:
            response = (
                self.client.table("monthly_plans")
                .update({"actual_sessions": None})
                .eq("id", existing["id"])
                .execute()
            )
        except Exception as e:
            raise PlanStoreError(f"Error resetting actual sessions: {e}") from e
        return response.data[0] if response.data else {**existing, "actual_sessions": None}

    def decrement_actual_sessions(self, user_id: str, therapy_type_id: str, month: str) -> Optional[Dict[str, Any]]:
        """Subtract one session, never below zero. Returns None when no plan exists."""
        existing = self.get_monthly_plan(user_id, therapy_type_id, month)
        if not existing:
            return None
        new_actual = max(0, (existing.get("actual_sessions") or 0) - 1)
        try:
            self.client.table("monthly_plans").update({"actual_sessions": new_actual}).eq("id", existing["id"]).execute()
        except Exception as e:
            raise PlanStoreError(f"Error updating actual sessions: {e}") from e
        return {**existing, "actual_sessions": new_actual}

    # =========================================================================
    # 3. IMPORTED INVOICES
    # =========================================================================
    def get_imported_invoice_numbers(self, user_id: str, invoice_numbers: Iterable[str]) -> Set[str]:
        numbers = [n for n in invoice_numbers if n]
        if not numbers:
            return set()
        try:
            response = (
                self.client.table("imported_invoices")
                .select("invoice_number")
                .eq("user_id", user_id)
                .in_("invoice_number", numbers)
                .execute()
            )
        except Exception as e:
            raise PlanStoreError(f"Error checking imported invoices: {e}") from e
        return {r["invoice_number"] for r in (response.data or [])}

    def record_imported_invoice(
        self,
        user_id: str,
        invoice_number: str,
        invoice_date: str,
        amount: float,
        therapy_type_id: str,
    ) -> Dict[str, Any]:
        record = {
            "user_id": user_id,
            "invoice_number": invoice_number,
            "invoice_date": invoice_date,
            "amount": amount,
            "therapy_type_id": therapy_type_id,
        }
        try:
            response = self.client.table("imported_invoices").insert(record).execute()
        except Exception as e:
            raise PlanStoreError(f"Error recording invoice {invoice_number}: {e}") from e
        return response.data[0] if response.data else record

    def get_imported_invoices(self, user_id: str) -> List[Dict[str, Any]]:
        query = (
            self.client.table("imported_invoices")
            .select("id, invoice_number, invoice_date, amount, therapy_type_id, created_at, therapy_types(name)")
            .eq("user_id", user_id)
        )
        try:
            return fetch_all_rows(query, order_by="created_at", raise_errors=True)
        except Exception as e:
            logger.error("Error loading import history: %s", e)
            return []

    def get_imported_invoice(self, user_id: str, invoice_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = (
                self.client.table("imported_invoices")
                .select("id, invoice_number, invoice_date, amount, therapy_type_id")
                .eq("id", invoice_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PlanStoreError(f"Error loading invoice: {e}") from e
        return response.data[0] if response.data else None

    def delete_imported_invoice(self, user_id: str, invoice_id: str) -> None:
        try:
            self.client.table("imported_invoices").delete().eq("id", invoice_id).eq("user_id", user_id).execute()
        except Exception as e:
            raise PlanStoreError(f"Error deleting invoice: {e}") from e

    def delete_imported_invoices_for_month(self, user_id: str, therapy_type_id: str, month: str) -> None:
        start = month_start(month)
        try:
            (
                self.client.table("imported_invoices")
                .delete()
                .eq("user_id", user_id)
                .eq("therapy_type_id", therapy_type_id)
                .gte("invoice_date", start)
                .lt("invoice_date", _next_month(start))
                .execute()
            )
        except Exception as e:
            raise PlanStoreError(f"Error clearing imported invoices: {e}") from e
