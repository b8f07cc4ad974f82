"""
Import Engine
=============
Aggregation and upsert of parsed session rows into monthly plans.

Rows are grouped per (month, therapy type); each group becomes one write of
actual_sessions. A failing group is recorded and the remaining groups are
still written. This module is independent of Streamlit and can be used from
the API and tests.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from components.import_types import (
    GroupOutcome,
    ImportIssue,
    ImportResult,
    MergeMode,
    PlanStoreError,
    SessionImportRow,
    TherapyResolution,
    TherapyType,
)
from components.latido_parser import invoice_numbers
from components.therapy_resolution import resolve_price_markers, resolve_therapies

logger = logging.getLogger(__name__)

# Streamlit is optional: this module must also run outside Streamlit (API/tests).
try:  # pragma: no cover
    import streamlit as st  # type: ignore
except Exception:  # pragma: no cover
    st = None  # type: ignore


def _ui(method: str, *args: Any, **kwargs: Any) -> None:
    """Best-effort UI notification. No-ops when not running under Streamlit."""
    if st is None:
        return
    try:
        fn = getattr(st, method, None)
        if callable(fn):
            fn(*args, **kwargs)
    except Exception:
        return


GroupKey = Tuple[str, str]  # (YYYY-MM, therapy_type_id)


def _missing_message(name: str) -> str:
    return f'Therapy type "{name}" not found. Please create it first.'


def row_revenue(row: SessionImportRow, therapy: TherapyType) -> float:
    """Explicit revenue, otherwise sessions x catalog price."""
    if row.revenue is not None:
        return row.revenue
    return row.sessions * therapy.price_per_session


def aggregate_sessions(
    rows: List[SessionImportRow],
    resolution: TherapyResolution,
) -> Tuple["OrderedDict[GroupKey, GroupOutcome]", List[Tuple[int, SessionImportRow]], List[List[int]]]:
    """
    Group rows by (month, resolved therapy id).

    Returns:
        groups: ordered by first appearance
        unresolved: (position, row) for rows whose therapy is not in the catalog
        members: for each group (same order), the batch positions it holds
    """
    groups: "OrderedDict[GroupKey, GroupOutcome]" = OrderedDict()
    member_map: Dict[GroupKey, List[int]] = {}
    unresolved: List[Tuple[int, SessionImportRow]] = []

    for position, row in enumerate(rows):
        therapy = resolution.lookup(row.therapy_type)
        if therapy is None:
            unresolved.append((position, row))
            continue
        key = (row.month, therapy.id)
        group = groups.get(key)
        if group is None:
            group = GroupOutcome(month=row.month, therapy_type_id=therapy.id,
                                 actual_sessions=0, revenue=0.0, row_count=0)
            groups[key] = group
            member_map[key] = []
        group.actual_sessions += row.sessions
        group.revenue = round(group.revenue + row_revenue(row, therapy), 2)
        group.row_count += 1
        member_map[key].append(position)

    return groups, unresolved, [member_map[k] for k in groups]


class SessionImportEngine:
    """
    Commits parsed rows to a plan store.

    The store provides get_therapy_types, upsert_actual_sessions and, for
    invoice imports, get_imported_invoice_numbers / record_imported_invoice
    (see db_connector.SupabaseHandler).
    """

    def __init__(self, store):
        self.store = store

    # =========================================================================
    # CATALOG
    # =========================================================================
    def load_catalog(self, user_id: str) -> List[TherapyType]:
        return [TherapyType.from_record(r) for r in self.store.get_therapy_types(user_id)]

    def _catalog_or_fail(self, user_id: str, rows: List[SessionImportRow]) -> Tuple[Optional[List[TherapyType]], Optional[ImportResult]]:
        try:
            return self.load_catalog(user_id), None
        except PlanStoreError as e:
            logger.error("Import aborted, therapy catalog unavailable: %s", e)
            return None, ImportResult(
                success=False,
                skipped_count=len(rows),
                errors=[ImportIssue(row=0, message=f"Database error: {e}")],
            )

    # =========================================================================
    # COMMIT
    # =========================================================================
    def commit(
        self,
        rows: List[SessionImportRow],
        user_id: str,
        catalog: Optional[List[TherapyType]] = None,
        merge_mode: MergeMode = MergeMode.REPLACE,
    ) -> ImportResult:
        """
        Aggregate rows per (month, therapy) and write actual_sessions.

        Rows naming a therapy that is not in the catalog are skipped with a
        warning. Every row ends up counted as imported or skipped.
        """
        if catalog is None:
            catalog, failed = self._catalog_or_fail(user_id, rows)
            if failed is not None:
                return failed

        resolution = resolve_therapies((r.therapy_type for r in rows), catalog)
        return self._write(rows, resolution, user_id, merge_mode)

    def commit_invoices(
        self,
        sessions: List[SessionImportRow],
        user_id: str,
        catalog: Optional[List[TherapyType]] = None,
    ) -> ImportResult:
        """
        Commit invoice sessions (one row per invoice) additively.

        Invoice numbers already recorded for the user, or repeated within the
        batch, count as duplicates and are not imported again. Each imported
        invoice is recorded for future duplicate detection.
        """
        try:
            already = self.store.get_imported_invoice_numbers(user_id, invoice_numbers(sessions))
        except PlanStoreError as e:
            logger.error("Invoice import aborted, duplicate check failed: %s", e)
            return ImportResult(
                success=False,
                skipped_count=len(sessions),
                errors=[ImportIssue(row=0, message=f"Database error: {e}")],
            )

        if catalog is None:
            catalog, failed = self._catalog_or_fail(user_id, sessions)
            if failed is not None:
                return failed

        fresh: List[SessionImportRow] = []
        seen = set(already)
        duplicates = 0
        for s in sessions:
            if s.invoice_number and s.invoice_number in seen:
                duplicates += 1
                continue
            if s.invoice_number:
                seen.add(s.invoice_number)
            fresh.append(s)

        markers = [s.therapy_type for s in fresh if s.is_price_marker]
        names = [s.therapy_type for s in fresh if not s.is_price_marker]
        resolution = resolve_therapies(names, catalog)
        by_price, ambiguities = resolve_price_markers(markers, catalog)
        resolution.matched.update(by_price.matched)
        resolution.missing.extend(by_price.missing)

        result = self._write(fresh, resolution, user_id, MergeMode.ADD)
        result.duplicate_count = duplicates
        result.warnings[:0] = [ImportIssue(row=0, message=m) for m in ambiguities]

        written = {(g.month, g.therapy_type_id) for g in result.groups if g.status == "imported"}
        for s in fresh:
            therapy = resolution.lookup(s.therapy_type)
            if not s.invoice_number or therapy is None or (s.month, therapy.id) not in written:
                continue
            try:
                self.store.record_imported_invoice(
                    user_id, s.invoice_number, s.date, s.revenue or 0.0, therapy.id
                )
            except PlanStoreError as e:
                logger.warning("Could not record invoice %s: %s", s.invoice_number, e)

        return result

    def _write(
        self,
        rows: List[SessionImportRow],
        resolution: TherapyResolution,
        user_id: str,
        merge_mode: MergeMode,
    ) -> ImportResult:
        result = ImportResult(missing=list(resolution.missing))
        groups, unresolved, members = aggregate_sessions(rows, resolution)

        for position, row in unresolved:
            result.warnings.append(ImportIssue(
                row=position + 1,
                message=_missing_message(row.therapy_type),
                field="therapy_type",
                data={"therapy_type": row.therapy_type},
            ))
        result.skipped_count = len(unresolved)

        months = set()
        for group, positions in zip(groups.values(), members):
            try:
                self.store.upsert_actual_sessions(
                    user_id, group.therapy_type_id, group.month, group.actual_sessions, merge_mode
                )
            except PlanStoreError as e:
                group.status = "error"
                group.error = str(e)
                result.skipped_count += group.row_count
                result.errors.append(ImportIssue(
                    row=0,
                    message=f"Could not save {group.month} / {group.therapy_type_id}: {e}",
                    data={"month": group.month, "therapy_type_id": group.therapy_type_id,
                          "rows": [p + 1 for p in positions]},
                ))
                logger.warning("Group %s/%s failed: %s", group.month, group.therapy_type_id, e)
                _ui("warning", f"⚠️ Could not save sessions for {group.month}: {e}")
                continue
            group.status = "imported"
            result.imported_count += group.row_count
            months.add(group.month)

        result.groups = list(groups.values())
        result.imported_months = sorted(months)
        result.success = result.errored_groups == 0

        logger.info(
            "Import for user %s: %d rows imported, %d skipped, %d groups written, %d groups failed",
            user_id, result.imported_count, result.skipped_count,
            result.imported_groups, result.errored_groups,
        )
        return result
