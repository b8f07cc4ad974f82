"""
Practice Session Import
=======================
Streamlit page for importing performed sessions into the monthly plans.

Tabs:
1. Sessions CSV/Excel - template download, upload, column mapping, preview, commit
2. Latido - invoice export (Honorarnoten), matched to therapies by price
3. History - imported invoices by import day, with undo per invoice

Run with:
    streamlit run app.py
"""

import logging
from typing import List

import pandas as pd
import streamlit as st

from components.column_mapper import CSV_TEMPLATES, detect_column_mapping, render_column_mapper, validate_mapping
from components.import_types import (
    CSVImportConfig,
    ImportFormatError,
    ImportIssue,
    ImportResult,
    PlanStoreError,
)
from db_connector import SupabaseHandler
from services import SessionImportService, SessionManager
from supabase_utils import get_user_id

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# =============================================================================
# PAGE CONFIGURATION
# =============================================================================

st.set_page_config(
    page_title="Session Import",
    page_icon="📥",
    layout="wide",
)

DELIMITERS = {"Comma (,)": ",", "Semicolon (;)": ";", "Tab": "\t"}
ISSUE_LIMIT = 50


def get_service() -> SessionImportService:
    db = SessionManager.get(SessionManager.DB_HANDLER)
    if db is None:
        db = SupabaseHandler()
        SessionManager.set(SessionManager.DB_HANDLER, db)
    return SessionImportService(db)


def _issues_frame(issues: List[ImportIssue]) -> pd.DataFrame:
    return pd.DataFrame([
        {"Row": i.row or "", "Field": i.field or "", "Message": i.message}
        for i in issues[:ISSUE_LIMIT]
    ])


def render_issues(title: str, issues: List[ImportIssue], expanded: bool = False):
    if not issues:
        return
    with st.expander(f"{title} ({len(issues)})", expanded=expanded):
        st.dataframe(_issues_frame(issues), use_container_width=True, hide_index=True)
        if len(issues) > ISSUE_LIMIT:
            st.caption(f"Showing the first {ISSUE_LIMIT} of {len(issues)}")


def render_result(result: ImportResult):
    if result.success and result.imported_count:
        st.success(
            f"✅ Imported {result.imported_count} rows into "
            f"{result.imported_groups} monthly plans ({', '.join(result.imported_months)})"
        )
    elif result.success:
        st.info("Nothing was imported")
    else:
        st.error(f"❌ Import finished with errors: {result.errored_groups} monthly plans could not be saved")

    col1, col2, col3 = st.columns(3)
    col1.metric("Imported rows", result.imported_count)
    col2.metric("Skipped rows", result.skipped_count)
    col3.metric("Duplicates", result.duplicate_count)

    if result.missing:
        st.warning("Therapy types not found in your catalog: " + ", ".join(result.missing))
    render_issues("Errors", result.errors, expanded=True)
    render_issues("Warnings", result.warnings)


# =============================================================================
# 1. SESSIONS CSV / EXCEL
# =============================================================================

def render_format_options() -> CSVImportConfig:
    with st.expander("⚙️ File format", expanded=False):
        col1, col2, col3, col4 = st.columns(4)
        has_header = col1.checkbox("First row is header", value=True, key="fmt_header")
        delimiter = col2.selectbox("Delimiter", list(DELIMITERS), key="fmt_delimiter")
        encoding = col3.selectbox("Encoding", list(CSVImportConfig.VALID_ENCODINGS), key="fmt_encoding")
        date_format = col4.selectbox(
            "Date format", list(CSVImportConfig.VALID_DATE_FORMATS), index=1, key="fmt_date"
        )
    return CSVImportConfig(
        has_header=has_header,
        delimiter=DELIMITERS[delimiter],
        encoding=encoding,
        date_format=date_format,
    )


def render_session_import(service: SessionImportService, user_id: str):
    st.subheader("📅 Import sessions")
    st.caption("Upload an export from your practice software. Sessions are summed per month and therapy type "
               "and replace the actual sessions of that month.")

    col1, col2 = st.columns(2)
    for col, kind, label in ((col1, "standard", "Standard template"), (col2, "latido", "Latido template")):
        col.download_button(
            f"⬇️ {label}",
            data=CSV_TEMPLATES[kind],
            file_name=f"session-import-{kind}.csv",
            mime="text/csv",
            key=f"template_{kind}",
        )

    config = render_format_options()
    uploaded = st.file_uploader("Session file", type=["csv", "txt", "xlsx", "xls"], key="session_upload")
    if uploaded is None:
        SessionManager.clear_import()
        return

    file_key = f"{uploaded.name}:{uploaded.size}:{config}"
    SessionManager.start_import(file_key)

    table = SessionManager.get(SessionManager.IMPORT_TABLE)
    if table is None:
        try:
            table = service.read_source(uploaded.getvalue(), uploaded.name, config)
        except ImportFormatError as e:
            st.error(f"❌ {e.message}")
            return
        SessionManager.set(SessionManager.IMPORT_TABLE, table)

    st.caption(f"{len(table.rows)} data rows, {len(table.headers)} columns")
    mapping = render_column_mapper(table.headers, detect_column_mapping(table.headers), key_prefix="sessions")
    ok, problems = validate_mapping(mapping, table.headers)
    if not ok:
        for p in problems:
            st.warning(p)
        return
    SessionManager.set(SessionManager.IMPORT_MAPPING, mapping)

    try:
        parsed, preview = service.preview(table, mapping, config)
    except ImportFormatError as e:
        st.error(f"❌ {e.message}")
        return
    SessionManager.set(SessionManager.IMPORT_PARSE_RESULT, parsed)

    st.markdown("### 🔍 Preview")
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Valid rows", preview.valid_rows)
    col2.metric("Invalid rows", preview.invalid_rows)
    col3.metric("Sessions", preview.total_sessions)
    col4.metric("Revenue", f"€{preview.total_revenue:,.2f}")
    if preview.valid_rows:
        st.caption(f"Period: {preview.date_range['start']} to {preview.date_range['end']}")
        st.dataframe(
            pd.DataFrame([r.to_dict() for r in preview.sample_rows]),
            use_container_width=True,
            hide_index=True,
        )
    render_issues("Row errors", parsed.errors, expanded=True)
    render_issues("Warnings", parsed.warnings)

    if not parsed.rows:
        st.info("No valid rows to import")
        return

    try:
        check = service.validate_therapy_types(user_id, preview.therapy_types_found)
    except PlanStoreError as e:
        st.error(f"❌ Could not load your therapy types: {e}")
        return

    if check["missing"]:
        st.warning(
            "These therapy types are not in your catalog and their rows will be skipped: "
            + ", ".join(check["missing"])
        )
        confirmed = st.checkbox("Import anyway", key=SessionManager.IMPORT_CONFIRM_MISSING)
    else:
        confirmed = True

    if st.button("📥 Import sessions", type="primary", disabled=not confirmed, key="session_commit"):
        with st.spinner("Importing..."):
            result = service.commit_sessions(user_id, parsed.rows)
        SessionManager.set(SessionManager.IMPORT_RESULT, result)

    result = SessionManager.get(SessionManager.IMPORT_RESULT)
    if result is not None:
        render_result(result)


# =============================================================================
# 2. LATIDO
# =============================================================================

def render_latido_import(service: SessionImportService, user_id: str):
    st.subheader("🧾 Latido invoice import")
    st.caption("Each invoice counts as one session. Therapy types are matched by price per session; "
               "invoices already imported are skipped.")

    uploaded = st.file_uploader("Latido export (Honorarnoten)", type=["xlsx", "xls"], key="latido_upload")
    if uploaded is None:
        SessionManager.clear_latido()
        return

    try:
        parsed = service.parse_latido(uploaded.getvalue(), uploaded.name)
    except ImportFormatError as e:
        st.error(f"❌ {e.message}")
        return

    summary = parsed.summary
    col1, col2, col3 = st.columns(3)
    col1.metric("Invoices", summary.get("total_invoices", 0))
    col2.metric("Valid", summary.get("valid_invoices", 0))
    col3.metric("Cancelled", summary.get("cancelled_invoices", 0))

    breakdown = summary.get("monthly_breakdown", {})
    if breakdown:
        st.dataframe(
            pd.DataFrame([
                {"Month": month, "Sessions": v["sessions"], "Revenue": v["revenue"]}
                for month, v in breakdown.items()
            ]),
            use_container_width=True,
            hide_index=True,
        )
    render_issues("Row errors", parsed.errors, expanded=True)
    render_issues("Warnings", parsed.warnings)

    if not parsed.sessions:
        st.info("No valid invoices found")
        return

    if st.button("📥 Import invoices", type="primary", key="latido_commit"):
        with st.spinner("Importing..."):
            SessionManager.set(SessionManager.LATIDO_RESULT, service.import_latido(user_id, parsed.sessions))

    result = SessionManager.get(SessionManager.LATIDO_RESULT)
    if result is not None:
        render_result(result)


# =============================================================================
# 3. HISTORY
# =============================================================================

def render_import_history(service: SessionImportService, user_id: str):
    st.subheader("🕘 Import history")
    history = service.get_import_history(user_id)
    if not history:
        st.info("No invoices imported yet")
        return

    for day in history:
        with st.expander(f"{day['date']}: {day['invoice_count']} invoices, €{day['total_amount']:,.2f}"):
            for inv in day["invoices"]:
                col1, col2, col3, col4 = st.columns([2, 2, 3, 1])
                col1.write(inv["invoice_number"])
                col2.write(f"{inv['invoice_date']} · €{inv['amount']:,.2f}")
                col3.write(inv["therapy_name"])
                if col4.button("↩️", key=f"undo_{inv['id']}", help="Remove invoice and subtract the session"):
                    outcome = service.remove_imported_invoice(user_id, inv["id"])
                    if outcome["success"]:
                        st.success(f"Removed invoice {inv['invoice_number']}")
                        st.rerun()
                    else:
                        st.error(outcome["error"])


# =============================================================================
# MAIN
# =============================================================================

def main():
    st.title("📥 Session Import")

    user_id = get_user_id()
    if not user_id:
        st.warning("⚠️ Please log in to import sessions")
        st.stop()
    SessionManager.set_user_id(user_id)

    try:
        service = get_service()
    except RuntimeError as e:
        st.error(f"❌ {e}")
        st.stop()

    tab_sessions, tab_latido, tab_history = st.tabs(["Sessions CSV/Excel", "Latido", "History"])
    with tab_sessions:
        render_session_import(service, user_id)
    with tab_latido:
        render_latido_import(service, user_id)
    with tab_history:
        render_import_history(service, user_id)


main()
