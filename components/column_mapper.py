"""
Column Mapping Module
=====================
Column mapping for session imports (practice software CSV / Excel exports).

Detects which source header holds the date, therapy type, session count and
optional revenue/patient type/notes, and renders the Streamlit widgets that
let the user correct the guess.

Usage:
    from components.column_mapper import detect_column_mapping, render_column_mapper

    mapping = detect_column_mapping(table.headers)
    mapping = render_column_mapper(table.headers, mapping, key_prefix="sessions")
    ok, errors = validate_mapping(mapping, table.headers)
"""

from typing import Dict, List, Optional, Tuple

from components.import_types import ImportColumnMapping


# =============================================================================
# FIELD CONFIGURATION
# =============================================================================

SESSION_FIELD_CONFIG = {
    'display_name': 'Sessions',
    'icon': '📅',
    'description': 'Performed sessions per day and therapy type',
    'table': 'monthly_plans',
    'fields': {
        'date': {
            'label': 'Date',
            'attr': 'date_column',
            'required': True,
            'type': 'date',
            'description': 'Session or invoice date (YYYY-MM-DD or DD.MM.YYYY)',
            'hints': ['date', 'datum', 'rechnungsdatum', 'invoice date', 'leistungsdatum', 'termin'],
        },
        'therapy_type': {
            'label': 'Therapy Type',
            'attr': 'therapy_type_column',
            'required': True,
            'type': 'text',
            'description': 'Name of the therapy as it appears in your catalog',
            'hints': ['therapy type', 'therapieart', 'therapie', 'therapy', 'leistung', 'behandlung', 'type'],
        },
        'sessions': {
            'label': 'Sessions',
            'attr': 'sessions_column',
            'required': True,
            'type': 'number',
            'description': 'Number of sessions performed',
            'hints': ['sessions', 'sitzungen', 'anzahl sitzungen', 'number of sessions', 'anzahl', 'count'],
        },
        'revenue': {
            'label': 'Revenue',
            'attr': 'revenue_column',
            'required': False,
            'type': 'number',
            'description': 'Revenue for the row (calculated from the therapy price if empty)',
            'hints': ['revenue', 'betrag', 'umsatz', 'honorar', 'amount'],
        },
        'patient_type': {
            'label': 'Patient Type',
            'attr': 'patient_type_column',
            'required': False,
            'type': 'text',
            'description': 'Kasse or Privat',
            'hints': ['patientenart', 'patient type', 'kasse/privat'],
        },
        'notes': {
            'label': 'Notes',
            'attr': 'notes_column',
            'required': False,
            'type': 'text',
            'description': 'Free text',
            'hints': ['notes', 'notizen', 'bemerkung', 'kommentar'],
        },
    },
}

FIELD_SYNONYMS: Dict[str, List[str]] = {
    key: list(cfg['hints']) for key, cfg in SESSION_FIELD_CONFIG['fields'].items()
}

LATIDO_COLUMN_MAPPING = ImportColumnMapping(
    date_column='Datum',
    therapy_type_column='Leistung',
    sessions_column='Anzahl',
    revenue_column='Betrag',
    patient_type_column='Patientenart',
    notes_column='Notizen',
)

STANDARD_COLUMN_MAPPING = ImportColumnMapping(
    date_column='Date',
    therapy_type_column='Therapy Type',
    sessions_column='Sessions',
    revenue_column='Revenue',
    patient_type_column='Patient Type',
    notes_column='Notes',
)


# =============================================================================
# CSV TEMPLATES
# =============================================================================

CSV_TEMPLATES = {
    'standard': (
        'Date,Therapy Type,Sessions,Revenue,Patient Type,Notes\n'
        '2025-01-15,Psychotherapie,3,240,privat,Einzelsitzungen\n'
        '2025-01-16,Gruppentherapie,1,120,kasse,Gruppe 5 Personen\n'
        '2025-01-17,Paartherapie,2,200,privat,'
    ),
    'latido': (
        'Datum,Leistung,Anzahl,Betrag,Patientenart,Notizen\n'
        '15.01.2025,Psychotherapie,3,240.00,Privat,Einzelsitzungen\n'
        '16.01.2025,Gruppentherapie,1,120.00,Kasse,Gruppe 5 Personen\n'
        '17.01.2025,Paartherapie,2,200.00,Privat,'
    ),
}


def get_template(kind: str) -> str:
    """Return the CSV template text for 'standard' or 'latido'."""
    if kind not in CSV_TEMPLATES:
        raise KeyError(f"Unknown template: {kind}")
    return CSV_TEMPLATES[kind]


# =============================================================================
# DETECTION
# =============================================================================

def _normalize_header(header) -> str:
    return str(header if header is not None else '').strip().lower()


def _find_header(
    headers: List[str],
    synonyms: List[str],
    claimed: set,
    exact: bool,
) -> Optional[str]:
    for i, header in enumerate(headers):
        norm = _normalize_header(header)
        if not norm or i in claimed:
            continue
        for synonym in synonyms:
            if (norm == synonym) if exact else (synonym in norm):
                claimed.add(i)
                return header
    return None


def detect_column_mapping(headers: List[str]) -> ImportColumnMapping:
    """
    Best-effort mapping of semantic fields to header names.

    Exact (case-insensitive) synonym matches are assigned first for every
    field, then substring matches fill the fields still open. A header is
    used for at most one field; blank headers are never candidates.
    Unmatched fields stay empty for the user to pick manually.
    """
    headers = list(headers or [])
    claimed: set = set()
    found: Dict[str, str] = {}

    for exact in (True, False):
        for field_key, synonyms in FIELD_SYNONYMS.items():
            if field_key in found:
                continue
            header = _find_header(headers, synonyms, claimed, exact=exact)
            if header is not None:
                found[field_key] = header

    mapping = ImportColumnMapping()
    for field_key, header in found.items():
        setattr(mapping, SESSION_FIELD_CONFIG['fields'][field_key]['attr'], header)
    return mapping


def validate_mapping(mapping: ImportColumnMapping, headers: Optional[List[str]] = None) -> Tuple[bool, List[str]]:
    """Validate that all required fields are mapped (and exist, if headers given)."""
    errors = []
    header_set = set(headers) if headers is not None else None

    for field_key, field_def in SESSION_FIELD_CONFIG['fields'].items():
        column = getattr(mapping, field_def['attr'])
        if field_def['required'] and not column:
            errors.append(f"Required field '{field_def['label']}' is not mapped")
        elif column and header_set is not None and column not in header_set:
            errors.append(f"{field_def['label']} column \"{column}\" not found in file")

    return len(errors) == 0, errors


# =============================================================================
# COLUMN MAPPING UI
# =============================================================================

def render_column_mapper(
    headers: List[str],
    detected: Optional[ImportColumnMapping] = None,
    key_prefix: str = "",
) -> ImportColumnMapping:
    """
    Render column mapping selectboxes prefilled with the detected mapping.

    Returns:
        The mapping as chosen by the user.
    """
    import streamlit as st

    detected = detected or detect_column_mapping(headers)
    options = [''] + [h for h in headers if str(h).strip()]
    result = ImportColumnMapping()

    st.markdown("### 🔗 Column Mapping")
    st.caption("Map the columns of your file to the required fields")

    fields = SESSION_FIELD_CONFIG['fields']
    for required in (True, False):
        group = {k: v for k, v in fields.items() if v['required'] is required}
        st.markdown("#### Required Fields" if required else "#### Optional Fields")
        for field_key, field_def in group.items():
            current = getattr(detected, field_def['attr']) or ''
            chosen = st.selectbox(
                f"{field_def['label']} *" if required else field_def['label'],
                options=options,
                index=options.index(current) if current in options else 0,
                key=f"{key_prefix}_map_{field_key}",
                help=field_def['description'],
            )
            setattr(result, field_def['attr'], chosen or ('' if required else None))

    return result
