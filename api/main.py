from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse

from api.auth import current_user_id
from api.config import Settings, get_settings
from api.models import (
    CommitRequest,
    DetectMappingResponse,
    ImportResultResponse,
    LatidoImportResponse,
    PreviewResponse,
    ResetRequest,
    ValidateTherapyTypesRequest,
    ValidateTherapyTypesResponse,
)
from api.serialize import to_jsonable
from api.supabase_handler import SupabaseAPIHandler
from components.column_mapper import get_template
from components.import_types import (
    CSVImportConfig,
    ImportColumnMapping,
    ImportFormatError,
    PlanStoreError,
    SessionImportRow,
)
from services.import_service import SessionImportService

logger = logging.getLogger(__name__)

app = FastAPI(title="Practice Session Import API", version="0.1.0")


def get_import_service() -> SessionImportService:
    return SessionImportService(SupabaseAPIHandler())


@app.exception_handler(ImportFormatError)
def _import_format_error(request: Request, exc: ImportFormatError):
    return JSONResponse(status_code=400, content={"detail": exc.message, "error_code": exc.error_code})


@app.exception_handler(PlanStoreError)
def _plan_store_error(request: Request, exc: PlanStoreError):
    logger.error("Database error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc), "error_code": "DATABASE_ERROR"})


async def _read_upload(file: UploadFile, settings: Settings) -> bytes:
    data = await file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large (max {settings.max_upload_bytes // (1024 * 1024)} MB)",
        )
    return data


def _csv_config(has_header: bool, delimiter: str, encoding: str, date_format: str) -> CSVImportConfig:
    # "\t" arrives literally from HTML forms
    delimiter = "\t" if delimiter in ("\\t", "tab") else delimiter
    return CSVImportConfig(
        has_header=has_header, delimiter=delimiter, encoding=encoding, date_format=date_format
    )


def _status_for(outcome: Dict[str, Any]) -> int:
    return 404 if outcome.get("code") == "NOT_FOUND" else 503


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.get("/v1/imports/templates/{kind}", response_class=PlainTextResponse)
def download_template(kind: str):
    try:
        text = get_template(kind)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown template '{kind}'")
    return PlainTextResponse(
        text,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="session-import-{kind}.csv"'},
    )


@app.post("/v1/imports/sessions/detect-mapping", response_model=DetectMappingResponse)
async def detect_mapping(
    file: UploadFile = File(...),
    has_header: bool = Form(True),
    delimiter: str = Form(","),
    encoding: str = Form("utf-8"),
    date_format: str = Form("YYYY-MM-DD"),
    user_id: str = Depends(current_user_id),
    settings: Settings = Depends(get_settings),
    service: SessionImportService = Depends(get_import_service),
):
    data = await _read_upload(file, settings)
    config = _csv_config(has_header, delimiter, encoding, date_format)
    table, mapping = service.detect_mapping(data, file.filename or "", config)
    return {
        "headers": table.headers,
        "mapping": mapping.to_dict(),
        "complete": mapping.is_complete(),
        "row_count": len(table.rows) + len(table.bad_lines),
    }


@app.post("/v1/imports/sessions/preview", response_model=PreviewResponse, response_model_exclude_none=True)
async def preview_sessions(
    file: UploadFile = File(...),
    has_header: bool = Form(True),
    delimiter: str = Form(","),
    encoding: str = Form("utf-8"),
    date_format: str = Form("YYYY-MM-DD"),
    date_column: Optional[str] = Form(None),
    therapy_type_column: Optional[str] = Form(None),
    sessions_column: Optional[str] = Form(None),
    revenue_column: Optional[str] = Form(None),
    patient_type_column: Optional[str] = Form(None),
    notes_column: Optional[str] = Form(None),
    user_id: str = Depends(current_user_id),
    settings: Settings = Depends(get_settings),
    service: SessionImportService = Depends(get_import_service),
):
    """Parse with the given mapping; columns left out fall back to detection."""
    data = await _read_upload(file, settings)
    config = _csv_config(has_header, delimiter, encoding, date_format)
    table, detected = service.detect_mapping(data, file.filename or "", config)

    given = {
        "date_column": date_column,
        "therapy_type_column": therapy_type_column,
        "sessions_column": sessions_column,
        "revenue_column": revenue_column,
        "patient_type_column": patient_type_column,
        "notes_column": notes_column,
    }
    merged = detected.to_dict()
    merged.update({k: v for k, v in given.items() if v})
    mapping = ImportColumnMapping.from_dict(merged)

    parsed, preview = service.preview(table, mapping, config)
    return {
        "preview": to_jsonable(preview),
        "rows": [r.to_dict() for r in parsed.rows],
        "errors": to_jsonable(parsed.errors),
        "warnings": to_jsonable(parsed.warnings),
    }


@app.post("/v1/imports/sessions/commit", response_model=ImportResultResponse)
def commit_sessions(
    req: CommitRequest,
    user_id: str = Depends(current_user_id),
    service: SessionImportService = Depends(get_import_service),
):
    rows = [SessionImportRow.from_dict(r.model_dump()) for r in req.rows]
    return service.commit_sessions(user_id, rows).to_dict()


@app.post("/v1/imports/therapy-types/validate", response_model=ValidateTherapyTypesResponse)
def validate_therapy_types(
    req: ValidateTherapyTypesRequest,
    user_id: str = Depends(current_user_id),
    service: SessionImportService = Depends(get_import_service),
):
    return service.validate_therapy_types(user_id, req.names)


@app.post("/v1/imports/latido", response_model=LatidoImportResponse)
async def import_latido(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user_id),
    settings: Settings = Depends(get_settings),
    service: SessionImportService = Depends(get_import_service),
):
    data = await _read_upload(file, settings)
    parsed = service.parse_latido(data, file.filename or "latido.xlsx")
    result = service.import_latido(user_id, parsed.sessions) if parsed.sessions else None
    return {"parse": parsed.to_dict(), "result": result.to_dict() if result else None}


@app.get("/v1/imports/history")
def import_history(
    user_id: str = Depends(current_user_id),
    service: SessionImportService = Depends(get_import_service),
) -> List[Dict[str, Any]]:
    return to_jsonable(service.get_import_history(user_id))


@app.delete("/v1/imports/invoices/{invoice_id}")
def remove_invoice(
    invoice_id: str,
    user_id: str = Depends(current_user_id),
    service: SessionImportService = Depends(get_import_service),
):
    outcome = service.remove_imported_invoice(user_id, invoice_id)
    if not outcome["success"]:
        raise HTTPException(status_code=_status_for(outcome), detail=outcome["error"])
    return to_jsonable(outcome)


@app.post("/v1/monthly-plans/reset")
def reset_actual_sessions(
    req: ResetRequest,
    user_id: str = Depends(current_user_id),
    service: SessionImportService = Depends(get_import_service),
):
    outcome = service.reset_actual_sessions(user_id, req.therapy_type_id, req.month[:7])
    if not outcome["success"]:
        raise HTTPException(status_code=_status_for(outcome), detail=outcome["error"])
    return to_jsonable(outcome)
