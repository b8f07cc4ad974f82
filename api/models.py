from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Issue(BaseModel):
    row: int
    message: str
    field: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class SessionRow(BaseModel):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="ISO date YYYY-MM-DD")
    therapy_type: str = Field(..., min_length=1)
    sessions: int = Field(..., ge=0)
    revenue: Optional[float] = None
    patient_type: Optional[str] = None
    notes: Optional[str] = None
    invoice_number: Optional[str] = None


class ColumnMapping(BaseModel):
    date_column: str = ""
    therapy_type_column: str = ""
    sessions_column: str = ""
    revenue_column: Optional[str] = None
    patient_type_column: Optional[str] = None
    notes_column: Optional[str] = None


class DetectMappingResponse(BaseModel):
    headers: List[str]
    mapping: ColumnMapping
    complete: bool
    row_count: int


class PreviewResponse(BaseModel):
    preview: Dict[str, Any]
    rows: List[SessionRow]
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)


class CommitRequest(BaseModel):
    rows: List[SessionRow] = Field(..., description="Valid rows from the preview step")


class ImportResultResponse(BaseModel):
    success: bool
    imported_count: int
    skipped_count: int
    duplicate_count: int = 0
    errors: List[Issue] = Field(default_factory=list)
    warnings: List[Issue] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    imported_months: List[str] = Field(default_factory=list)
    groups: List[Dict[str, Any]] = Field(default_factory=list)


class ValidateTherapyTypesRequest(BaseModel):
    names: List[str]


class ValidateTherapyTypesResponse(BaseModel):
    missing: List[str]
    existing: List[str]


class LatidoImportResponse(BaseModel):
    parse: Dict[str, Any]
    result: Optional[ImportResultResponse] = None


class ResetRequest(BaseModel):
    therapy_type_id: str
    month: str = Field(..., pattern=r"^\d{4}-\d{2}(-\d{2})?$", description="YYYY-MM")
