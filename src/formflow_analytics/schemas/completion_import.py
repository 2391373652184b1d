"""Completion import schemas with preview and dry-run support"""
from typing import Optional, List, Dict
from pydantic import BaseModel, Field


class ColumnMapping(BaseModel):
    original: str
    mapped_to: Optional[str] = None
    confidence: float = 0.0


class MappingPreview(BaseModel):
    columns: List[ColumnMapping]
    unmapped_columns: List[str]
    missing_required: List[str]
    ambiguous: List[str] = Field(default_factory=list)

    def as_mapping(self) -> Dict[str, str]:
        return {c.original: c.mapped_to for c in self.columns if c.mapped_to}


class CSVPreview(BaseModel):
    headers: List[str]
    total_rows: int
    preview_rows: List[Dict[str, str]]
    delimiter: str
    mapping: MappingPreview
    session_id: Optional[str] = None


class CompletionImportResult(BaseModel):
    success: bool = True
    imported: int = 0
    matched: int = 0
    skipped: int = 0
    unmatched: int = 0
    rows_processed: int = 0
    dry_run: bool = False
    errors: List[str] = Field(default_factory=list)


class ColumnMappingUpdate(BaseModel):
    original: str
    mapped_to: Optional[str]


class ImportRunRequest(BaseModel):
    session_id: str
    instance_id: int
    column_mappings: Optional[List[ColumnMappingUpdate]] = None
    dry_run: bool = True
    match_handoffs: bool = True


class RetryMatchResult(BaseModel):
    processed: int = 0
    matched: int = 0
