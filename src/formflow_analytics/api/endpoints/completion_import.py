"""Completion CSV import endpoints with preview and confirmation workflow"""
from typing import List, Dict, Any, Optional

from fastapi import APIRouter, UploadFile, File, HTTPException, Query

from src.formflow_analytics.api.deps import DbSession, Config
from src.formflow_analytics.services.completion_import import (
    CompletionImporter,
    decode_csv_content,
    preview_csv,
)
from src.formflow_analytics.schemas.completion_import import (
    CSVPreview,
    CompletionImportResult,
    ImportRunRequest,
    RetryMatchResult,
)
from src.formflow_analytics.timeutil import as_utc

router = APIRouter(prefix="/import", tags=["Import"])


@router.post("/preview", response_model=CSVPreview)
async def preview_completion_import(config: Config, file: UploadFile = File(...)):
    """
    Preview a completion CSV.
    Returns headers, row count, sample rows and a suggested column mapping.
    """
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="File must be a CSV")

    content = await file.read()
    csv_content = decode_csv_content(content)
    return preview_csv(csv_content, preview_rows=config.import_preview_rows)


@router.post("/run", response_model=CompletionImportResult)
def run_completion_import(request: ImportRunRequest, db: DbSession, config: Config):
    """
    Run the import for a previewed file. Defaults to a dry run;
    send dry_run=false to persist.
    """
    mapping = None
    if request.column_mappings:
        mapping = {cm.original: cm.mapped_to for cm in request.column_mappings if cm.mapped_to}

    return CompletionImporter(db, config).import_session(
        request.session_id,
        instance_id=request.instance_id,
        mapping=mapping,
        dry_run=request.dry_run,
        match_handoffs=request.match_handoffs,
    )


@router.post("/retry", response_model=RetryMatchResult)
def retry_completion_matching(db: DbSession, config: Config, instance_id: Optional[int] = Query(None)):
    return CompletionImporter(db, config).retry_matching(instance_id)


@router.get("/unmatched")
def list_unmatched_completions(
    db: DbSession,
    config: Config,
    instance_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
) -> List[Dict[str, Any]]:
    completions = CompletionImporter(db, config).get_unmatched_completions(instance_id, limit)
    return [
        {
            "id": c.id,
            "instance_id": c.instance_id,
            "source": c.source,
            "account_number": c.account_number,
            "customer_email": c.customer_email,
            "external_id": c.external_id,
            "completion_type": c.completion_type,
            "created_at": as_utc(c.created_at).isoformat(),
        }
        for c in completions
    ]


@router.get("/history")
def completion_import_history(db: DbSession, config: Config, limit: int = Query(20, ge=1, le=200)):
    return CompletionImporter(db, config).get_import_history(limit)
