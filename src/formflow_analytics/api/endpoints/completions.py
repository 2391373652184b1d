"""Completion webhook endpoint and completion stats"""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, Header, Query
from pydantic import ValidationError as PayloadValidationError

from src.formflow_analytics.api.deps import DbSession, Config
from src.formflow_analytics.config import get_settings
from src.formflow_analytics.schemas.completion import CompletionPayload, CompletionReceipt, CompletionStats
from src.formflow_analytics.services.completion_receiver import CompletionReceiver, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Completions"])


@router.post("/webhooks/completions", response_model=CompletionReceipt)
async def completion_webhook(
    request: Request,
    db: DbSession,
    config: Config,
    x_formflow_signature: Optional[str] = Header(default=None),
):
    """
    Receive one completion from the external enrollment system.
    The body must be signed with HMAC-SHA256 (hex) over the raw bytes.
    """
    body = await request.body()
    if not verify_signature(body, x_formflow_signature, get_settings().COMPLETION_WEBHOOK_SECRET):
        logger.warning("Rejected completion webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = CompletionPayload.model_validate_json(body)
    except PayloadValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors())

    return CompletionReceiver(db, config).receive_completion(payload, source="webhook")


@router.get("/api/completions/stats", response_model=CompletionStats)
def completion_stats(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
):
    return CompletionReceiver(db, config).get_completion_stats(instance_id, date_from, date_to)
