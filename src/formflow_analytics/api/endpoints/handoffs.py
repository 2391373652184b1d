"""Handoff endpoints - issue, redirect, complete, abandon and stats"""
from datetime import date
from typing import List

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import RedirectResponse

from src.formflow_analytics.api.deps import DbSession, Config
from src.formflow_analytics.schemas.handoff import (
    HandoffCreateRequest,
    HandoffIssued,
    HandoffCompleteRequest,
    HandoffView,
    HandoffStats,
)
from src.formflow_analytics.services.handoff import HandoffService

router = APIRouter(tags=["Handoffs"])


@router.post("/handoffs", response_model=HandoffIssued)
def create_handoff(request: HandoffCreateRequest, db: DbSession, config: Config):
    return HandoffService(db, config).issue(
        instance_id=request.instance_id,
        destination_url=request.destination_url,
        visitor_id=request.visitor_id,
        attribution=request.attribution,
        account_number=request.account_number,
        params=request.params,
    )


@router.get("/handoff/{token}")
def follow_handoff(token: str, db: DbSession, config: Config):
    """Redirect to the handoff destination, marking the handoff redirected."""
    destination = HandoffService(db, config).process_redirect(token)
    if not destination:
        raise HTTPException(status_code=404, detail="Handoff not found")
    return RedirectResponse(url=destination, status_code=302)


@router.post("/handoffs/{token}/complete", response_model=HandoffView)
def complete_handoff(token: str, request: HandoffCompleteRequest, db: DbSession, config: Config):
    service = HandoffService(db, config)
    handoff = service.complete(
        token,
        account_number=request.account_number,
        metadata=request.metadata,
        external_id=request.external_id,
    )
    return service.to_view(handoff)


@router.post("/handoffs/{token}/abandon", response_model=HandoffView)
def abandon_handoff(token: str, db: DbSession, config: Config):
    service = HandoffService(db, config)
    return service.to_view(service.abandon(token))


@router.get("/api/handoffs", response_model=List[HandoffView])
def list_handoffs(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    limit: int = Query(50, ge=1, le=500),
):
    return HandoffService(db, config).get_recent_handoffs(instance_id, limit)


@router.get("/api/handoffs/stats", response_model=HandoffStats)
def handoff_stats(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
):
    return HandoffService(db, config).get_stats(instance_id, date_from, date_to)
