"""Attribution and funnel report endpoints"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query

from src.formflow_analytics.api.deps import DbSession, Config
from src.formflow_analytics.schemas.attribution import (
    AttributionResult,
    ChannelPerformanceReport,
    ModelComparison,
    TimeToConversionResult,
    TouchpointAnalysisResult,
)
from src.formflow_analytics.schemas.funnel import FunnelResult
from src.formflow_analytics.services.attribution import AttributionCalculator
from src.formflow_analytics.services.funnel import FunnelAggregator

router = APIRouter(prefix="/api/reports", tags=["Reports"])


@router.get("/attribution", response_model=AttributionResult)
def attribution_report(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
    model: str = Query("linear"),
):
    return AttributionCalculator(db, config).calculate_attribution(instance_id, date_from, date_to, model)


@router.get("/compare", response_model=ModelComparison)
def compare_models_report(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
):
    return AttributionCalculator(db, config).compare_models(instance_id, date_from, date_to)


@router.get("/channels", response_model=ChannelPerformanceReport)
def channel_report(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
    model: str = Query("linear"),
):
    return AttributionCalculator(db, config).get_channel_performance(instance_id, date_from, date_to, model)


@router.get("/time-to-conversion", response_model=TimeToConversionResult)
def time_to_conversion_report(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
):
    return AttributionCalculator(db, config).get_time_to_conversion(instance_id, date_from, date_to)


@router.get("/touchpoints", response_model=TouchpointAnalysisResult)
def touchpoint_report(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
):
    return AttributionCalculator(db, config).get_touchpoint_analysis(instance_id, date_from, date_to)


@router.get("/funnel", response_model=FunnelResult)
def funnel_report(
    db: DbSession,
    config: Config,
    instance_id: int = Query(...),
    date_from: date = Query(...),
    date_to: date = Query(...),
    steps: Optional[List[str]] = Query(None),
):
    return FunnelAggregator(db, config).get_funnel(instance_id, date_from, date_to, steps)
