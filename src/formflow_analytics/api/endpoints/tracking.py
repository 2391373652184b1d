"""Visitor tracking endpoint (touch beacon)"""
import logging
from typing import Optional
from urllib.parse import urlparse, parse_qsl

from fastapi import APIRouter, Request, Response, Cookie
from itsdangerous import URLSafeSerializer, BadSignature

from src.formflow_analytics.api.deps import DbSession
from src.formflow_analytics.config import get_settings
from src.formflow_analytics.schemas.touchpoint import TouchRequest, TouchRecorded
from src.formflow_analytics.services.touchpoints import identify_visitor, parse_attribution, record_touch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/t", tags=["Tracking"])

VISITOR_COOKIE = "ff_visitor"
VISITOR_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


def get_serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.TRACKING_SECRET, salt="visitor")


def sign_visitor_id(visitor_id: str) -> str:
    return get_serializer().dumps({"visitor_id": visitor_id})


def read_visitor_cookie(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        data = get_serializer().loads(value)
    except BadSignature:
        logger.warning("Rejected visitor cookie with bad signature")
        return None
    return data.get("visitor_id")


@router.post("/touch", response_model=TouchRecorded)
def track_touch(
    body: TouchRequest,
    request: Request,
    response: Response,
    db: DbSession,
    ff_visitor: Optional[str] = Cookie(default=None),
):
    """
    Record one touch for the visitor behind the signed cookie.
    A missing or tampered cookie starts a new visitor.
    """
    settings = get_settings()
    query_params = dict(request.query_params)
    if body.page_url:
        query_params.update(dict(parse_qsl(urlparse(body.page_url).query)))

    attribution = parse_attribution(
        query_params,
        referrer=body.referrer,
        page_url=body.page_url,
        site_host=urlparse(settings.BASE_URL).hostname,
    )
    device_info = {"user_agent": request.headers.get("user-agent", "")}

    visitor = identify_visitor(
        db,
        visitor_id=read_visitor_cookie(ff_visitor),
        attribution=attribution,
        device_info=device_info,
    )
    touch = record_touch(
        db,
        visitor_id=visitor.visitor_id,
        touch_type=body.touch_type,
        instance_id=body.instance_id,
        attribution=attribution,
        page_url=body.page_url,
        step=body.step,
        extra_data=body.extra,
    )
    db.commit()

    response.set_cookie(
        VISITOR_COOKIE,
        sign_visitor_id(visitor.visitor_id),
        max_age=VISITOR_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    return TouchRecorded(touch_id=touch.id, visitor_id=visitor.visitor_id)
