"""Visitor identification and touchpoint log - the shared read path for attribution and funnels"""
import hashlib
import json
import logging
import re
import secrets
from datetime import datetime
from typing import Optional, Dict, Any, List, Mapping
from urllib.parse import urlparse

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session

from src.formflow_analytics.exceptions import ValidationError
from src.formflow_analytics.models.visitor import Visitor
from src.formflow_analytics.models.touchpoint import Touchpoint, TouchType, CONVERSION_TOUCH_TYPES
from src.formflow_analytics.timeutil import utcnow, as_utc

logger = logging.getLogger(__name__)

VISITOR_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")

UTM_PARAMS = ["utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content"]
CLICK_ID_PARAMS = ["gclid", "fbclid", "msclkid"]
ATTRIBUTION_FIELDS = UTM_PARAMS + CLICK_ID_PARAMS + ["referrer", "referrer_domain", "landing_page", "promo_code"]

VALID_TOUCH_TYPES = {t.value for t in TouchType}


def generate_visitor_id() -> str:
    return secrets.token_hex(16)


def is_valid_visitor_id(visitor_id: Optional[str]) -> bool:
    return bool(visitor_id) and bool(VISITOR_ID_PATTERN.match(visitor_id))


def extract_domain(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return ""
    if not host:
        return ""
    return re.sub(r"^www\.", "", host.lower())


def is_internal_referrer(referrer: str, site_host: Optional[str]) -> bool:
    if not site_host:
        return False
    return extract_domain(referrer) == re.sub(r"^www\.", "", site_host.lower())


def parse_attribution(
    query_params: Mapping[str, str],
    referrer: Optional[str] = None,
    page_url: Optional[str] = None,
    site_host: Optional[str] = None,
) -> Dict[str, str]:
    """Pull UTM parameters, ad click ids, promo code and external referrer from a request."""
    attribution: Dict[str, str] = {}

    for param in UTM_PARAMS + CLICK_ID_PARAMS:
        value = (query_params.get(param) or "").strip()
        if value:
            attribution[param] = value

    promo = (query_params.get("promo") or "").strip()
    if promo:
        attribution["promo_code"] = promo

    if referrer and not is_internal_referrer(referrer, site_host):
        domain = extract_domain(referrer)
        if domain:
            attribution["referrer"] = referrer
            attribution["referrer_domain"] = domain

    if page_url:
        attribution["landing_page"] = page_url

    return attribution


def hash_email(email: str) -> str:
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()


def get_visitor(db: Session, visitor_id: str) -> Optional[Visitor]:
    return db.execute(
        select(Visitor).where(Visitor.visitor_id == visitor_id)
    ).scalar_one_or_none()


def identify_visitor(
    db: Session,
    visitor_id: Optional[str] = None,
    attribution: Optional[Dict[str, Any]] = None,
    device_info: Optional[Dict[str, Any]] = None,
    seen_at: Optional[datetime] = None,
) -> Visitor:
    """Return the visitor for ``visitor_id``, creating one when it is unknown or malformed."""
    seen_at = as_utc(seen_at) or utcnow()

    if is_valid_visitor_id(visitor_id):
        visitor = get_visitor(db, visitor_id)
        if visitor:
            if seen_at > as_utc(visitor.last_seen_at):
                visitor.last_seen_at = seen_at
            visitor.visit_count = (visitor.visit_count or 0) + 1
            db.flush()
            return visitor
    else:
        visitor_id = generate_visitor_id()

    visitor = Visitor(
        visitor_id=visitor_id,
        first_seen_at=seen_at,
        last_seen_at=seen_at,
        visit_count=1,
        first_touch=json.dumps(attribution or {}),
        device_info=json.dumps(device_info or {}),
    )
    db.add(visitor)
    db.flush()
    logger.info(f"New visitor identified: visitor_id={visitor_id}")
    return visitor


def link_visitor_to_email(db: Session, visitor_id: str, email: str) -> bool:
    visitor = get_visitor(db, visitor_id)
    if not visitor or not email.strip():
        return False
    visitor.email_hash = hash_email(email)
    db.flush()
    return True


def find_visitor_by_email(db: Session, email: str) -> Optional[Visitor]:
    return db.execute(
        select(Visitor)
        .where(Visitor.email_hash == hash_email(email))
        .order_by(Visitor.first_seen_at)
        .limit(1)
    ).scalar_one_or_none()


def record_touch(
    db: Session,
    visitor_id: str,
    touch_type: str,
    instance_id: Optional[int] = None,
    attribution: Optional[Dict[str, Any]] = None,
    page_url: Optional[str] = None,
    step: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None,
    created_at: Optional[datetime] = None,
) -> Touchpoint:
    if isinstance(touch_type, TouchType):
        touch_type = touch_type.value
    if touch_type not in VALID_TOUCH_TYPES:
        raise ValidationError(f"Unknown touch type: {touch_type}")
    if not visitor_id:
        raise ValidationError("visitor_id is required to record a touch")

    attribution = attribution or {}
    created_at = as_utc(created_at) or utcnow()

    touch = Touchpoint(
        visitor_id=visitor_id,
        instance_id=instance_id,
        touch_type=touch_type,
        step=step,
        page_url=page_url,
        touch_data=json.dumps({**(extra_data or {}), "timestamp": created_at.isoformat()}),
        created_at=created_at,
        **{k: attribution.get(k) or None for k in ATTRIBUTION_FIELDS},
    )
    db.add(touch)
    db.flush()
    return touch


def record_handoff_touch(
    db: Session,
    visitor_id: str,
    instance_id: int,
    destination_url: str,
    handoff_token: str,
    created_at: Optional[datetime] = None,
) -> Touchpoint:
    return record_touch(
        db,
        visitor_id=visitor_id,
        touch_type=TouchType.HANDOFF,
        instance_id=instance_id,
        extra_data={"destination_url": destination_url, "handoff_token": handoff_token},
        created_at=created_at,
    )


def get_visitor_journey(
    db: Session,
    visitor_id: str,
    instance_id: Optional[int],
    until: datetime,
    since: Optional[datetime] = None,
    include_conversions: bool = False,
) -> List[Touchpoint]:
    """Touches leading up to ``until`` in (created_at, insertion) order.

    Site-wide touches (no instance) belong to every instance's journey.
    """
    conditions = [
        Touchpoint.visitor_id == visitor_id,
        Touchpoint.created_at <= as_utc(until),
    ]
    if since is not None:
        conditions.append(Touchpoint.created_at >= as_utc(since))
    if instance_id is not None:
        conditions.append(or_(Touchpoint.instance_id == instance_id, Touchpoint.instance_id.is_(None)))
    if not include_conversions:
        conditions.append(Touchpoint.touch_type.notin_(CONVERSION_TOUCH_TYPES))

    stmt = select(Touchpoint).where(and_(*conditions)).order_by(Touchpoint.created_at, Touchpoint.id)
    return list(db.execute(stmt).scalars().all())


def get_instance_touches(
    db: Session,
    instance_id: int,
    start: datetime,
    end: datetime,
    touch_type: Optional[str] = None,
) -> List[Touchpoint]:
    conditions = [
        Touchpoint.instance_id == instance_id,
        Touchpoint.created_at >= as_utc(start),
        Touchpoint.created_at < as_utc(end),
    ]
    if touch_type:
        conditions.append(Touchpoint.touch_type == touch_type)

    stmt = select(Touchpoint).where(and_(*conditions)).order_by(Touchpoint.created_at, Touchpoint.id)
    return list(db.execute(stmt).scalars().all())


def get_touch_counts(db: Session, instance_id: int, start: datetime, end: datetime) -> Dict[str, int]:
    rows = db.execute(
        select(Touchpoint.touch_type, func.count(Touchpoint.id))
        .where(
            and_(
                Touchpoint.instance_id == instance_id,
                Touchpoint.created_at >= as_utc(start),
                Touchpoint.created_at < as_utc(end),
            )
        )
        .group_by(Touchpoint.touch_type)
    ).all()
    counts = {t: 0 for t in sorted(VALID_TOUCH_TYPES)}
    for touch_type, count in rows:
        counts[touch_type] = int(count)
    return counts


def get_unique_visitors(db: Session, instance_id: int, start: datetime, end: datetime) -> Dict[str, int]:
    rows = db.execute(
        select(Touchpoint.touch_type, func.count(func.distinct(Touchpoint.visitor_id)))
        .where(
            and_(
                Touchpoint.instance_id == instance_id,
                Touchpoint.created_at >= as_utc(start),
                Touchpoint.created_at < as_utc(end),
            )
        )
        .group_by(Touchpoint.touch_type)
    ).all()
    visitors = {t: 0 for t in sorted(VALID_TOUCH_TYPES)}
    for touch_type, count in rows:
        visitors[touch_type] = int(count)
    return visitors
