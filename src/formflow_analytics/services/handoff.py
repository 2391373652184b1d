"""Handoff lifecycle - bridges an on-site session to an off-site enrollment completion.

States move ``created -> redirected -> completed | abandoned``. Expiry is never
written by a sweep: an open handoff older than the configured TTL simply reads
back as ``expired``. Terminal transitions are a single conditional UPDATE so
two concurrent completions of the same token cannot both succeed.
"""
import json
import logging
import re
import secrets
from datetime import date, datetime, timedelta
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from sqlalchemy import select, update, and_
from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.exceptions import NotFoundError, AlreadyTerminalError
from src.formflow_analytics.models.handoff import Handoff, HandoffStatus, OPEN_STATUSES
from src.formflow_analytics.schemas.handoff import HandoffIssued, HandoffStats, HandoffView
from src.formflow_analytics.services.touchpoints import record_handoff_touch
from src.formflow_analytics.timeutil import utcnow, as_utc, local_day_bounds, hours_between

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"^[a-f0-9]{32}$")
TRACKING_PARAM = "isf_ref"


def generate_token() -> str:
    return secrets.token_hex(16)


def is_valid_token(token: Optional[str]) -> bool:
    return bool(token) and bool(TOKEN_PATTERN.match(token))


def build_tracked_url(destination_url: str, token: str, params: Optional[Dict[str, str]] = None) -> str:
    parsed = urlparse(destination_url)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query.update(params or {})
    query[TRACKING_PARAM] = token
    return urlunparse(parsed._replace(query=urlencode(query)))


def decode_json(value: Optional[str]) -> Dict[str, Any]:
    try:
        return json.loads(value or "{}") or {}
    except json.JSONDecodeError:
        return {}


class HandoffService:
    def __init__(self, db: Session, config: AnalyticsConfig):
        self.db = db
        self.config = config

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self.config.handoff_ttl_hours)

    def issue(
        self,
        instance_id: int,
        destination_url: str,
        visitor_id: Optional[str] = None,
        attribution: Optional[Dict[str, Any]] = None,
        account_number: Optional[str] = None,
        params: Optional[Dict[str, str]] = None,
        created_at: Optional[datetime] = None,
    ) -> HandoffIssued:
        created_at = as_utc(created_at) or utcnow()
        token = generate_token()
        snapshot = {**(attribution or {}), "captured_at": created_at.isoformat()}

        handoff = Handoff(
            handoff_token=token,
            instance_id=instance_id,
            visitor_id=visitor_id,
            destination_url=destination_url,
            status=HandoffStatus.CREATED,
            account_number=account_number or None,
            attribution=json.dumps(snapshot),
            created_at=created_at,
        )
        self.db.add(handoff)
        self.db.flush()

        if visitor_id:
            record_handoff_touch(
                self.db,
                visitor_id=visitor_id,
                instance_id=instance_id,
                destination_url=destination_url,
                handoff_token=token,
                created_at=created_at,
            )

        self.db.commit()
        logger.info(f"Handoff created: handoff_id={handoff.id}, instance_id={instance_id}, destination={destination_url}")

        return HandoffIssued(
            handoff_id=handoff.id,
            token=token,
            redirect_url=build_tracked_url(destination_url, token, params),
            destination_url=destination_url,
            visitor_id=visitor_id,
        )

    def get_handoff(self, token: str) -> Optional[Handoff]:
        return self.db.execute(
            select(Handoff).where(Handoff.handoff_token == token)
        ).scalar_one_or_none()

    def require_handoff(self, token: str) -> Handoff:
        handoff = self.get_handoff(token)
        if handoff is None:
            raise NotFoundError(f"Unknown handoff token: {token}")
        return handoff

    def effective_status(self, handoff: Handoff, as_of: Optional[datetime] = None) -> HandoffStatus:
        if handoff.status in OPEN_STATUSES:
            as_of = as_utc(as_of) or utcnow()
            if as_of - as_utc(handoff.created_at) > self.ttl:
                return HandoffStatus.EXPIRED
        return handoff.status

    def is_completable(self, handoff: Handoff, as_of: Optional[datetime] = None) -> bool:
        return self.effective_status(handoff, as_of) in OPEN_STATUSES

    def mark_redirected(self, token: str, redirected_at: Optional[datetime] = None) -> Handoff:
        handoff = self.require_handoff(token)
        redirected_at = as_utc(redirected_at) or utcnow()

        result = self.db.execute(
            update(Handoff)
            .where(and_(Handoff.id == handoff.id, Handoff.status == HandoffStatus.CREATED))
            .values(status=HandoffStatus.REDIRECTED, redirected_at=redirected_at)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(handoff)

        if result.rowcount:
            logger.info(f"Handoff redirected: handoff_id={handoff.id}")
        return handoff

    def process_redirect(self, token: str) -> Optional[str]:
        """Resolve a redirect request to its destination, marking the handoff redirected."""
        if not is_valid_token(token):
            logger.warning("Rejected malformed handoff token")
            return None

        handoff = self.get_handoff(token)
        if handoff is None:
            return None

        if self.is_completable(handoff):
            handoff = self.mark_redirected(token)
        return handoff.destination_url

    def complete(
        self,
        token: str,
        account_number: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        external_id: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> Handoff:
        """Close an open handoff as completed.

        With ``commit=False`` the transition stays in the caller's transaction so
        it can be committed or rolled back together with the caller's own rows.
        """
        handoff = self.require_handoff(token)
        completed_at = as_utc(completed_at) or utcnow()

        values: Dict[str, Any] = {
            "status": HandoffStatus.COMPLETED,
            "completed_at": completed_at,
            "completion_data": json.dumps(metadata or {}),
        }
        if account_number:
            values["account_number"] = account_number
        if external_id:
            values["external_id"] = external_id

        result = self.db.execute(
            update(Handoff)
            .where(
                and_(
                    Handoff.id == handoff.id,
                    Handoff.status.in_(OPEN_STATUSES),
                    Handoff.created_at >= completed_at - self.ttl,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(handoff)
            status = self.effective_status(handoff, completed_at)
            logger.warning(f"Handoff completion rejected: handoff_id={handoff.id}, status={status.value}")
            raise AlreadyTerminalError(token, status.value)

        if commit:
            self.db.commit()
        self.db.refresh(handoff)
        logger.info(f"Handoff completed: handoff_id={handoff.id}, account_number={account_number}")
        return handoff

    def abandon(self, token: str, abandoned_at: Optional[datetime] = None) -> Handoff:
        handoff = self.require_handoff(token)
        abandoned_at = as_utc(abandoned_at) or utcnow()

        result = self.db.execute(
            update(Handoff)
            .where(
                and_(
                    Handoff.id == handoff.id,
                    Handoff.status.in_(OPEN_STATUSES),
                    Handoff.created_at >= abandoned_at - self.ttl,
                )
            )
            .values(status=HandoffStatus.ABANDONED)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(handoff)

        if result.rowcount:
            logger.info(f"Handoff abandoned: handoff_id={handoff.id}")
        return handoff

    def to_view(self, handoff: Handoff) -> HandoffView:
        return HandoffView(
            id=handoff.id,
            token=handoff.handoff_token,
            instance_id=handoff.instance_id,
            visitor_id=handoff.visitor_id,
            destination_url=handoff.destination_url,
            status=self.effective_status(handoff).value,
            account_number=handoff.account_number,
            attribution=decode_json(handoff.attribution),
            created_at=as_utc(handoff.created_at),
            completed_at=as_utc(handoff.completed_at),
        )

    def get_recent_handoffs(self, instance_id: int, limit: int = 50) -> List[HandoffView]:
        handoffs = self.db.execute(
            select(Handoff)
            .where(Handoff.instance_id == instance_id)
            .order_by(Handoff.created_at.desc(), Handoff.id.desc())
            .limit(limit)
        ).scalars().all()
        return [self.to_view(h) for h in handoffs]

    def get_stats(self, instance_id: int, date_from: date, date_to: date) -> HandoffStats:
        start, end = local_day_bounds(date_from, date_to, self.config.tz)
        handoffs = self.db.execute(
            select(Handoff).where(
                and_(
                    Handoff.instance_id == instance_id,
                    Handoff.created_at >= start,
                    Handoff.created_at < end,
                )
            )
        ).scalars().all()

        by_status = {s.value: 0 for s in HandoffStatus}
        completion_hours = []
        for handoff in handoffs:
            status = self.effective_status(handoff)
            by_status[status.value] += 1
            if status == HandoffStatus.COMPLETED and handoff.completed_at:
                completion_hours.append(hours_between(handoff.created_at, handoff.completed_at))

        completed = by_status[HandoffStatus.COMPLETED.value]
        closed = completed + by_status[HandoffStatus.ABANDONED.value] + by_status[HandoffStatus.EXPIRED.value]
        completion_rate = (completed / closed * 100) if closed > 0 else 0.0
        avg_hours = (sum(completion_hours) / len(completion_hours)) if completion_hours else 0.0

        return HandoffStats(
            total=len(handoffs),
            by_status=by_status,
            completion_rate=round(completion_rate, 1),
            avg_completion_hours=round(avg_hours, 1),
        )
