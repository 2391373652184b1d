"""Single-completion intake from the external enrollment system (webhook or return redirect)"""
import hashlib
import hmac
import logging
from collections import Counter
from datetime import date
from typing import Optional, List

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.exceptions import ValidationError, AlreadyTerminalError, StorageError
from src.formflow_analytics.models.external_completion import ExternalCompletion
from src.formflow_analytics.schemas.completion import CompletionPayload, CompletionReceipt, CompletionStats
from src.formflow_analytics.services.csv_normalizer import normalize_email
from src.formflow_analytics.services.handoff import HandoffService
from src.formflow_analytics.services.touchpoints import link_visitor_to_email
from src.formflow_analytics.timeutil import utcnow, local_day_bounds

logger = logging.getLogger(__name__)

ACCEPTED_STATUSES = {"completed", "success", "enrolled"}

COMPLETION_SOURCES = {"import", "webhook", "redirect"}


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    if not secret:
        logger.error("Completion webhook secret not configured - webhook requests blocked")
        return False

    if not signature:
        logger.warning("Missing completion webhook signature")
        return False

    expected_signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.strip().lower(), expected_signature)


class CompletionReceiver:
    def __init__(self, db: Session, config: AnalyticsConfig):
        self.db = db
        self.config = config
        self.handoffs = HandoffService(db, config)

    def find_existing(self, instance_id: int, account_number: str) -> Optional[ExternalCompletion]:
        return self.db.execute(
            select(ExternalCompletion).where(
                and_(
                    ExternalCompletion.instance_id == instance_id,
                    ExternalCompletion.account_number == account_number,
                )
            ).limit(1)
        ).scalar_one_or_none()

    def receive_completion(self, payload: CompletionPayload, source: str = "webhook") -> CompletionReceipt:
        if source not in COMPLETION_SOURCES:
            raise ValidationError(f"Unknown completion source: {source}")

        status = payload.status.strip().lower()
        if status not in ACCEPTED_STATUSES:
            logger.info(f"Ignoring completion with status={status}")
            return CompletionReceipt(accepted=False, message=f"Ignored status: {status}")

        account_number = payload.account_number.strip()
        if not account_number:
            raise ValidationError("account_number is required")

        handoff = self.handoffs.get_handoff(payload.handoff_token) if payload.handoff_token else None
        instance_id = handoff.instance_id if handoff else payload.instance_id
        if instance_id is None:
            raise ValidationError("instance_id is required when the handoff token is unknown")

        existing = self.find_existing(instance_id, account_number)
        if existing:
            return CompletionReceipt(
                accepted=True,
                completion_id=existing.id,
                matched_handoff=existing.handoff_id is not None,
                message="Duplicate completion",
            )

        email = None
        if payload.customer_email:
            email, warning = normalize_email(payload.customer_email)
            if warning:
                logger.warning(f"Completion for account_number={account_number}: {warning}")

        completed_at = utcnow()
        matched = False
        message = None
        if handoff:
            try:
                self.handoffs.complete(
                    handoff.handoff_token,
                    account_number=account_number,
                    metadata={"source": source, "completion_type": payload.completion_type},
                    external_id=payload.external_id,
                    completed_at=completed_at,
                    commit=False,
                )
                matched = True
            except AlreadyTerminalError as e:
                message = str(e)
        elif payload.handoff_token:
            logger.warning(f"Completion references unknown handoff token for account_number={account_number}")

        try:
            completion = ExternalCompletion(
                instance_id=instance_id,
                source=source,
                account_number=account_number,
                customer_email=email,
                external_id=payload.external_id,
                completion_type=payload.completion_type or "enrollment",
                handoff_id=handoff.id if matched else None,
                match_confidence=1.0 if matched else None,
                match_strategy="token" if matched else None,
                raw_data=payload.model_dump_json(),
                processed=matched,
                created_at=completed_at,
            )
            self.db.add(completion)
            if matched and email and handoff.visitor_id:
                link_visitor_to_email(self.db, handoff.visitor_id, email)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Could not store completion for account_number={account_number}") from e

        logger.info(
            f"Completion received: completion_id={completion.id}, source={source}, "
            f"instance_id={instance_id}, matched_handoff={matched}"
        )
        return CompletionReceipt(
            accepted=True,
            completion_id=completion.id,
            matched_handoff=matched,
            message=message,
        )

    def get_recent_completions(self, instance_id: int, limit: int = 50) -> List[ExternalCompletion]:
        return list(self.db.execute(
            select(ExternalCompletion)
            .where(ExternalCompletion.instance_id == instance_id)
            .order_by(ExternalCompletion.created_at.desc(), ExternalCompletion.id.desc())
            .limit(limit)
        ).scalars().all())

    def get_completion_stats(self, instance_id: int, date_from: date, date_to: date) -> CompletionStats:
        start, end = local_day_bounds(date_from, date_to, self.config.tz)
        completions = self.db.execute(
            select(ExternalCompletion).where(
                and_(
                    ExternalCompletion.instance_id == instance_id,
                    ExternalCompletion.created_at >= start,
                    ExternalCompletion.created_at < end,
                )
            )
        ).scalars().all()

        total = len(completions)
        matched = sum(1 for c in completions if c.handoff_id is not None)
        match_rate = (matched / total * 100) if total > 0 else 0.0

        return CompletionStats(
            total=total,
            matched_to_handoff=matched,
            match_rate=round(match_rate, 1),
            by_source=dict(Counter(c.source for c in completions)),
        )
