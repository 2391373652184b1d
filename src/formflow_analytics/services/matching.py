"""Reconciliation of external completions against handoffs.

Each strategy looks at one completion and proposes at most one handoff with a
confidence score. ``CompletionMatcher`` runs them in order and accepts the
best proposal only when it clears the configured minimum confidence.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List, Set

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.models.external_completion import ExternalCompletion
from src.formflow_analytics.models.handoff import Handoff, OPEN_STATUSES
from src.formflow_analytics.models.visitor import Visitor
from src.formflow_analytics.services.touchpoints import hash_email
from src.formflow_analytics.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class MatchContext:
    """What is known about one completion at match time."""

    instance_id: int
    account_number: str
    completed_at: datetime
    customer_email: Optional[str] = None
    handoff_token: Optional[str] = None
    exclude_handoff_ids: Set[int] = field(default_factory=set)


@dataclass
class MatchCandidate:
    handoff: Handoff
    confidence: float
    strategy: str


class MatchStrategy:
    name = "base"
    confidence = 0.0

    def propose(self, matcher: "CompletionMatcher", context: MatchContext, candidates: List[Handoff]) -> Optional[MatchCandidate]:
        raise NotImplementedError

    def candidate(self, handoff: Handoff) -> MatchCandidate:
        return MatchCandidate(handoff=handoff, confidence=self.confidence, strategy=self.name)


class TokenMatchStrategy(MatchStrategy):
    """Exact lookup by the token carried back from the redirect."""

    name = "token"
    confidence = 1.0

    def propose(self, matcher, context, candidates):
        if not context.handoff_token:
            return None

        handoff = matcher.db.execute(
            select(Handoff).where(Handoff.handoff_token == context.handoff_token.strip())
        ).scalar_one_or_none()
        if handoff is None or handoff.instance_id != context.instance_id:
            return None
        if not matcher.is_claimable(handoff, context):
            return None
        return self.candidate(handoff)


class AccountNumberMatchStrategy(MatchStrategy):
    name = "account_number"
    confidence = 0.9

    def propose(self, matcher, context, candidates):
        for handoff in candidates:
            if handoff.account_number and handoff.account_number == context.account_number:
                return self.candidate(handoff)
        return None


class EmailMatchStrategy(MatchStrategy):
    """Handoffs issued to a visitor who identified with the same email."""

    name = "email"
    confidence = 0.7

    def propose(self, matcher, context, candidates):
        if not context.customer_email:
            return None

        visitor_ids = set(matcher.db.execute(
            select(Visitor.visitor_id).where(Visitor.email_hash == hash_email(context.customer_email))
        ).scalars().all())
        if not visitor_ids:
            return None

        for handoff in candidates:
            if handoff.visitor_id in visitor_ids:
                return self.candidate(handoff)
        return None


class RecentHandoffMatchStrategy(MatchStrategy):
    """Last resort: the newest open handoff in the lookback window."""

    name = "most_recent"
    confidence = 0.3

    def propose(self, matcher, context, candidates):
        if candidates:
            return self.candidate(candidates[0])
        return None


DEFAULT_STRATEGIES: List[MatchStrategy] = [
    TokenMatchStrategy(),
    AccountNumberMatchStrategy(),
    EmailMatchStrategy(),
    RecentHandoffMatchStrategy(),
]


class CompletionMatcher:
    def __init__(self, db: Session, config: AnalyticsConfig, strategies: Optional[List[MatchStrategy]] = None):
        self.db = db
        self.config = config
        self.strategies = strategies if strategies is not None else DEFAULT_STRATEGIES

    def is_linked(self, handoff_id: int) -> bool:
        return self.db.execute(
            select(ExternalCompletion.id).where(ExternalCompletion.handoff_id == handoff_id).limit(1)
        ).first() is not None

    def is_claimable(self, handoff: Handoff, context: MatchContext) -> bool:
        if handoff.id in context.exclude_handoff_ids:
            return False
        if handoff.status not in OPEN_STATUSES:
            return False
        ttl = timedelta(hours=self.config.handoff_ttl_hours)
        if as_utc(handoff.created_at) < context.completed_at - ttl:
            return False
        return not self.is_linked(handoff.id)

    def find_candidates(self, context: MatchContext) -> List[Handoff]:
        """Open handoffs of the instance inside the lookback window, newest first."""
        window_start = context.completed_at - timedelta(days=self.config.match_lookback_days)
        handoffs = self.db.execute(
            select(Handoff)
            .where(
                and_(
                    Handoff.instance_id == context.instance_id,
                    Handoff.status.in_(OPEN_STATUSES),
                    Handoff.created_at >= window_start,
                    Handoff.created_at <= context.completed_at,
                )
            )
            .order_by(Handoff.created_at.desc(), Handoff.id.desc())
        ).scalars().all()
        return [h for h in handoffs if self.is_claimable(h, context)]

    def best_candidate(self, context: MatchContext) -> Optional[MatchCandidate]:
        context.completed_at = as_utc(context.completed_at) or utcnow()
        candidates = self.find_candidates(context)

        best: Optional[MatchCandidate] = None
        for strategy in self.strategies:
            proposal = strategy.propose(self, context, candidates)
            if proposal and (best is None or proposal.confidence > best.confidence):
                best = proposal
        return best

    def match(self, context: MatchContext) -> Optional[MatchCandidate]:
        best = self.best_candidate(context)
        if best is None:
            return None
        if best.confidence < self.config.min_match_confidence:
            logger.info(
                f"Match below threshold: account_number={context.account_number}, "
                f"strategy={best.strategy}, confidence={best.confidence}"
            )
            return None
        return best
