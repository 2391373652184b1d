"""Multi-touch attribution over the touchpoint log.

A conversion is either an on-site ``form_complete`` touch or a completed
handoff. Each conversion's credit (always 1.0 in total) is spread over the
attributable touches that preceded it according to the selected model, then
rolled up by source, channel and campaign.
"""
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Dict, List, Tuple

from sqlalchemy import select, and_
from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.exceptions import ValidationError
from src.formflow_analytics.models.handoff import Handoff, HandoffStatus
from src.formflow_analytics.models.touchpoint import Touchpoint, TouchType, CONVERSION_TOUCH_TYPES
from src.formflow_analytics.schemas.attribution import (
    NO_TOUCHPOINTS,
    AttributionResult,
    ChannelPerformance,
    ChannelPerformanceReport,
    ModelComparison,
    TimeToConversionResult,
    TouchpointAnalysisResult,
)
from src.formflow_analytics.services.touchpoints import get_visitor, get_visitor_journey, get_instance_touches
from src.formflow_analytics.timeutil import as_utc, local_day_bounds, hours_between

logger = logging.getLogger(__name__)

ATTRIBUTION_MODELS = ["first_touch", "last_touch", "linear", "time_decay", "position_based"]

SECONDS_PER_DAY = 86400


@dataclass
class Conversion:
    visitor_id: Optional[str]
    converted_at: datetime
    cutoff: datetime
    origin: str
    reference_id: int
    path: List[Touchpoint] = field(default_factory=list)


def channel_key(source: str, medium: str) -> str:
    return f"{source} / {medium}"


def model_weights(
    model: str,
    touch_times: List[datetime],
    converted_at: Optional[datetime] = None,
    half_life_days: float = 7.0,
) -> List[float]:
    """Credit weights for an ordered path; always sums to 1.0 for a non-empty path."""
    n = len(touch_times)
    if n == 0:
        return []

    if model == "first_touch":
        return [1.0] + [0.0] * (n - 1)

    if model == "last_touch":
        return [0.0] * (n - 1) + [1.0]

    if model == "linear":
        return [1.0 / n] * n

    if model == "time_decay":
        converted_at = as_utc(converted_at) or as_utc(touch_times[-1])
        raw = []
        for touched_at in touch_times:
            age_days = max(0.0, (converted_at - as_utc(touched_at)).total_seconds() / SECONDS_PER_DAY)
            raw.append(0.5 ** (age_days / half_life_days))
        total = sum(raw)
        return [w / total for w in raw]

    if model == "position_based":
        if n == 1:
            return [1.0]
        if n == 2:
            return [0.5, 0.5]
        middle = 0.2 / (n - 2)
        return [0.4] + [middle] * (n - 2) + [0.4]

    raise ValidationError(f"Unknown attribution model: {model}")


def credited_touches(
    path: List[Touchpoint],
    model: str,
    converted_at: datetime,
    half_life_days: float,
) -> List[Tuple[Touchpoint, float]]:
    """Pair each credited touch with its weight.

    Only touches carrying a source (UTM or external referrer) compete for
    credit. A path with none of those gives the first touch full credit,
    which labels as ``direct``.
    """
    if not path:
        return []

    attributable = [t for t in path if t.is_attributable]
    if not attributable:
        return [(path[0], 1.0)]

    weights = model_weights(
        model,
        [t.created_at for t in attributable],
        converted_at=converted_at,
        half_life_days=half_life_days,
    )
    return list(zip(attributable, weights))


def median(values: List[float]) -> float:
    return statistics.median(values) if values else 0.0


def sort_credit(credit: Dict[str, float]) -> Dict[str, float]:
    return dict(sorted(credit.items(), key=lambda item: item[1], reverse=True))


def time_to_conversion_bucket(hours: float) -> str:
    if hours < 1:
        return "same_session"
    if hours < 24:
        return "same_day"
    if hours < 24 * 7:
        return "within_week"
    if hours < 24 * 30:
        return "within_month"
    return "over_month"


def touch_count_bucket(count: int) -> str:
    if count <= 3:
        return str(count)
    if count <= 5:
        return "4-5"
    if count <= 10:
        return "6-10"
    return "11+"


class AttributionCalculator:
    def __init__(self, db: Session, config: AnalyticsConfig):
        self.db = db
        self.config = config

    def get_conversions(self, instance_id: int, date_from: date, date_to: date) -> List[Conversion]:
        """Conversions in the local date range with their touch paths attached."""
        start, end = local_day_bounds(date_from, date_to, self.config.tz)
        conversions: List[Conversion] = []

        for touch in get_instance_touches(self.db, instance_id, start, end, touch_type=TouchType.FORM_COMPLETE.value):
            conversions.append(Conversion(
                visitor_id=touch.visitor_id,
                converted_at=as_utc(touch.created_at),
                cutoff=as_utc(touch.created_at),
                origin="touch",
                reference_id=touch.id,
            ))

        handoffs = self.db.execute(
            select(Handoff).where(
                and_(
                    Handoff.instance_id == instance_id,
                    Handoff.status == HandoffStatus.COMPLETED,
                    Handoff.completed_at >= start,
                    Handoff.completed_at < end,
                )
            ).order_by(Handoff.completed_at, Handoff.id)
        ).scalars().all()

        for handoff in handoffs:
            conversions.append(Conversion(
                visitor_id=handoff.visitor_id,
                converted_at=as_utc(handoff.completed_at),
                cutoff=as_utc(handoff.created_at),
                origin="handoff",
                reference_id=handoff.id,
            ))

        for conversion in conversions:
            if conversion.visitor_id:
                conversion.path = get_visitor_journey(
                    self.db, conversion.visitor_id, instance_id, until=conversion.cutoff
                )

        conversions.sort(key=lambda c: (c.converted_at, c.reference_id))
        return conversions

    def _attribute(self, conversions: List[Conversion], model: str) -> AttributionResult:
        if model not in ATTRIBUTION_MODELS:
            raise ValidationError(f"Unknown attribution model: {model}")

        by_source: Dict[str, float] = defaultdict(float)
        by_channel: Dict[str, float] = defaultdict(float)
        by_campaign: Dict[str, float] = defaultdict(float)
        unattributed = 0

        for conversion in conversions:
            credits = credited_touches(
                conversion.path, model, conversion.converted_at, self.config.time_decay_half_life_days
            )
            if not credits:
                unattributed += 1
                by_source[NO_TOUCHPOINTS] += 1.0
                by_channel[NO_TOUCHPOINTS] += 1.0
                continue

            for touch, weight in credits:
                if weight <= 0:
                    continue
                by_source[touch.source_label] += weight
                by_channel[channel_key(touch.source_label, touch.medium_label)] += weight
                if touch.utm_campaign:
                    by_campaign[touch.utm_campaign] += weight

        return AttributionResult(
            model=model,
            by_source=sort_credit(by_source),
            by_channel=sort_credit(by_channel),
            by_campaign=sort_credit(by_campaign),
            total_conversions=len(conversions),
            attributed_conversions=len(conversions) - unattributed,
            unattributed_conversions=unattributed,
        )

    def calculate_attribution(
        self,
        instance_id: int,
        date_from: date,
        date_to: date,
        model: str = "linear",
    ) -> AttributionResult:
        conversions = self.get_conversions(instance_id, date_from, date_to)
        result = self._attribute(conversions, model)
        logger.info(
            f"Attribution calculated: instance_id={instance_id}, model={model}, "
            f"conversions={result.total_conversions}, unattributed={result.unattributed_conversions}"
        )
        return result

    def compare_models(self, instance_id: int, date_from: date, date_to: date) -> ModelComparison:
        conversions = self.get_conversions(instance_id, date_from, date_to)
        return ModelComparison(models={m: self._attribute(conversions, m) for m in ATTRIBUTION_MODELS})

    def get_channel_performance(
        self,
        instance_id: int,
        date_from: date,
        date_to: date,
        model: str = "linear",
    ) -> ChannelPerformanceReport:
        start, end = local_day_bounds(date_from, date_to, self.config.tz)
        attribution = self.calculate_attribution(instance_id, date_from, date_to, model)

        touches: Dict[Tuple[str, str], int] = defaultdict(int)
        visitors: Dict[Tuple[str, str], set] = defaultdict(set)
        for touch in get_instance_touches(self.db, instance_id, start, end):
            if touch.touch_type in CONVERSION_TOUCH_TYPES:
                continue
            key = (touch.source_label, touch.medium_label)
            touches[key] += 1
            visitors[key].add(touch.visitor_id)

        # Credited channels without touches of their own in range still get a row
        pairs = set(touches)
        for channel in attribution.by_channel:
            if channel == NO_TOUCHPOINTS:
                continue
            source, _, medium = channel.partition(" / ")
            pairs.add((source, medium))

        channels = []
        for source, medium in pairs:
            unique_visitors = len(visitors.get((source, medium), ()))
            conversions = attribution.by_channel.get(channel_key(source, medium), 0.0)
            conversion_rate = (conversions / unique_visitors * 100) if unique_visitors > 0 else 0.0
            channels.append(ChannelPerformance(
                channel=source,
                medium=medium,
                touches=touches.get((source, medium), 0),
                unique_visitors=unique_visitors,
                conversions=round(conversions, 2),
                conversion_rate=round(conversion_rate, 1),
            ))

        channels.sort(key=lambda c: (-c.conversions, -c.touches, c.channel, c.medium))
        return ChannelPerformanceReport(model=model, channels=channels)

    def get_time_to_conversion(self, instance_id: int, date_from: date, date_to: date) -> TimeToConversionResult:
        result = TimeToConversionResult()
        hours_list: List[float] = []

        conversions = self.get_conversions(instance_id, date_from, date_to)
        for conversion in conversions:
            visitor = get_visitor(self.db, conversion.visitor_id) if conversion.visitor_id else None
            if visitor is not None:
                started_at = as_utc(visitor.first_seen_at)
            elif conversion.path:
                started_at = as_utc(conversion.path[0].created_at)
            else:
                # no known start, kept out of the buckets and averages
                result.unmeasured_conversions += 1
                continue

            hours = max(0.0, hours_between(started_at, conversion.converted_at))
            hours_list.append(hours)
            result.buckets[time_to_conversion_bucket(hours)] += 1

        result.total_conversions = len(conversions)
        if hours_list:
            result.average_hours = round(sum(hours_list) / len(hours_list), 1)
            result.median_hours = round(median(hours_list), 1)
        return result

    def get_touchpoint_analysis(self, instance_id: int, date_from: date, date_to: date) -> TouchpointAnalysisResult:
        result = TouchpointAnalysisResult()
        counts = [len(c.path) for c in self.get_conversions(instance_id, date_from, date_to)]

        for count in counts:
            result.buckets[touch_count_bucket(count)] += 1

        result.total_conversions = len(counts)
        if counts:
            result.average_touches = round(sum(counts) / len(counts), 1)
            result.median_touches = round(median(counts), 1)
            result.max_touches = max(counts)
        return result
