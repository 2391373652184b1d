"""Form funnel and drop-off aggregation"""
import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Optional, Dict, List

from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig
from src.formflow_analytics.schemas.funnel import FunnelStep, FunnelResult
from src.formflow_analytics.services.touchpoints import get_instance_touches
from src.formflow_analytics.timeutil import as_utc, local_day_bounds

logger = logging.getLogger(__name__)

DEFAULT_STEPS = ["form_view", "form_start", "form_complete"]


class FunnelAggregator:
    def __init__(self, db: Session, config: AnalyticsConfig):
        self.db = db
        self.config = config

    def _step_times(self, instance_id: int, date_from: date, date_to: date, steps: List[str]) -> Dict[str, Dict[str, List[datetime]]]:
        """step -> visitor -> ordered touch times at that step"""
        start, end = local_day_bounds(date_from, date_to, self.config.tz)
        wanted = set(steps)
        times: Dict[str, Dict[str, List[datetime]]] = {s: defaultdict(list) for s in steps}

        for touch in get_instance_touches(self.db, instance_id, start, end):
            for name in {touch.step, touch.touch_type}:
                if name in wanted:
                    times[name][touch.visitor_id].append(as_utc(touch.created_at))
        return times

    def get_funnel(
        self,
        instance_id: int,
        date_from: date,
        date_to: date,
        steps: Optional[List[str]] = None,
    ) -> FunnelResult:
        steps = steps or DEFAULT_STEPS
        times = self._step_times(instance_id, date_from, date_to, steps)
        entered = [len(times[s]) for s in steps]

        result = []
        for i, step in enumerate(steps):
            drop_off = 0.0
            avg_seconds = 0.0

            if i + 1 < len(steps):
                if entered[i] > 0:
                    drop_off = max(0.0, (entered[i] - entered[i + 1]) / entered[i] * 100)

                deltas = []
                following = times[steps[i + 1]]
                for visitor_id, visited in times[step].items():
                    if visitor_id not in following:
                        continue
                    first_here = visited[0]
                    later = [t for t in following[visitor_id] if t >= first_here]
                    if later:
                        deltas.append((later[0] - first_here).total_seconds())
                if deltas:
                    avg_seconds = sum(deltas) / len(deltas)

            result.append(FunnelStep(
                step=step,
                entered=entered[i],
                drop_off_rate=round(drop_off, 1),
                avg_time_on_step_seconds=round(avg_seconds, 1),
            ))

        overall = (entered[-1] / entered[0] * 100) if entered and entered[0] > 0 else 0.0
        logger.info(f"Funnel calculated: instance_id={instance_id}, steps={len(steps)}, entered={entered}")
        return FunnelResult(steps=result, overall_conversion_rate=round(overall, 1))
