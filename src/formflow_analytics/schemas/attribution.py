"""Attribution report schemas"""
from typing import Dict, List
from pydantic import BaseModel, Field

NO_TOUCHPOINTS = "(no touchpoints)"

TIME_TO_CONVERSION_BUCKETS = ["same_session", "same_day", "within_week", "within_month", "over_month"]
TOUCH_COUNT_BUCKETS = ["0", "1", "2", "3", "4-5", "6-10", "11+"]


class AttributionResult(BaseModel):
    model: str
    by_source: Dict[str, float] = Field(default_factory=dict)
    by_channel: Dict[str, float] = Field(default_factory=dict)
    by_campaign: Dict[str, float] = Field(default_factory=dict)
    total_conversions: int = 0
    attributed_conversions: int = 0
    unattributed_conversions: int = 0


class ChannelPerformance(BaseModel):
    channel: str
    medium: str
    touches: int
    unique_visitors: int
    conversions: float
    conversion_rate: float


class TimeToConversionResult(BaseModel):
    total_conversions: int = 0
    unmeasured_conversions: int = 0
    average_hours: float = 0.0
    median_hours: float = 0.0
    buckets: Dict[str, int] = Field(
        default_factory=lambda: {b: 0 for b in TIME_TO_CONVERSION_BUCKETS}
    )


class TouchpointAnalysisResult(BaseModel):
    total_conversions: int = 0
    average_touches: float = 0.0
    median_touches: float = 0.0
    max_touches: int = 0
    buckets: Dict[str, int] = Field(
        default_factory=lambda: {b: 0 for b in TOUCH_COUNT_BUCKETS}
    )


class ModelComparison(BaseModel):
    models: Dict[str, AttributionResult]


class ChannelPerformanceReport(BaseModel):
    model: str
    channels: List[ChannelPerformance]
