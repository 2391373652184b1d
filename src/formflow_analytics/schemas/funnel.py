"""Funnel report schemas"""
from typing import List
from pydantic import BaseModel


class FunnelStep(BaseModel):
    step: str
    entered: int
    drop_off_rate: float
    avg_time_on_step_seconds: float


class FunnelResult(BaseModel):
    steps: List[FunnelStep]
    overall_conversion_rate: float = 0.0
