"""Tracker request schemas"""
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class TouchRequest(BaseModel):
    touch_type: str
    instance_id: Optional[int] = None
    page_url: Optional[str] = None
    referrer: Optional[str] = None
    step: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class TouchRecorded(BaseModel):
    touch_id: int
    visitor_id: str
