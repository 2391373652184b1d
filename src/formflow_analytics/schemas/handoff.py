"""Handoff request and response schemas"""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class HandoffCreateRequest(BaseModel):
    instance_id: int
    destination_url: str
    visitor_id: Optional[str] = None
    attribution: Dict[str, Any] = Field(default_factory=dict)
    account_number: Optional[str] = None
    params: Dict[str, str] = Field(default_factory=dict)


class HandoffIssued(BaseModel):
    handoff_id: int
    token: str
    redirect_url: str
    destination_url: str
    visitor_id: Optional[str] = None


class HandoffCompleteRequest(BaseModel):
    account_number: str
    external_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HandoffView(BaseModel):
    id: int
    token: str
    instance_id: int
    visitor_id: Optional[str] = None
    destination_url: str
    status: str
    account_number: Optional[str] = None
    attribution: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    completed_at: Optional[datetime] = None


class HandoffStats(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    completion_rate: float = 0.0
    avg_completion_hours: float = 0.0
