"""Completion webhook schemas"""
from typing import Optional, Dict
from pydantic import BaseModel, Field


class CompletionPayload(BaseModel):
    account_number: str
    handoff_token: Optional[str] = None
    instance_id: Optional[int] = None
    customer_email: Optional[str] = None
    external_id: Optional[str] = None
    completion_type: str = "enrollment"
    status: str = "completed"


class CompletionReceipt(BaseModel):
    accepted: bool
    completion_id: Optional[int] = None
    matched_handoff: bool = False
    message: Optional[str] = None


class CompletionStats(BaseModel):
    total: int = 0
    matched_to_handoff: int = 0
    match_rate: float = 0.0
    by_source: Dict[str, int] = Field(default_factory=dict)
