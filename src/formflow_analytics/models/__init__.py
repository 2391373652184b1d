"""Database models"""
from src.formflow_analytics.models.base import Base
from src.formflow_analytics.models.visitor import Visitor
from src.formflow_analytics.models.touchpoint import Touchpoint, TouchType
from src.formflow_analytics.models.handoff import Handoff, HandoffStatus
from src.formflow_analytics.models.external_completion import ExternalCompletion
from src.formflow_analytics.models.audit_log import AuditLog

__all__ = [
    "Base", "Visitor", "Touchpoint", "TouchType", "Handoff", "HandoffStatus",
    "ExternalCompletion", "AuditLog",
]
