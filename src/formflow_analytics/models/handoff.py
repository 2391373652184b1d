"""Handoff model - token-bridged redirect to an external enrollment system"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Enum, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from src.formflow_analytics.models.base import Base
from src.formflow_analytics.timeutil import utcnow


class HandoffStatus(str, enum.Enum):
    CREATED = "created"
    REDIRECTED = "redirected"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


OPEN_STATUSES = (HandoffStatus.CREATED, HandoffStatus.REDIRECTED)


class Handoff(Base):
    __tablename__ = "handoffs"
    __table_args__ = (
        Index("ix_handoffs_instance_created", "instance_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    handoff_token: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    instance_id: Mapped[int] = mapped_column(Integer, nullable=False)
    visitor_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, index=True)
    destination_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[HandoffStatus] = mapped_column(
        Enum(HandoffStatus),
        nullable=False,
        default=HandoffStatus.CREATED
    )
    account_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    attribution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completion_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    redirected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
