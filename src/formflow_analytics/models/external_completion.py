"""ExternalCompletion model - off-site completions from imports and webhooks"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, Float, Boolean, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.formflow_analytics.models.base import Base
from src.formflow_analytics.timeutil import utcnow


class ExternalCompletion(Base):
    __tablename__ = "external_completions"
    __table_args__ = (
        Index("ix_external_completions_instance_account", "instance_id", "account_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    instance_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="import")
    account_number: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    completion_type: Mapped[str] = mapped_column(String(50), nullable=False, default="enrollment")
    handoff_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("handoffs.id"), nullable=True, index=True)
    match_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    match_strategy: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    raw_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    handoff = relationship("Handoff", backref="external_completions")
