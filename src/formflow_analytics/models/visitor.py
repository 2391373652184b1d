"""Visitor model - de-duplicated anonymous browsing identity"""
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.formflow_analytics.models.base import Base
from src.formflow_analytics.timeutil import utcnow


class Visitor(Base):
    __tablename__ = "visitors"

    id: Mapped[int] = mapped_column(primary_key=True)
    visitor_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    email_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    visit_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    first_touch: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    device_info: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
