"""Touchpoint model - append-only log of marketing-relevant events"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from src.formflow_analytics.models.base import Base
from src.formflow_analytics.timeutil import utcnow


class TouchType(str, enum.Enum):
    PAGE_VIEW = "page_view"
    FORM_VIEW = "form_view"
    FORM_START = "form_start"
    FORM_STEP = "form_step"
    FORM_COMPLETE = "form_complete"
    HANDOFF = "handoff"
    RETURN_VISIT = "return_visit"


CONVERSION_TOUCH_TYPES = {TouchType.FORM_COMPLETE.value}


class Touchpoint(Base):
    __tablename__ = "touchpoints"
    __table_args__ = (
        Index("ix_touchpoints_visitor_created", "visitor_id", "created_at"),
        Index("ix_touchpoints_instance_type_created", "instance_id", "touch_type", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    visitor_id: Mapped[str] = mapped_column(String(32), nullable=False)
    instance_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    touch_type: Mapped[str] = mapped_column(String(32), nullable=False)
    step: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    utm_source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_term: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_content: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gclid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    fbclid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    msclkid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    referrer_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    landing_page: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    page_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    promo_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    touch_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def source_label(self) -> str:
        return self.utm_source or self.referrer_domain or "direct"

    @property
    def medium_label(self) -> str:
        return self.utm_medium or "none"

    @property
    def is_attributable(self) -> bool:
        return bool(self.utm_source or self.referrer_domain)
