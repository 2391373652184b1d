"""API dependencies - database session, engine policy and error mapping"""
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from src.formflow_analytics.config import AnalyticsConfig, get_analytics_config
from src.formflow_analytics.database import get_db
from src.formflow_analytics.exceptions import (
    AnalyticsError,
    ValidationError,
    NotFoundError,
    ConflictError,
)


def get_config() -> AnalyticsConfig:
    return get_analytics_config()


def status_code_for(exc: AnalyticsError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 500


DbSession = Annotated[Session, Depends(get_db)]
Config = Annotated[AnalyticsConfig, Depends(get_config)]
